"""Tests for the event store."""

from datetime import timedelta

import pytest
from sqlalchemy import text

from warden.models.security_event import SecurityEventType, Severity
from warden.monitoring.errors import EventAlreadyResolved, EventStoreError, SecurityEventNotFound
from warden.monitoring.event_store import EventStore, login_attempt_to_dict, security_event_to_dict
from warden.utils.clock import utcnow


def _event(**overrides):
    fields = {
        "type": SecurityEventType.SUSPICIOUS_ACTIVITY,
        "severity": Severity.MEDIUM,
        "description": "test event",
        "ip_address": "198.51.100.10",
    }
    fields.update(overrides)
    return fields


class TestLoginAttempts:
    @pytest.mark.asyncio
    async def test_add_login_attempt_is_never_blocked(self, store):
        attempt = await store.add_login_attempt(
            email="a@example.com",
            ip_address="198.51.100.10",
            user_agent="curl",
            success=False,
            failure_reason="invalid_password",
        )
        assert attempt.id is not None
        assert attempt.blocked is False
        assert attempt.created_at is not None
        data = login_attempt_to_dict(attempt)
        assert data["failure_reason"] == "invalid_password"
        assert data["created_at"].endswith("+00:00")

    @pytest.mark.asyncio
    async def test_count_failures_filters(self, store, seed_attempts):
        await seed_attempts(3, ip_address="198.51.100.10", email="a@example.com")
        await seed_attempts(2, ip_address="198.51.100.11", email="a@example.com")
        await seed_attempts(4, ip_address="198.51.100.10", email="b@example.com", success=True)

        since = utcnow() - timedelta(hours=1)
        assert await store.count_failures(since, ip_address="198.51.100.10") == 3
        assert await store.count_failures(since, email="a@example.com") == 5
        assert await store.count_failures(since) == 5

    @pytest.mark.asyncio
    async def test_count_failures_excludes_window_start(self, store, seed_attempts):
        now = utcnow()
        await seed_attempts(2, age=timedelta(minutes=60), now=now)
        await seed_attempts(1, age=timedelta(minutes=59), now=now)
        assert await store.count_failures(now - timedelta(minutes=60), ip_address="198.51.100.10") == 1

    @pytest.mark.asyncio
    async def test_window_upper_bound(self, store, seed_attempts):
        now = utcnow() - timedelta(hours=3)
        await seed_attempts(2, age=timedelta(0), now=now)
        await seed_attempts(4, age=timedelta(minutes=1))
        since = now - timedelta(hours=1)

        assert await store.count_failures(since, ip_address="198.51.100.10", until=now) == 2
        assert await store.count_failures(since, ip_address="198.51.100.10") == 6
        assert await store.unblocked_failure_counts(since, min_count=1, until=now) == [("198.51.100.10", 2)]

    @pytest.mark.asyncio
    async def test_unblocked_failure_counts(self, store, seed_attempts):
        await seed_attempts(5, ip_address="198.51.100.1")
        await seed_attempts(3, ip_address="198.51.100.2")
        await seed_attempts(6, ip_address="198.51.100.3", blocked=True)
        await seed_attempts(6, ip_address="198.51.100.4", success=True)
        await seed_attempts(6, ip_address="198.51.100.5", age=timedelta(hours=2))

        counts = await store.unblocked_failure_counts(utcnow() - timedelta(hours=1), min_count=3)
        assert counts == [("198.51.100.1", 5), ("198.51.100.2", 3)]

    @pytest.mark.asyncio
    async def test_block_address_flips_all_history_and_writes_event_once(self, store, seed_attempts):
        await seed_attempts(2, ip_address="198.51.100.10", age=timedelta(days=30))
        await seed_attempts(3, ip_address="198.51.100.10")
        await seed_attempts(1, ip_address="198.51.100.10", success=True)

        flipped, event = await store.block_address("198.51.100.10", event=_event(severity=Severity.CRITICAL))
        assert flipped == 6
        assert event is not None and event.severity == "critical"
        assert await store.is_address_blocked("198.51.100.10") is True

        flipped, event = await store.block_address("198.51.100.10", event=_event(severity=Severity.CRITICAL))
        assert flipped == 0
        assert event is None
        assert len(await store.list_security_events(severity="critical")) == 1

    @pytest.mark.asyncio
    async def test_unblock_address(self, store, seed_attempts):
        await seed_attempts(4, ip_address="198.51.100.10", blocked=True)
        assert await store.unblock_address("198.51.100.10") == 4
        assert await store.is_address_blocked("198.51.100.10") is False
        assert await store.unblock_address("198.51.100.10") == 0

    @pytest.mark.asyncio
    async def test_address_has_attempts(self, store, seed_attempts):
        assert await store.address_has_attempts("198.51.100.10") is False
        await seed_attempts(1)
        assert await store.address_has_attempts("198.51.100.10") is True

    @pytest.mark.asyncio
    async def test_list_login_attempts_substring_filter(self, store, seed_attempts):
        await seed_attempts(2, ip_address="10.0.0.1")
        await seed_attempts(1, ip_address="10.0.0.15")
        await seed_attempts(1, ip_address="172.16.0.1")

        assert len(await store.list_login_attempts("10.0.0.1")) == 3
        assert len(await store.list_login_attempts("172.")) == 1
        assert await store.list_login_attempts("%") == []
        assert len(await store.list_login_attempts(limit=2)) == 2

    @pytest.mark.asyncio
    async def test_list_login_attempts_newest_first(self, store, seed_attempts):
        await seed_attempts(1, ip_address="10.0.0.1", age=timedelta(minutes=30))
        await seed_attempts(1, ip_address="10.0.0.2", age=timedelta(minutes=5))
        attempts = await store.list_login_attempts()
        assert [a.ip_address for a in attempts] == ["10.0.0.2", "10.0.0.1"]


class TestSecurityEvents:
    @pytest.mark.asyncio
    async def test_add_security_event(self, store):
        event = await store.add_security_event(**_event(metadata={"failed_attempts": 10}))
        data = security_event_to_dict(event)
        assert data["type"] == "suspicious_activity"
        assert data["severity"] == "medium"
        assert data["metadata"] == {"failed_attempts": 10}
        assert data["resolved"] is False
        assert data["resolved_at"] is None

    @pytest.mark.asyncio
    async def test_add_security_event_rejects_unknown_severity(self, store):
        with pytest.raises(ValueError):
            await store.add_security_event(**_event(severity="urgent"))

    @pytest.mark.asyncio
    async def test_list_security_events_filters(self, store):
        await store.add_security_event(**_event(severity=Severity.HIGH))
        await store.add_security_event(**_event(type=SecurityEventType.RATE_LIMIT_EXCEEDED))
        resolved = await store.add_security_event(**_event(severity=Severity.LOW))
        await store.resolve_security_event(resolved.id, resolved_by="admin@example.com")

        assert len(await store.list_security_events()) == 3
        assert len(await store.list_security_events(severity="high")) == 1
        assert len(await store.list_security_events(type="rate_limit_exceeded")) == 1
        assert len(await store.list_security_events(resolved=True)) == 1
        assert len(await store.list_security_events(resolved=False)) == 2
        assert len(await store.list_security_events(limit=1)) == 1

    @pytest.mark.asyncio
    async def test_list_security_events_newest_first(self, store):
        first = await store.add_security_event(**_event(description="first"))
        second = await store.add_security_event(**_event(description="second"))
        events = await store.list_security_events()
        assert [e.id for e in events] == [second.id, first.id]

    @pytest.mark.asyncio
    async def test_resolve_security_event_once(self, store):
        event = await store.add_security_event(**_event())
        resolved = await store.resolve_security_event(event.id, "admin@example.com", notes="false positive")
        assert resolved.resolved is True
        assert resolved.resolved_by == "admin@example.com"
        assert resolved.notes == "false positive"
        assert resolved.resolved_at is not None

        with pytest.raises(EventAlreadyResolved):
            await store.resolve_security_event(event.id, "other@example.com", notes="again")

        unchanged = await store.get_security_event(event.id)
        assert unchanged.resolved_by == "admin@example.com"
        assert unchanged.resolved_at == resolved.resolved_at

    @pytest.mark.asyncio
    async def test_resolve_unknown_event(self, store):
        with pytest.raises(SecurityEventNotFound):
            await store.resolve_security_event(9999, "admin@example.com")

    @pytest.mark.asyncio
    async def test_has_recent_event_matches_scope_and_subject(self, store):
        since = utcnow() - timedelta(hours=1)
        await store.add_security_event(**_event(metadata={"scope": "ip"}))
        await store.add_security_event(**_event(metadata={"scope": "email", "email": "a@example.com"}))

        assert await store.has_recent_event("ip", "198.51.100.10", Severity.MEDIUM, since) is True
        assert await store.has_recent_event("ip", "198.51.100.99", Severity.MEDIUM, since) is False
        assert await store.has_recent_event("ip", "198.51.100.10", Severity.HIGH, since) is False
        assert await store.has_recent_event("email", "a@example.com", Severity.MEDIUM, since) is True
        assert await store.has_recent_event("email", "b@example.com", Severity.MEDIUM, since) is False


class TestSecurityStats:
    @pytest.mark.asyncio
    async def test_empty_stats(self, store):
        stats = await store.security_stats(utcnow() - timedelta(days=7))
        assert stats["overview"] == {
            "security_events": 0,
            "login_attempts": 0,
            "failed_logins": 0,
            "critical_events": 0,
            "success_rate": 100.0,
        }
        assert stats["top_threats"] == []
        assert stats["suspicious_ips"] == []

    @pytest.mark.asyncio
    async def test_stats_counts(self, store, seed_attempts):
        await seed_attempts(3, ip_address="198.51.100.1")
        await seed_attempts(1, ip_address="198.51.100.2")
        await seed_attempts(4, ip_address="198.51.100.3", success=True)
        await seed_attempts(5, ip_address="198.51.100.4", age=timedelta(days=10))
        await store.add_security_event(**_event(severity=Severity.CRITICAL))
        await store.add_security_event(**_event())
        await store.add_security_event(**_event(type=SecurityEventType.UNAUTHORIZED_ACCESS))

        stats = await store.security_stats(utcnow() - timedelta(days=7))
        overview = stats["overview"]
        assert overview["login_attempts"] == 8
        assert overview["failed_logins"] == 4
        assert overview["success_rate"] == 50.0
        assert overview["security_events"] == 3
        assert overview["critical_events"] == 1
        assert stats["top_threats"][0] == {"type": "suspicious_activity", "count": 2}
        assert stats["suspicious_ips"] == [
            {"ip_address": "198.51.100.1", "count": 3},
            {"ip_address": "198.51.100.2", "count": 1},
        ]


class TestStoreErrors:
    @pytest.mark.asyncio
    async def test_missing_session_factory(self):
        store = EventStore()
        with pytest.raises(EventStoreError) as exc_info:
            await store.is_address_blocked("198.51.100.10")
        assert exc_info.value.action == "is_address_blocked"

    @pytest.mark.asyncio
    async def test_database_errors_are_wrapped(self, session_factory):
        store = EventStore(session_factory)
        async with session_factory() as session:
            await session.execute(text("DROP TABLE login_attempts"))
            await session.commit()
        with pytest.raises(EventStoreError):
            await store.count_failures(utcnow())
