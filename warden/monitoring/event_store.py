"""Event Store — data access for login attempts and security events.

Every read and write of the monitoring pipeline goes through ``EventStore``.
Read-aggregate-then-write sequences built on top of it (anomaly detection,
auto-block sweeps) take no locks; concurrent callers may see the same
counts and both write an event. Duplicate events are tolerated.
"""

from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..models.login_attempt import LoginAttempt
from ..models.security_event import SecurityEvent, SecurityEventType, Severity
from ..utils.clock import isoformat, utcnow
from .errors import EventAlreadyResolved, EventStoreError, SecurityEventNotFound


def security_event_to_dict(event: SecurityEvent) -> dict:
    return {
        "id": event.id,
        "type": event.type,
        "severity": event.severity,
        "description": event.description,
        "ip_address": event.ip_address,
        "user_agent": event.user_agent,
        "user_id": event.user_id,
        "endpoint": event.endpoint,
        "method": event.method,
        "status_code": event.status_code,
        "metadata": dict(event.event_metadata or {}),
        "resolved": event.resolved,
        "resolved_by": event.resolved_by,
        "resolved_at": isoformat(event.resolved_at),
        "notes": event.notes,
        "created_at": isoformat(event.created_at),
    }


def login_attempt_to_dict(attempt: LoginAttempt) -> dict:
    return {
        "id": attempt.id,
        "email": attempt.email,
        "ip_address": attempt.ip_address,
        "user_agent": attempt.user_agent,
        "success": attempt.success,
        "failure_reason": attempt.failure_reason,
        "user_id": attempt.user_id,
        "blocked": attempt.blocked,
        "created_at": isoformat(attempt.created_at),
    }


class EventStore:
    """Async repository over the ``login_attempts`` and ``security_events`` tables."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None):
        self._session_factory = session_factory

    @asynccontextmanager
    async def _session(self, action: str) -> AsyncIterator[AsyncSession]:
        if self._session_factory is None:
            raise EventStoreError(action, RuntimeError("no session factory configured"))
        try:
            async with self._session_factory() as session:
                yield session
        except SQLAlchemyError as e:
            raise EventStoreError(action, e) from e

    # ------------------------------------------------------------------
    # Login attempts
    # ------------------------------------------------------------------

    async def add_login_attempt(
        self,
        email: str,
        ip_address: str,
        user_agent: Optional[str],
        success: bool,
        user_id: Optional[int] = None,
        failure_reason: Optional[str] = None,
    ) -> LoginAttempt:
        async with self._session("add_login_attempt") as session:
            attempt = LoginAttempt(
                email=email,
                ip_address=ip_address,
                user_agent=user_agent,
                success=success,
                user_id=user_id,
                failure_reason=failure_reason,
                blocked=False,
                created_at=utcnow(),
            )
            session.add(attempt)
            await session.commit()
            return attempt

    async def count_failures(
        self,
        since: datetime,
        ip_address: Optional[str] = None,
        email: Optional[str] = None,
        until: Optional[datetime] = None,
    ) -> int:
        """Count failed attempts in ``(since, until]``, filtered by address and/or email."""
        query = select(func.count(LoginAttempt.id)).where(
            LoginAttempt.success.is_(False),
            LoginAttempt.created_at > since,
        )
        if until is not None:
            query = query.where(LoginAttempt.created_at <= until)
        if ip_address is not None:
            query = query.where(LoginAttempt.ip_address == ip_address)
        if email is not None:
            query = query.where(LoginAttempt.email == email)
        async with self._session("count_failures") as session:
            return (await session.execute(query)).scalar_one()

    async def is_address_blocked(self, ip_address: str) -> bool:
        query = (
            select(LoginAttempt.id)
            .where(LoginAttempt.ip_address == ip_address, LoginAttempt.blocked.is_(True))
            .limit(1)
        )
        async with self._session("is_address_blocked") as session:
            return (await session.execute(query)).first() is not None

    async def address_has_attempts(self, ip_address: str) -> bool:
        query = select(LoginAttempt.id).where(LoginAttempt.ip_address == ip_address).limit(1)
        async with self._session("address_has_attempts") as session:
            return (await session.execute(query)).first() is not None

    async def unblocked_failure_counts(
        self, since: datetime, min_count: int, until: Optional[datetime] = None
    ) -> list[tuple[str, int]]:
        """Failed, not-yet-blocked attempts in ``(since, until]`` grouped by address.

        Only groups with at least ``min_count`` rows are returned, largest first.
        """
        count = func.count(LoginAttempt.id).label("failures")
        conditions = [
            LoginAttempt.success.is_(False),
            LoginAttempt.blocked.is_(False),
            LoginAttempt.created_at > since,
        ]
        if until is not None:
            conditions.append(LoginAttempt.created_at <= until)
        query = (
            select(LoginAttempt.ip_address, count)
            .where(*conditions)
            .group_by(LoginAttempt.ip_address)
            .having(func.count(LoginAttempt.id) >= min_count)
            .order_by(count.desc())
        )
        async with self._session("unblocked_failure_counts") as session:
            rows = (await session.execute(query)).all()
        return [(ip_address, failures) for ip_address, failures in rows]

    async def block_address(
        self, ip_address: str, event: dict[str, Any] | None = None
    ) -> tuple[int, Optional[SecurityEvent]]:
        """Flag every attempt from ``ip_address`` as blocked.

        The update covers all historical rows, not only recent ones. When
        ``event`` is given and the update flipped at least one row, the
        event is written in the same transaction, so a concurrent blocker
        that finds nothing left to flip writes no second event.
        """
        async with self._session("block_address") as session:
            result = await session.execute(
                update(LoginAttempt)
                .where(LoginAttempt.ip_address == ip_address, LoginAttempt.blocked.is_(False))
                .values(blocked=True)
            )
            flipped = result.rowcount or 0
            created = None
            if event is not None and flipped > 0:
                created = self._build_event(**event)
                session.add(created)
            await session.commit()
            return flipped, created

    async def unblock_address(self, ip_address: str) -> int:
        async with self._session("unblock_address") as session:
            result = await session.execute(
                update(LoginAttempt)
                .where(LoginAttempt.ip_address == ip_address, LoginAttempt.blocked.is_(True))
                .values(blocked=False)
            )
            await session.commit()
            return result.rowcount or 0

    async def list_login_attempts(
        self, ip_address_contains: Optional[str] = None, limit: int = 100
    ) -> list[LoginAttempt]:
        query = select(LoginAttempt).order_by(LoginAttempt.created_at.desc(), LoginAttempt.id.desc())
        if ip_address_contains:
            query = query.where(LoginAttempt.ip_address.contains(ip_address_contains, autoescape=True))
        async with self._session("list_login_attempts") as session:
            return list((await session.execute(query.limit(limit))).scalars().all())

    # ------------------------------------------------------------------
    # Security events
    # ------------------------------------------------------------------

    @staticmethod
    def _build_event(
        type: SecurityEventType | str,
        severity: Severity | str,
        description: str,
        ip_address: str,
        user_agent: Optional[str] = None,
        user_id: Optional[int] = None,
        endpoint: Optional[str] = None,
        method: Optional[str] = None,
        status_code: Optional[int] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> SecurityEvent:
        return SecurityEvent(
            type=SecurityEventType(type).value,
            severity=Severity(severity).value,
            description=description,
            ip_address=ip_address,
            user_agent=user_agent,
            user_id=user_id,
            endpoint=endpoint,
            method=method,
            status_code=status_code,
            event_metadata=dict(metadata or {}),
            resolved=False,
            created_at=utcnow(),
        )

    async def add_security_event(self, **fields: Any) -> SecurityEvent:
        event = self._build_event(**fields)
        async with self._session("add_security_event") as session:
            session.add(event)
            await session.commit()
            return event

    async def has_recent_event(
        self,
        scope: str,
        subject: str,
        severity: Severity | str,
        since: datetime,
    ) -> bool:
        """Whether a detector event for ``scope``/``subject`` at ``severity`` exists after ``since``."""
        query = select(SecurityEvent.id).where(
            SecurityEvent.type == SecurityEventType.SUSPICIOUS_ACTIVITY.value,
            SecurityEvent.severity == Severity(severity).value,
            SecurityEvent.created_at > since,
            SecurityEvent.event_metadata["scope"].as_string() == scope,
        )
        if scope == "ip":
            query = query.where(SecurityEvent.ip_address == subject)
        else:
            query = query.where(SecurityEvent.event_metadata["email"].as_string() == subject)
        async with self._session("has_recent_event") as session:
            return (await session.execute(query.limit(1))).first() is not None

    async def list_security_events(
        self,
        severity: Optional[str] = None,
        type: Optional[str] = None,
        resolved: Optional[bool] = None,
        limit: int = 50,
    ) -> list[SecurityEvent]:
        query = select(SecurityEvent).order_by(SecurityEvent.created_at.desc(), SecurityEvent.id.desc())
        if severity:
            query = query.where(SecurityEvent.severity == severity)
        if type:
            query = query.where(SecurityEvent.type == type)
        if resolved is not None:
            query = query.where(SecurityEvent.resolved.is_(resolved))
        async with self._session("list_security_events") as session:
            return list((await session.execute(query.limit(limit))).scalars().all())

    async def get_security_event(self, event_id: int) -> SecurityEvent:
        async with self._session("get_security_event") as session:
            event = (await session.execute(
                select(SecurityEvent).where(SecurityEvent.id == event_id)
            )).scalar_one_or_none()
        if event is None:
            raise SecurityEventNotFound(event_id)
        return event

    async def resolve_security_event(
        self, event_id: int, resolved_by: str, notes: Optional[str] = None
    ) -> SecurityEvent:
        """Mark an event resolved exactly once.

        The conditional update only matches unresolved rows, so two
        concurrent resolutions cannot both stamp ``resolved_at``.
        """
        async with self._session("resolve_security_event") as session:
            result = await session.execute(
                update(SecurityEvent)
                .where(SecurityEvent.id == event_id, SecurityEvent.resolved.is_(False))
                .values(resolved=True, resolved_by=resolved_by, resolved_at=utcnow(), notes=notes)
            )
            await session.commit()
            changed = result.rowcount or 0

        event = await self.get_security_event(event_id)
        if changed == 0:
            raise EventAlreadyResolved(event_id)
        return event

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    async def security_stats(self, since: datetime) -> dict:
        async with self._session("security_stats") as session:
            total_events = (await session.execute(
                select(func.count(SecurityEvent.id)).where(SecurityEvent.created_at > since)
            )).scalar_one()
            critical_events = (await session.execute(
                select(func.count(SecurityEvent.id)).where(
                    SecurityEvent.created_at > since,
                    SecurityEvent.severity == Severity.CRITICAL.value,
                )
            )).scalar_one()
            total_attempts = (await session.execute(
                select(func.count(LoginAttempt.id)).where(LoginAttempt.created_at > since)
            )).scalar_one()
            failed_attempts = (await session.execute(
                select(func.count(LoginAttempt.id)).where(
                    LoginAttempt.created_at > since,
                    LoginAttempt.success.is_(False),
                )
            )).scalar_one()

            threat_count = func.count(SecurityEvent.id).label("total")
            top_threats = (await session.execute(
                select(SecurityEvent.type, threat_count)
                .where(SecurityEvent.created_at > since)
                .group_by(SecurityEvent.type)
                .order_by(threat_count.desc())
                .limit(5)
            )).all()

            ip_count = func.count(LoginAttempt.id).label("failures")
            suspicious_ips = (await session.execute(
                select(LoginAttempt.ip_address, ip_count)
                .where(LoginAttempt.created_at > since, LoginAttempt.success.is_(False))
                .group_by(LoginAttempt.ip_address)
                .order_by(ip_count.desc())
                .limit(10)
            )).all()

        if total_attempts:
            success_rate = round((total_attempts - failed_attempts) / total_attempts * 100, 1)
        else:
            success_rate = 100.0

        return {
            "overview": {
                "security_events": total_events,
                "login_attempts": total_attempts,
                "failed_logins": failed_attempts,
                "critical_events": critical_events,
                "success_rate": success_rate,
            },
            "top_threats": [{"type": type_, "count": total} for type_, total in top_threats],
            "suspicious_ips": [
                {"ip_address": ip_address, "count": failures} for ip_address, failures in suspicious_ips
            ],
        }
