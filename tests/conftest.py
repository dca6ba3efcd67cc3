"""Shared test fixtures."""

from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from warden.models.base import Base
from warden.models.login_attempt import LoginAttempt
from warden.monitoring.errors import EventStoreError
from warden.monitoring.event_store import EventStore
from warden.utils.clock import utcnow


@pytest_asyncio.fixture
async def session_factory():
    """Fresh in-memory database per test."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def store(session_factory):
    return EventStore(session_factory)


@pytest.fixture
def seed_attempts(session_factory):
    """Insert login attempts directly, with control over their age.

    When ``email`` is None each row gets its own address so that only the
    per-IP count grows; likewise ``ip_address=None`` varies the address.
    """

    async def _seed(
        count: int,
        ip_address: str | None = "198.51.100.10",
        email: str | None = None,
        success: bool = False,
        blocked: bool = False,
        age: timedelta = timedelta(minutes=1),
        now: datetime | None = None,
    ) -> None:
        created_at = (now or utcnow()) - age
        async with session_factory() as session:
            for i in range(count):
                session.add(LoginAttempt(
                    email=email or f"user{i}@example.com",
                    ip_address=ip_address or f"192.0.2.{i % 250 + 1}",
                    user_agent="pytest",
                    success=success,
                    failure_reason=None if success else "invalid_password",
                    blocked=blocked,
                    created_at=created_at,
                ))
            await session.commit()

    return _seed


@pytest.fixture
def failing_store():
    """An EventStore whose every call fails like an unreachable database."""
    store = MagicMock(spec=EventStore)
    error = EventStoreError("test", RuntimeError("database is down"))
    for name in (
        "add_login_attempt",
        "count_failures",
        "is_address_blocked",
        "address_has_attempts",
        "unblocked_failure_counts",
        "block_address",
        "unblock_address",
        "add_security_event",
        "has_recent_event",
    ):
        setattr(store, name, AsyncMock(side_effect=error))
    return store
