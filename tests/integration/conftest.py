"""Integration test fixtures — in-memory app, async client, admin auth."""

import os
import tempfile

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

# Force test config BEFORE any app imports
os.environ["DEBUG"] = "false"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["SECRET_KEY"] = "test-secret-key-for-integration-tests"
os.environ["AUTO_BLOCK_ENABLED"] = "false"
os.environ["LOG_DIR"] = tempfile.mkdtemp(prefix="warden-logs-")

import warden.database as db_mod
import warden.dependencies as dep_mod
from warden.middleware.rate_limit import reset_rate_limits

ADMIN_EMAIL = "admin@warden.test"
ADMIN_PASSWORD = "admin-password"
CLERK_EMAIL = "clerk@warden.test"
CLERK_PASSWORD = "clerk-password"


def _reset_singletons():
    """Reset all module-level singletons so each test session starts clean."""
    db_mod._engine = None
    db_mod._session_factory = None
    dep_mod._config_instance = None
    dep_mod._event_store = None
    dep_mod._anomaly_detector = None
    dep_mod._attempt_recorder = None
    dep_mod._auto_blocker = None
    reset_rate_limits()


@pytest_asyncio.fixture(scope="session", loop_scope="session")
async def test_app():
    """Create test app with in-memory database (shared via StaticPool)."""
    _reset_singletons()

    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    # Inject into database module BEFORE app import
    db_mod._engine = engine
    factory = async_sessionmaker(engine, expire_on_commit=False)
    db_mod._session_factory = factory

    dep_mod.get_app_config()

    from warden.models.base import Base
    from warden.main import app

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    # Seed one administrator and one regular user
    from warden.models.user import User
    from warden.utils.security import hash_password

    async with factory() as session:
        session.add(User(email=ADMIN_EMAIL, password_hash=hash_password(ADMIN_PASSWORD), role="admin"))
        session.add(User(email=CLERK_EMAIL, password_hash=hash_password(CLERK_PASSWORD), role="user"))
        await session.commit()

    yield app

    await engine.dispose()
    _reset_singletons()


@pytest_asyncio.fixture(autouse=True, loop_scope="session")
async def clean_monitoring_state(test_app):
    """Every test starts with no attempts, no events and fresh limits."""
    from warden.models.login_attempt import LoginAttempt
    from warden.models.security_event import SecurityEvent

    reset_rate_limits()
    dep_mod._auto_blocker = None
    async with db_mod._session_factory() as session:
        await session.execute(delete(SecurityEvent))
        await session.execute(delete(LoginAttempt))
        await session.commit()
    yield


@pytest_asyncio.fixture(loop_scope="session")
async def client(test_app):
    """Async HTTP client for testing."""
    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest_asyncio.fixture(loop_scope="session")
async def client_from(test_app):
    """Factory for clients that appear to connect from a given address."""
    clients = []

    def _make(ip_address: str) -> AsyncClient:
        ac = AsyncClient(
            transport=ASGITransport(app=test_app, client=(ip_address, 50000)),
            base_url="http://test",
        )
        clients.append(ac)
        return ac

    yield _make
    for ac in clients:
        await ac.aclose()


async def _login_headers(client, email, password):
    resp = await client.post("/api/v1/auth/login", json={"email": email, "password": password})
    assert resp.status_code == 200, f"Login failed: {resp.text}"
    return {"Authorization": f"Bearer {resp.json()['access_token']}"}


@pytest_asyncio.fixture(loop_scope="session")
async def admin_headers(client):
    """Get auth headers for the admin user."""
    return await _login_headers(client, ADMIN_EMAIL, ADMIN_PASSWORD)


@pytest_asyncio.fixture(loop_scope="session")
async def clerk_headers(client):
    """Get auth headers for a non-admin user."""
    return await _login_headers(client, CLERK_EMAIL, CLERK_PASSWORD)
