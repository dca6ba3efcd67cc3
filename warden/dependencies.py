"""FastAPI dependency injection providers."""

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .config import WardenConfig, get_config
from .database import get_session, get_session_factory
from .modules.auto_blocker import AutoBlocker
from .monitoring.anomaly_detector import AnomalyDetector
from .monitoring.attempt_recorder import AttemptRecorder
from .monitoring.event_store import EventStore
from .utils.logging import get_logger
from .utils.security import decode_access_token

_dep_logger = get_logger("dependencies")

security_scheme = HTTPBearer(auto_error=False)

_config_instance: WardenConfig | None = None
_event_store: EventStore | None = None
_anomaly_detector: AnomalyDetector | None = None
_attempt_recorder: AttemptRecorder | None = None
_auto_blocker: AutoBlocker | None = None


def get_app_config() -> WardenConfig:
    """Get the application config singleton."""
    global _config_instance
    if _config_instance is None:
        _config_instance = get_config()
    return _config_instance


async def get_db(config: WardenConfig = Depends(get_app_config)):
    """Get an async database session."""
    async for session in get_session(config):
        yield session


def get_event_store() -> EventStore:
    global _event_store
    if _event_store is None:
        _event_store = EventStore(get_session_factory(get_app_config()))
    return _event_store


def get_anomaly_detector() -> AnomalyDetector:
    global _anomaly_detector
    if _anomaly_detector is None:
        _anomaly_detector = AnomalyDetector.from_config(get_event_store(), get_app_config())
    return _anomaly_detector


def get_attempt_recorder() -> AttemptRecorder:
    global _attempt_recorder
    if _attempt_recorder is None:
        _attempt_recorder = AttemptRecorder(get_event_store(), get_anomaly_detector())
    return _attempt_recorder


def get_auto_blocker() -> AutoBlocker:
    global _auto_blocker
    if _auto_blocker is None:
        config = get_app_config()
        _auto_blocker = AutoBlocker(
            get_event_store(),
            config={
                "interval_seconds": config.auto_block_interval_seconds,
                "threshold": config.auto_block_threshold,
                "window_minutes": config.anomaly_window_minutes,
            },
        )
    return _auto_blocker


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(security_scheme),
    db: AsyncSession = Depends(get_db),
    config: WardenConfig = Depends(get_app_config),
) -> dict:
    """Resolve the bearer token to an active user.

    Returns the token payload (``sub`` = email, ``uid``, ``role``) with the
    role refreshed from the database.
    """
    from .models.user import User

    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = decode_access_token(credentials.credentials, config.secret_key, config.jwt_algorithm)
    if payload is None or "uid" not in payload:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user = (await db.execute(select(User).where(User.id == payload["uid"]))).scalar_one_or_none()
    if user is None or not user.is_active:
        _dep_logger.warning("token_for_inactive_user", uid=payload.get("uid"))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return {**payload, "sub": user.email, "role": user.role}
