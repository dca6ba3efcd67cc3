"""SQLAlchemy models package."""

from .base import Base
from .user import User
from .login_attempt import LoginAttempt
from .security_event import SecurityEvent, SecurityEventType, Severity

__all__ = [
    "Base",
    "User",
    "LoginAttempt",
    "SecurityEvent",
    "SecurityEventType",
    "Severity",
]
