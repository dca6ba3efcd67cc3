"""Login attempt model — one row per authentication attempt."""

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from ..utils.clock import utcnow
from .base import Base


class LoginAttempt(Base):
    """Append-only record of a login attempt.

    ``blocked`` is the only mutable column. It is never set on insert; the
    auto-blocker (or a manual admin override) flips it for every row of a
    source address at once.
    """

    __tablename__ = "login_attempts"
    __table_args__ = (
        Index("ix_login_attempts_success_created", "success", "created_at"),
        Index("ix_login_attempts_ip_blocked", "ip_address", "blocked"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    ip_address: Mapped[str] = mapped_column(String(45), nullable=False, index=True)
    user_agent: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    failure_reason: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    user_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    blocked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, nullable=False, index=True
    )
