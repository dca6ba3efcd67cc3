"""Warden configuration system using Pydantic Settings."""

from __future__ import annotations

from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DUPLICATE_POLICIES = {"every_attempt", "once_per_window"}


class WardenConfig(BaseSettings):
    """Main configuration class. Loads from .env file and environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # App
    app_name: str = "WARDEN"
    debug: bool = False
    host: str = "127.0.0.1"
    port: int = 3001
    cors_origins: str = "http://localhost:5173,http://localhost:3000"

    # Database
    database_url: str = "sqlite+aiosqlite:///./warden.db"

    # Auth
    secret_key: str = "CHANGE_ME_IN_PRODUCTION"
    jwt_algorithm: str = "HS256"
    jwt_expiry_minutes: int = 60
    admin_roles: list[str] = ["admin", "super_admin"]
    bootstrap_admin_email: Optional[str] = None
    bootstrap_admin_password: Optional[str] = None

    # Client address resolution
    trust_proxy_headers: bool = False  # honour the first X-Forwarded-For hop

    # Logging
    log_dir: str = "logs"
    log_max_bytes: int = 10_000_000
    log_backup_count: int = 5

    # Global rate limit (all routes except exempt paths)
    rate_limit_max_requests: int = 100
    rate_limit_window_seconds: int = 900  # 15 minutes
    rate_limit_exempt_paths: list[str] = ["/health"]

    # Anomaly Detector
    anomaly_window_minutes: int = 60
    ip_failure_medium_threshold: int = 10
    ip_failure_high_threshold: int = 20
    email_failure_medium_threshold: int = 5
    email_failure_high_threshold: int = 10
    anomaly_duplicate_policy: str = "every_attempt"

    # Request Monitor
    slow_response_ms: int = 10_000

    # Auto-Blocker
    auto_block_enabled: bool = True
    auto_block_interval_seconds: int = 600  # 10 minutes
    auto_block_threshold: int = 50

    @field_validator("anomaly_duplicate_policy")
    @classmethod
    def validate_duplicate_policy(cls, v: str) -> str:
        if v not in DUPLICATE_POLICIES:
            raise ValueError(f"anomaly_duplicate_policy must be one of {DUPLICATE_POLICIES}")
        return v

    @field_validator("ip_failure_high_threshold")
    @classmethod
    def validate_ip_thresholds(cls, v: int, info) -> int:
        medium = info.data.get("ip_failure_medium_threshold")
        if medium is not None and v < medium:
            raise ValueError("ip_failure_high_threshold must be >= ip_failure_medium_threshold")
        return v

    @field_validator("email_failure_high_threshold")
    @classmethod
    def validate_email_thresholds(cls, v: int, info) -> int:
        medium = info.data.get("email_failure_medium_threshold")
        if medium is not None and v < medium:
            raise ValueError("email_failure_high_threshold must be >= email_failure_medium_threshold")
        return v


def get_config() -> WardenConfig:
    """Factory function to create config instance."""
    return WardenConfig()
