"""Timestamp helpers.

Timestamps are stored as naive UTC so the same values compare correctly
on SQLite and on PostgreSQL ``timestamp without time zone`` columns.
"""

from datetime import datetime, timezone


def utcnow() -> datetime:
    """Current time as a naive UTC datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def isoformat(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.replace(tzinfo=timezone.utc).isoformat()
