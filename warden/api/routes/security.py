"""Security review routes — events, login attempts, statistics, blocking."""

from datetime import timedelta
from typing import Literal, Optional

from fastapi import APIRouter, Body, Depends, Query
from pydantic import BaseModel, Field, field_validator

from ...auth.rbac import require_admin
from ...dependencies import get_auto_blocker, get_event_store
from ...models.security_event import SecurityEventType, Severity
from ...modules.auto_blocker import AutoBlocker
from ...monitoring.errors import UnknownAddress
from ...monitoring.event_store import EventStore, login_attempt_to_dict, security_event_to_dict
from ...utils.clock import utcnow
from ...utils.logging import get_logger
from ...utils.network import validate_ip_address

logger = get_logger("api.security")

router = APIRouter(prefix="/security", tags=["security"])


@router.get("/events")
async def list_security_events(
    limit: int = Query(50, ge=1, le=500),
    severity: Optional[Severity] = None,
    event_type: Optional[SecurityEventType] = Query(None, alias="type"),
    resolved: Optional[bool] = None,
    store: EventStore = Depends(get_event_store),
    current_user: dict = Depends(require_admin),
):
    """Most recent security events first, optionally filtered."""
    events = await store.list_security_events(
        severity=severity.value if severity else None,
        type=event_type.value if event_type else None,
        resolved=resolved,
        limit=limit,
    )
    return [security_event_to_dict(e) for e in events]


@router.get("/login-attempts")
async def list_login_attempts(
    limit: int = Query(100, ge=1, le=500),
    ip: Optional[str] = Query(None, max_length=45, description="Substring of the source address"),
    store: EventStore = Depends(get_event_store),
    current_user: dict = Depends(require_admin),
):
    """Most recent login attempts first."""
    attempts = await store.list_login_attempts(ip_address_contains=ip, limit=limit)
    return [login_attempt_to_dict(a) for a in attempts]


@router.get("/stats")
async def get_security_stats(
    days: int = Query(7, ge=1, le=365),
    store: EventStore = Depends(get_event_store),
    current_user: dict = Depends(require_admin),
):
    """Overview counts, top threat types and most-failing addresses over ``days``."""
    stats = await store.security_stats(utcnow() - timedelta(days=days))
    return {"window_days": days, **stats}


class ResolveRequest(BaseModel):
    notes: Optional[str] = Field(None, max_length=2000)


@router.patch("/events/{event_id}/resolve")
async def resolve_security_event(
    event_id: int,
    body: Optional[ResolveRequest] = Body(None),
    store: EventStore = Depends(get_event_store),
    current_user: dict = Depends(require_admin),
):
    """Mark an event resolved. Already-resolved events are rejected with 409."""
    event = await store.resolve_security_event(
        event_id,
        resolved_by=current_user["sub"],
        notes=body.notes if body else None,
    )
    logger.info("security_event_resolved", id=event_id, by=current_user["sub"])
    return security_event_to_dict(event)


class IPBlockRequest(BaseModel):
    ip_address: str
    action: Literal["block", "unblock"]
    reason: str = Field(..., min_length=1, max_length=500)

    @field_validator("ip_address")
    @classmethod
    def _valid_ip(cls, v: str) -> str:
        return validate_ip_address(v)


@router.post("/ip-block")
async def set_ip_block_state(
    body: IPBlockRequest,
    store: EventStore = Depends(get_event_store),
    current_user: dict = Depends(require_admin),
):
    """Manually block or unblock a source address."""
    if body.action == "block":
        if not await store.address_has_attempts(body.ip_address):
            raise UnknownAddress(body.ip_address)
        rows, _ = await store.block_address(body.ip_address)
    else:
        rows = await store.unblock_address(body.ip_address)

    logger.warning(
        "ip_block_state_changed",
        ip=body.ip_address,
        action=body.action,
        reason=body.reason,
        by=current_user["sub"],
        rows_updated=rows,
    )
    return {
        "ip_address": body.ip_address,
        "action": body.action,
        "blocked": body.action == "block",
        "rows_updated": rows,
    }


@router.get("/auto-blocker")
async def get_auto_blocker_status(
    blocker: AutoBlocker = Depends(get_auto_blocker),
    current_user: dict = Depends(require_admin),
):
    """Auto-blocker lifecycle state and sweep counters."""
    health = await blocker.health_check()
    report = blocker.last_report
    return {
        **blocker.get_status(),
        **health,
        "last_report": report.to_dict() if report else None,
    }


@router.post("/auto-blocker/sweep")
async def run_auto_block_sweep(
    blocker: AutoBlocker = Depends(get_auto_blocker),
    current_user: dict = Depends(require_admin),
):
    """Run a sweep now. Returns ``skipped`` if one is already in progress."""
    report = await blocker.run_sweep()
    logger.info("auto_block_sweep_requested", by=current_user["sub"], skipped=report.skipped)
    return report.to_dict()
