"""Access Guard — denies requests from blocked source addresses.

Installed directly inside the CORS layer, so a blocked address is turned
away before the monitor, the rate limiter or any route sees it, while the
denial still carries CORS headers. The lookup fails open: if the store
cannot be read, the request is allowed through rather than taking the
whole service down with the monitoring database.
"""

from dataclasses import dataclass, field
from typing import Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from ..models.security_event import SecurityEventType, Severity
from ..monitoring.event_store import EventStore
from ..utils.logging import get_logger
from ..utils.network import get_client_ip

logger = get_logger("middleware.access_guard")

DENIAL_MESSAGE = "Access denied. Your IP address has been blocked due to suspicious activity."

# CORS preflights never reach route handlers
SKIP_METHODS = {"OPTIONS"}


@dataclass(frozen=True)
class GuardDecision:
    allowed: bool
    status_code: int = 200
    body: dict = field(default_factory=dict)

    @classmethod
    def allow(cls) -> "GuardDecision":
        return cls(allowed=True)

    @classmethod
    def deny(cls) -> "GuardDecision":
        return cls(allowed=False, status_code=403, body={"error": DENIAL_MESSAGE})


class AccessGuard:
    def __init__(self, store: EventStore):
        self._store = store

    async def check_and_maybe_deny(
        self,
        ip_address: str,
        method: Optional[str] = None,
        path: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> GuardDecision:
        try:
            blocked = await self._store.is_address_blocked(ip_address)
        except Exception as e:
            logger.warning("access_guard_lookup_failed", ip=ip_address, error=str(e))
            return GuardDecision.allow()

        if not blocked:
            return GuardDecision.allow()

        try:
            await self._store.add_security_event(
                type=SecurityEventType.UNAUTHORIZED_ACCESS,
                severity=Severity.HIGH,
                description=f"Blocked IP attempted access: {ip_address}",
                ip_address=ip_address,
                user_agent=user_agent,
                endpoint=path,
                method=method,
                metadata={"blocked": True},
            )
        except Exception as e:
            # The address is known to be blocked; deny regardless.
            logger.error("access_guard_event_failed", ip=ip_address, error=str(e))

        logger.warning("access_denied_blocked_ip", ip=ip_address, method=method, path=path)
        return GuardDecision.deny()


class AccessGuardMiddleware(BaseHTTPMiddleware):
    """Short-circuits requests from blocked addresses with HTTP 403."""

    def __init__(self, app, guard: AccessGuard | None = None, trust_proxy_headers: bool | None = None):
        super().__init__(app)
        self._guard = guard
        self._trust_proxy_headers = trust_proxy_headers

    def _get_guard(self) -> AccessGuard:
        if self._guard is None:
            from ..dependencies import get_event_store
            self._guard = AccessGuard(get_event_store())
        return self._guard

    def _trust_proxy(self) -> bool:
        if self._trust_proxy_headers is None:
            from ..dependencies import get_app_config
            self._trust_proxy_headers = get_app_config().trust_proxy_headers
        return self._trust_proxy_headers

    async def dispatch(self, request: Request, call_next) -> Response:
        if request.method in SKIP_METHODS:
            return await call_next(request)

        decision = await self._get_guard().check_and_maybe_deny(
            get_client_ip(request, self._trust_proxy()),
            method=request.method,
            path=request.url.path,
            user_agent=request.headers.get("user-agent"),
        )
        if not decision.allowed:
            return JSONResponse(status_code=decision.status_code, content=decision.body)
        return await call_next(request)
