"""Request Monitor — inspects every finished request for suspicious patterns.

The evaluation is attached to the outgoing response as a background task,
so it runs only after the last body chunk has been sent: the client never
waits on it and its status code and timing are final.
"""

import time
from typing import Optional

from starlette.background import BackgroundTask
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from ..models.security_event import SecurityEventType, Severity
from ..monitoring.event_store import EventStore, security_event_to_dict
from ..monitoring.result import MonitorResult
from ..utils.logging import get_logger
from ..utils.network import get_client_ip

logger = get_logger("middleware.request_monitor")

UNAUTHORIZED_STATUSES = {401, 403}
RATE_LIMITED_STATUS = 429


def evaluate_request(
    method: str,
    path: str,
    status_code: int,
    response_time_ms: float,
    slow_response_ms: int = 10_000,
) -> list[dict]:
    """Return the events a finished request should raise. Rules are independent."""
    findings = []
    if status_code == RATE_LIMITED_STATUS:
        findings.append({
            "type": SecurityEventType.RATE_LIMIT_EXCEEDED,
            "severity": Severity.MEDIUM,
            "description": f"Rate limit exceeded for {method} {path}",
        })
    if status_code in UNAUTHORIZED_STATUSES:
        findings.append({
            "type": SecurityEventType.UNAUTHORIZED_ACCESS,
            "severity": Severity.MEDIUM,
            "description": f"Unauthorized access attempt to {method} {path}",
        })
    if response_time_ms > slow_response_ms:
        findings.append({
            "type": SecurityEventType.SUSPICIOUS_ACTIVITY,
            "severity": Severity.LOW,
            "description": (
                f"Unusually slow response time: {round(response_time_ms)}ms for {method} {path}"
            ),
        })
    return findings


class RequestMonitor:
    def __init__(self, store: EventStore, slow_response_ms: int = 10_000):
        self._store = store
        self._slow_response_ms = slow_response_ms

    async def on_request_complete(
        self,
        method: str,
        path: str,
        ip_address: str,
        status_code: int,
        response_time_ms: float,
        user_agent: Optional[str] = None,
        user_id: Optional[int] = None,
    ) -> MonitorResult:
        """Record an event for each rule the request trips. Never raises."""
        raised: list[dict] = []
        error: Optional[Exception] = None
        for finding in evaluate_request(method, path, status_code, response_time_ms, self._slow_response_ms):
            try:
                event = await self._store.add_security_event(
                    **finding,
                    ip_address=ip_address,
                    user_agent=user_agent,
                    user_id=user_id,
                    endpoint=path,
                    method=method,
                    status_code=status_code,
                    metadata={"response_time": round(response_time_ms)},
                )
            except Exception as e:
                logger.error(
                    "request_monitor_record_failed",
                    ip=ip_address,
                    path=path,
                    status_code=status_code,
                    event_type=finding["type"].value,
                    error=str(e),
                )
                error = error or e
                continue
            raised.append(security_event_to_dict(event))
        if error is not None:
            return MonitorResult.failed(error, events=raised)
        return MonitorResult(events=raised)


class RequestMonitorMiddleware(BaseHTTPMiddleware):
    """Times each request and evaluates it once the response is complete."""

    def __init__(self, app, monitor: RequestMonitor | None = None, config=None):
        super().__init__(app)
        self._monitor = monitor
        self._config = config

    def _get_config(self):
        if self._config is None:
            from ..dependencies import get_app_config
            self._config = get_app_config()
        return self._config

    def _get_monitor(self) -> RequestMonitor:
        if self._monitor is None:
            from ..dependencies import get_event_store
            self._monitor = RequestMonitor(get_event_store(), self._get_config().slow_response_ms)
        return self._monitor

    async def dispatch(self, request: Request, call_next) -> Response:
        started = time.perf_counter()
        response = await call_next(request)

        config = self._get_config()
        monitor = self._get_monitor()
        method = request.method
        path = request.url.path
        ip_address = get_client_ip(request, config.trust_proxy_headers)
        user_agent = request.headers.get("user-agent")
        user_id = self._extract_user_id(request)
        status_code = response.status_code
        previous = response.background

        async def _after_response() -> None:
            try:
                if previous is not None:
                    await previous()
            finally:
                await monitor.on_request_complete(
                    method=method,
                    path=path,
                    ip_address=ip_address,
                    status_code=status_code,
                    response_time_ms=(time.perf_counter() - started) * 1000,
                    user_agent=user_agent,
                    user_id=user_id,
                )

        response.background = BackgroundTask(_after_response)
        return response

    def _extract_user_id(self, request: Request) -> Optional[int]:
        """User id from a valid bearer token, if the request carried one."""
        auth = request.headers.get("authorization", "")
        if not auth.startswith("Bearer "):
            return None
        from ..utils.security import decode_access_token

        config = self._get_config()
        payload = decode_access_token(auth[7:], config.secret_key, config.jwt_algorithm)
        if not payload:
            return None
        uid = payload.get("uid")
        return uid if isinstance(uid, int) else None
