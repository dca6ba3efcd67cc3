"""Global per-address rate limiting for every route except exempt paths."""

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from ..utils.logging import get_logger
from ..utils.network import get_client_ip
from ..utils.rate_limiter import RateLimiter

logger = get_logger("middleware.rate_limit")

RATE_LIMIT_MESSAGE = "Too many requests from this IP, please try again later."

_global_limiter: RateLimiter | None = None


def get_global_limiter() -> RateLimiter:
    global _global_limiter
    if _global_limiter is None:
        from ..dependencies import get_app_config
        config = get_app_config()
        _global_limiter = RateLimiter(
            max_attempts=config.rate_limit_max_requests,
            window_seconds=config.rate_limit_window_seconds,
        )
    return _global_limiter


def reset_rate_limits() -> None:
    """Drop the limiter so the next request rebuilds it from config."""
    global _global_limiter
    _global_limiter = None


class GlobalRateLimitMiddleware(BaseHTTPMiddleware):
    """Rejects requests over the per-address budget with HTTP 429.

    Sits inside the request monitor, so every rejection it issues is
    observed and recorded as a ``rate_limit_exceeded`` event.
    """

    def __init__(self, app, exempt_paths: list[str] | None = None, trust_proxy_headers: bool | None = None):
        super().__init__(app)
        self._exempt_paths = exempt_paths
        self._trust_proxy_headers = trust_proxy_headers

    def _settings(self) -> tuple[set[str], bool]:
        if self._exempt_paths is None or self._trust_proxy_headers is None:
            from ..dependencies import get_app_config
            config = get_app_config()
            if self._exempt_paths is None:
                self._exempt_paths = list(config.rate_limit_exempt_paths)
            if self._trust_proxy_headers is None:
                self._trust_proxy_headers = config.trust_proxy_headers
        return set(self._exempt_paths), self._trust_proxy_headers

    async def dispatch(self, request: Request, call_next) -> Response:
        exempt_paths, trust_proxy = self._settings()
        path = request.url.path
        if path in exempt_paths or request.method == "OPTIONS":
            return await call_next(request)

        limiter = get_global_limiter()
        client_ip = get_client_ip(request, trust_proxy)
        if not limiter.hit(client_ip):
            logger.warning("rate_limit_global", ip=client_ip, path=path)
            return JSONResponse(
                status_code=429,
                content={"error": RATE_LIMIT_MESSAGE},
                headers={
                    "X-RateLimit-Remaining": "0",
                    "Retry-After": str(limiter.window_seconds),
                },
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Remaining"] = str(limiter.remaining_attempts(client_ip))
        return response
