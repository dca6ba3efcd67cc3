"""Warden — security monitoring service for the inventory backend.

FastAPI entry point with lifespan management, middleware chain and the
auto-blocker background module.
"""

import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import select

from .api.router import api_router
from .auth.rbac import ROLE_SUPER_ADMIN
from .database import close_engine, create_tables, get_session_factory
from .dependencies import get_app_config, get_auto_blocker
from .middleware.access_guard import AccessGuardMiddleware
from .middleware.error_handler import register_error_handlers
from .middleware.rate_limit import GlobalRateLimitMiddleware
from .middleware.request_monitor import RequestMonitorMiddleware
from .models.user import User
from .utils.logging import get_logger, setup_logging
from .utils.security import hash_password

config = get_app_config()
setup_logging(
    debug=config.debug,
    log_dir=config.log_dir,
    log_max_bytes=config.log_max_bytes,
    log_backup_count=config.log_backup_count,
    service=config.app_name.lower(),
)
logger = get_logger("warden.main")

_started_at = time.monotonic()


async def _bootstrap_admin(factory) -> None:
    """Create the configured bootstrap administrator if it does not exist (idempotent)."""
    if not (config.bootstrap_admin_email and config.bootstrap_admin_password):
        return
    email = config.bootstrap_admin_email.strip().lower()
    try:
        async with factory() as session:
            existing = (await session.execute(select(User).where(User.email == email))).scalar_one_or_none()
            if existing is not None:
                return
            session.add(User(
                email=email,
                password_hash=hash_password(config.bootstrap_admin_password),
                role=ROLE_SUPER_ADMIN,
            ))
            await session.commit()
        logger.info("bootstrap_admin_created", email=email)
    except Exception as e:
        logger.error("bootstrap_admin_failed", error=str(e))


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown."""
    logger.info("warden_starting", debug=config.debug)
    await create_tables(config)
    await _bootstrap_admin(get_session_factory(config))

    auto_blocker = None
    if config.auto_block_enabled:
        auto_blocker = get_auto_blocker()
        await auto_blocker.start()

    yield

    logger.info("warden_stopping")
    if auto_blocker is not None:
        await auto_blocker.stop()
    await close_engine()


app = FastAPI(
    title=config.app_name,
    description="Login monitoring, anomaly detection and address blocking",
    version="1.0.0",
    docs_url="/docs" if config.debug else None,
    redoc_url=None,
    lifespan=lifespan,
)

register_error_handlers(app)

# Middleware is added innermost first; the last one added runs first.

# Global rate limit: inside the request monitor so its 429s are recorded
app.add_middleware(GlobalRateLimitMiddleware)

# Request monitor: evaluates every response after it has been sent
app.add_middleware(RequestMonitorMiddleware)

# Access guard: blocked addresses never reach the monitor or the routes
app.add_middleware(AccessGuardMiddleware)

# CORS outermost, so denials and preflights both carry the CORS headers
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in config.cors_origins.split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-API-Key"],
)

app.include_router(api_router)


@app.get("/health")
async def health():
    """Liveness check. Exempt from rate limiting, still observed by the monitor."""
    auto_blocker = await get_auto_blocker().health_check()
    return {
        "status": "OK",
        "service": config.app_name,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "uptime_seconds": round(time.monotonic() - _started_at, 1),
        "modules": {"auto_blocker": auto_blocker},
    }


def main():
    """Run the service with uvicorn."""
    uvicorn.run(
        "warden.main:app",
        host=config.host,
        port=config.port,
        reload=config.debug,
        log_level="debug" if config.debug else "info",
    )


if __name__ == "__main__":
    main()
