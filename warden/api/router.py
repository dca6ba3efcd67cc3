"""Master API router — includes all sub-routers."""

from fastapi import APIRouter

from .routes.auth import router as auth_router
from .routes.security import router as security_router

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(auth_router)
api_router.include_router(security_router)
