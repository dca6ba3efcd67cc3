"""Role checks for administrative routes."""

from fastapi import Depends, HTTPException, status

from ..config import WardenConfig
from ..dependencies import get_app_config, get_current_user
from ..utils.logging import get_logger

logger = get_logger("auth.rbac")

ROLE_USER = "user"
ROLE_ADMIN = "admin"
ROLE_SUPER_ADMIN = "super_admin"


async def require_admin(
    current_user: dict = Depends(get_current_user),
    config: WardenConfig = Depends(get_app_config),
) -> dict:
    """The current user must hold one of the configured administrative roles."""
    if current_user.get("role") not in config.admin_roles:
        logger.warning(
            "admin_check_denied",
            user=current_user.get("sub"),
            role=current_user.get("role"),
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Administrator access required",
        )
    return current_user
