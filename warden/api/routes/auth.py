"""Authentication routes. Every attempt feeds the security monitoring pipeline."""

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ...config import WardenConfig
from ...dependencies import get_app_config, get_attempt_recorder, get_current_user, get_db
from ...models.user import User
from ...monitoring.attempt_recorder import AttemptRecorder
from ...utils.clock import utcnow
from ...utils.logging import get_logger
from ...utils.network import get_client_ip
from ...utils.security import create_access_token, verify_password

logger = get_logger("api.auth")

router = APIRouter(prefix="/auth", tags=["auth"])

FAILURE_UNKNOWN_USER = "user_not_found"
FAILURE_BAD_PASSWORD = "invalid_password"
FAILURE_DISABLED = "account_disabled"


class LoginRequest(BaseModel):
    email: str = Field(..., min_length=1, max_length=255)
    password: str = Field(..., min_length=1, max_length=1024)


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    role: str


@router.post("/login", response_model=TokenResponse)
async def login(
    body: LoginRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    config: WardenConfig = Depends(get_app_config),
    recorder: AttemptRecorder = Depends(get_attempt_recorder),
):
    """Authenticate with email and password and return a JWT."""
    client_ip = get_client_ip(request, config.trust_proxy_headers)
    user_agent = request.headers.get("user-agent")
    email = body.email.strip().lower()

    user = (await db.execute(select(User).where(User.email == email))).scalar_one_or_none()

    failure_reason = None
    if user is None:
        failure_reason = FAILURE_UNKNOWN_USER
    elif not verify_password(body.password, user.password_hash):
        failure_reason = FAILURE_BAD_PASSWORD
    elif not user.is_active:
        failure_reason = FAILURE_DISABLED

    if failure_reason is not None:
        # The result's error channel is ignored: monitoring never fails a login.
        await recorder.record_attempt(
            email,
            client_ip,
            user_agent,
            success=False,
            user_id=user.id if user else None,
            failure_reason=failure_reason,
        )
        logger.info("login_failed", email=email, ip=client_ip, reason=failure_reason)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )

    user.last_login = utcnow()
    await db.commit()

    await recorder.record_attempt(email, client_ip, user_agent, success=True, user_id=user.id)
    logger.info("login_succeeded", email=email, ip=client_ip)

    token = create_access_token(
        {"sub": user.email, "uid": user.id, "role": user.role},
        config.secret_key,
        config.jwt_algorithm,
        config.jwt_expiry_minutes,
    )
    return TokenResponse(
        access_token=token,
        expires_in=config.jwt_expiry_minutes * 60,
        role=user.role,
    )


@router.get("/me")
async def whoami(current_user: dict = Depends(get_current_user)):
    """Return the identity behind the bearer token."""
    return {
        "email": current_user["sub"],
        "user_id": current_user["uid"],
        "role": current_user["role"],
    }
