"""
services/auth/router.py
Email/password authentication.
Implements: Register → Login (JWT) → Logout (deny-list) → Forgot/Reset password
"""

import logging
import uuid

from fastapi import APIRouter, Depends, Query, status
from kombu.exceptions import OperationalError
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import TokenStore, get_redis, password_reset_key
from config.settings import settings
from services.audit import service as audit
from shared.middleware.auth import TokenData, get_current_user, get_token_data
from shared.models.models import AgentProfile, User, UserRole
from shared.schemas.schemas import (
    ForgotPasswordRequest,
    LoginRequest,
    MessageResponse,
    RegisterRequest,
    ResetPasswordRequest,
    TokenResponse,
    UserResponse,
)
from shared.utils.exceptions import ConflictError, Unauthorized, ValidationError
from shared.utils.security import (
    create_access_token,
    create_reset_token,
    get_token_remaining_ttl,
    hash_password,
    hash_token,
    verify_password,
)
from tasks.notification_tasks import send_password_reset_email

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Authentication"])

FORGOT_PASSWORD_MESSAGE = "If an account with that email exists, a password reset link has been sent."


# ── Helpers ───────────────────────────────────────────────────

async def _get_user_by_email(db: AsyncSession, email: str) -> User | None:
    result = await db.execute(select(User).where(func.lower(User.email) == email.lower()))
    return result.scalar_one_or_none()


def _issue_token(user: User) -> TokenResponse:
    access_token, _ = create_access_token(
        user_id=str(user.id),
        role=UserRole(user.role).value,
        email=user.email,
    )
    return TokenResponse(
        access_token=access_token,
        expires_in=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        user=UserResponse.model_validate(user),
    )


# ── Endpoints ─────────────────────────────────────────────────

@router.post("/register", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
async def register(data: RegisterRequest, db: AsyncSession = Depends(get_db)):
    """Create an account. Agents also get an unverified AgentProfile for admin review."""
    if await _get_user_by_email(db, data.email):
        raise ConflictError("An account with this email already exists")

    user = User(
        email=data.email.lower(),
        name=data.name,
        phone=data.phone,
        password_hash=hash_password(data.password),
        role=UserRole(data.role),
    )
    db.add(user)
    await db.flush()

    if user.role == UserRole.AGENT:
        db.add(AgentProfile(
            user_id=user.id,
            license_number=data.license_number,
            company=data.company,
        ))

    await db.commit()
    logger.info(f"Registered {user.role.value} account {user.id}")
    return _issue_token(user)


@router.post("/login", response_model=TokenResponse)
async def login(data: LoginRequest, db: AsyncSession = Depends(get_db)):
    user = await _get_user_by_email(db, data.email)
    if not user or not verify_password(data.password, user.password_hash):
        raise Unauthorized("Invalid email or password")
    if not user.is_active:
        raise Unauthorized("Account is disabled")
    return _issue_token(user)


@router.post("/logout", response_model=MessageResponse)
async def logout(
    token_data: TokenData = Depends(get_token_data),
    redis=Depends(get_redis),
):
    """Add the current access token's JTI to the Redis deny-list until it expires."""
    ttl = get_token_remaining_ttl(token_data.payload)
    if ttl > 0:
        await TokenStore(redis).revoke_token(token_data.jti, ttl)
    return MessageResponse(message="Logged out successfully")


@router.get("/me", response_model=UserResponse)
async def get_me(current_user: User = Depends(get_current_user)):
    """Returns the authenticated user's profile."""
    return UserResponse.model_validate(current_user)


# ── Password Reset ────────────────────────────────────────────

@router.post("/forgot-password")
async def forgot_password(
    data: ForgotPasswordRequest,
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    """
    Issue a one-hour, single-use reset token and email the link.
    The response is identical whether or not the account exists.
    """
    response = {"success": True, "message": FORGOT_PASSWORD_MESSAGE}

    user = await _get_user_by_email(db, data.email)
    if not user or not user.is_active:
        return response

    raw_token, token_hash = create_reset_token()
    await TokenStore(redis).store_reset_token(
        token_hash, str(user.id), settings.PASSWORD_RESET_TOKEN_TTL_SECONDS
    )
    reset_url = f"{settings.APP_BASE_URL}/reset-password?token={raw_token}"

    try:
        send_password_reset_email.delay(user.email, user.name, reset_url)
    except OperationalError as e:
        # Broker down: the token is stored, the user can request again
        logger.error(f"Could not queue password reset email for {user.id}: {e}")

    if settings.is_development:
        response["reset_token"] = raw_token
    return response


@router.get("/reset-password")
async def validate_reset_token(
    token: str = Query(..., min_length=10),
    redis=Depends(get_redis),
):
    """Check a reset token without consuming it."""
    if not await redis.exists(password_reset_key(hash_token(token))):
        raise ValidationError("Invalid or expired reset token")
    return {"success": True, "message": "Token is valid"}


@router.post("/reset-password", response_model=MessageResponse)
async def reset_password(
    data: ResetPasswordRequest,
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    """Consume the token (GETDEL) and set the new password."""
    user_id = await TokenStore(redis).consume_reset_token(hash_token(data.token))
    if not user_id:
        raise ValidationError("Invalid or expired reset token")

    result = await db.execute(select(User).where(User.id == uuid.UUID(user_id)))
    user = result.scalar_one_or_none()
    if not user:
        raise ValidationError("Invalid or expired reset token")

    user.password_hash = hash_password(data.password)
    await audit.record(db, "PASSWORD_RESET", "User", user.id, actor=user)
    await db.commit()
    return MessageResponse(message="Password has been reset")
