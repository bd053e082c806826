"""
shared/middleware/auth.py
FastAPI dependency functions for authentication and authorization.
"""

import uuid
from typing import Optional
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import TokenStore, get_redis
from shared.models.models import User, UserRole
from shared.utils.exceptions import Forbidden, Unauthorized
from shared.utils.security import verify_access_token

security = HTTPBearer(auto_error=False)


class TokenData:
    def __init__(self, payload: dict):
        self.user_id: str = payload["sub"]
        self.role: UserRole = UserRole(payload["role"])
        self.email: str = payload["email"]
        self.jti: str = payload["jti"]
        self.payload = payload


async def get_token_data(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    redis=Depends(get_redis),
) -> TokenData:
    """
    Extract and validate JWT from Authorization header.
    Checks deny-list in Redis to handle revoked tokens (logout).
    """
    if not credentials:
        raise Unauthorized("Authentication required")

    try:
        payload = verify_access_token(credentials.credentials)
    except JWTError:
        raise Unauthorized("Invalid or expired token")

    jti = payload.get("jti")
    if jti and await TokenStore(redis).is_token_revoked(jti):
        raise Unauthorized("Token has been revoked")

    return TokenData(payload)


async def get_current_user(
    token_data: TokenData = Depends(get_token_data),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Load full User object from database using JWT sub claim."""
    try:
        user_id = uuid.UUID(token_data.user_id)
    except ValueError:
        raise Unauthorized("Invalid or expired token")

    user = await db.get(User, user_id)
    if not user:
        raise Unauthorized("User not found")
    if not user.is_active:
        raise Forbidden("User account is inactive")
    return user


class RoleRequired:
    """Dependency factory for role-based access control."""

    def __init__(self, *roles: UserRole):
        self.roles = roles

    async def __call__(
        self,
        current_user: User = Depends(get_current_user),
    ) -> User:
        if current_user.role not in self.roles:
            raise Forbidden(f"Required role: {[r.value for r in self.roles]}")
        return current_user


# Convenience role dependencies
require_lister = RoleRequired(UserRole.OWNER, UserRole.AGENT, UserRole.ADMIN)
require_admin = RoleRequired(UserRole.ADMIN)


async def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
) -> Optional[User]:
    """Returns current user if authenticated, None otherwise. For public endpoints."""
    if not credentials:
        return None
    try:
        payload = verify_access_token(credentials.credentials)
        jti = payload.get("jti")
        if jti and await TokenStore(redis).is_token_revoked(jti):
            return None
        return await db.get(User, uuid.UUID(payload["sub"]))
    except (JWTError, KeyError, ValueError):
        return None
