"""
shared/middleware/auth.py
FastAPI dependencies for bearer authentication and role checks.
Tokens are issued by the auth service; this service only verifies them
and resolves the caller to a User row.
"""

import uuid
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import RedisCache, get_redis
from shared.models.models import User, UserRole
from shared.utils.security import verify_access_token

security = HTTPBearer(auto_error=False)


class TokenData:
    def __init__(self, payload: dict):
        self.user_id: uuid.UUID = uuid.UUID(payload["sub"])
        self.role: UserRole = UserRole(payload["role"])
        self.email: str = payload["email"]
        self.jti: Optional[str] = payload.get("jti")


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_token_data(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    redis=Depends(get_redis),
) -> TokenData:
    """
    Extract and validate the JWT from the Authorization header.
    Tokens on the Redis deny-list (logged out elsewhere) are rejected.
    """
    if not credentials:
        raise _unauthorized("Authentication required")

    try:
        token_data = TokenData(verify_access_token(credentials.credentials))
    except (JWTError, KeyError, ValueError):
        raise _unauthorized("Invalid or expired token")

    if token_data.jti and await RedisCache(redis).is_token_revoked(token_data.jti):
        raise _unauthorized("Token has been revoked")

    return token_data


async def get_current_user(
    token_data: TokenData = Depends(get_token_data),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Load the User row named by the token's sub claim."""
    user = await db.get(User, token_data.user_id)

    if not user:
        raise _unauthorized("User not found")
    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is inactive",
        )
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
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Required role: {[r.value for r in self.roles]}",
            )
        return current_user


# Patients book for themselves; staff and admins run the front desk
require_user = RoleRequired(UserRole.USER, UserRole.STAFF, UserRole.ADMIN)
require_staff = RoleRequired(UserRole.STAFF, UserRole.ADMIN)
