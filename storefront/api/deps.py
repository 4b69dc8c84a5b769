"""
API dependencies

Cart and review routes need a signed-in user; catalog writes need an admin.
"""
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.database import get_db
from storefront.core.security import token_user_id
from storefront.models.user import User

bearer = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
    db: AsyncSession = Depends(get_db)
) -> User:
    """The active user behind the request's bearer token."""
    if credentials is None or not credentials.credentials:
        raise _unauthorized("Not authenticated")

    user_id = token_user_id(credentials.credentials)
    user = await db.get(User, user_id) if user_id is not None else None
    if user is None:
        raise _unauthorized("Invalid or expired token")
    if not user.is_active:
        raise _unauthorized("Account is disabled")
    return user


async def get_current_admin(user: User = Depends(get_current_user)) -> User:
    if not user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required"
        )
    return user
