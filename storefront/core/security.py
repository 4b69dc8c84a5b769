"""
Bearer tokens

The storefront never issues login tokens itself; the auth service does. This
module signs tokens (for tests and service-to-service calls) and resolves an
incoming token to the user id it was issued for.
"""
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt

from storefront.core.config import settings

ACCESS_TOKEN_TYPE = "access"


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Sign an access token; `sub` is stored as a string."""
    issued_at = datetime.now(timezone.utc)
    lifetime = expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    claims = dict(data)
    if "sub" in claims:
        claims["sub"] = str(claims["sub"])
    claims["type"] = ACCESS_TOKEN_TYPE
    claims["jti"] = uuid.uuid4().hex
    claims["iat"] = issued_at
    claims["exp"] = issued_at + lifetime

    return jwt.encode(claims, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_token(token: str) -> Optional[dict]:
    """Verified claims, or None for a bad signature or an expired token."""
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        return None


def token_user_id(token: str) -> Optional[int]:
    """User id carried by a valid access token."""
    claims = decode_token(token)
    if not claims or claims.get("type") != ACCESS_TOKEN_TYPE:
        return None
    try:
        return int(claims.get("sub"))
    except (TypeError, ValueError):
        return None
