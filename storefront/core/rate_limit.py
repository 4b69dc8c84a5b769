"""
Rate limiting (SlowAPI)

Signed-in callers are limited per user so shoppers behind one NAT do not
share a bucket; anonymous callers are limited per client IP. Limits live in
process memory, so each worker counts separately.
"""
import logging

from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.requests import Request
from starlette.responses import JSONResponse

from storefront.core.config import settings
from storefront.core.security import token_user_id

logger = logging.getLogger(__name__)


def client_ip(request: Request) -> str:
    """Original client address, trusting the first X-Forwarded-For hop."""
    forwarded = request.headers.get("X-Forwarded-For", "")
    first_hop = forwarded.split(",")[0].strip()
    return first_hop or get_remote_address(request)


def rate_limit_key(request: Request) -> str:
    scheme, _, token = request.headers.get("Authorization", "").partition(" ")
    if scheme.lower() == "bearer" and token:
        user_id = token_user_id(token)
        if user_id is not None:
            return f"user:{user_id}"
    return f"ip:{client_ip(request)}"


limiter = Limiter(
    key_func=rate_limit_key,
    enabled=settings.RATE_LIMIT_ENABLED,
    default_limits=[settings.RATE_LIMIT_DEFAULT],
)


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """429 in the same shape as the domain errors."""
    key = rate_limit_key(request)
    logger.warning(f"Rate limit hit by {key} on {request.method} {request.url.path}: {exc.detail}")
    return JSONResponse(
        status_code=429,
        content={
            "detail": "Too many requests, slow down and retry shortly",
            "code": "RATE_LIMITED",
            "details": {"limit": exc.detail},
        },
        headers={"Retry-After": "60"},
    )


def get_cart_limit():
    """Decorator applying the cart write limit."""
    return limiter.limit(settings.RATE_LIMIT_CART)
