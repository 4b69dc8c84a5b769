import pytest

from storefront.core.config import Settings
from storefront.core.error_handler import sanitize_error_message
from storefront.core.exceptions import (
    CartConflictError,
    InsufficientStockError,
    NotFoundError,
    StorefrontError,
    ValidationError,
)


def test_production_rejects_short_secret():
    with pytest.raises(ValueError):
        Settings(
            ENVIRONMENT="production",
            DATABASE_URL="postgresql://u:p@db/shop",
            SECRET_KEY="short",
            _env_file=None,
        )


def test_postgres_url_uses_asyncpg():
    settings = Settings(
        ENVIRONMENT="development",
        DATABASE_URL="postgres://u:p@db/shop",
        SECRET_KEY="x",
        _env_file=None,
    )
    assert settings.DATABASE_URL == "postgresql+asyncpg://u:p@db/shop"
    assert not settings.is_sqlite


def test_cors_origins_accept_comma_separated():
    settings = Settings(
        ENVIRONMENT="development",
        DATABASE_URL="sqlite+aiosqlite://",
        SECRET_KEY="x",
        CORS_ORIGINS="https://shop.example.com, https://admin.example.com",
        _env_file=None,
    )
    assert settings.CORS_ORIGINS == ["https://shop.example.com", "https://admin.example.com"]


def test_error_taxonomy_status_codes():
    assert ValidationError("bad", field="price").status_code == 400
    assert InsufficientStockError().status_code == 400
    assert NotFoundError("gone").status_code == 404
    assert CartConflictError("stale").status_code == 409
    assert issubclass(CartConflictError, StorefrontError)


def test_error_serialization():
    err = InsufficientStockError(product_id=1, requested_qty=6, available_qty=5)

    assert err.to_dict() == {
        "error_type": "InsufficientStockError",
        "code": "INSUFFICIENT_STOCK",
        "message": "Insufficient stock",
        "details": {"product_id": 1, "requested_qty": 6, "available_qty": 5},
    }


def test_sensitive_messages_are_masked():
    assert sanitize_error_message("sqlalchemy.exc.OperationalError: boom") == (
        "An internal error occurred. Please try again later."
    )
    assert sanitize_error_message("Insufficient stock") == "Insufficient stock"
