"""
Application settings

Read from the environment (and .env). DATABASE_URL and SECRET_KEY have no
defaults, and a production environment refuses to start with DEBUG on or a
short secret.
"""
import json
import logging
from typing import List, Union

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

DEFAULT_CORS_ORIGINS = [
    "http://localhost:3000",
    "http://localhost:5173",
]

MIN_PRODUCTION_SECRET_LENGTH = 32


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    APP_NAME: str = "Storefront"
    ENVIRONMENT: str = "production"
    DEBUG: bool = False

    # Persistence
    DATABASE_URL: str
    DB_POOL_SIZE: int = 5
    DB_MAX_OVERFLOW: int = 10
    DB_POOL_RECYCLE: int = 3600  # seconds
    AUTO_CREATE_TABLES: bool = False  # dev only; production runs migrations

    # Bearer tokens
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    CORS_ORIGINS: Union[str, List[str]] = DEFAULT_CORS_ORIGINS

    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_DEFAULT: str = "100/minute"
    RATE_LIMIT_CART: str = "60/minute"

    # Catalog
    PRODUCT_PAGE_SIZE: int = 12
    PRODUCT_PAGE_SIZE_MAX: int = 100
    SIMILAR_PRODUCTS_LIMIT: int = 8

    @field_validator("DATABASE_URL", mode="before")
    @classmethod
    def use_async_driver(cls, v):
        """postgres:// and postgresql:// URLs are pointed at asyncpg."""
        if isinstance(v, str):
            for prefix in ("postgres://", "postgresql://"):
                if v.startswith(prefix):
                    return "postgresql+asyncpg://" + v[len(prefix):]
        return v

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def split_origins(cls, v):
        """Accept a JSON list or a comma-separated string."""
        if not isinstance(v, str):
            return v
        v = v.strip()
        if not v:
            return DEFAULT_CORS_ORIGINS
        if v.startswith("["):
            return json.loads(v)
        return [origin.strip() for origin in v.split(",") if origin.strip()]

    @model_validator(mode="after")
    def refuse_unsafe_production(self):
        if self.ENVIRONMENT != "production":
            return self

        problems = []
        if self.DEBUG:
            problems.append("DEBUG must be off in production")
        if len(self.SECRET_KEY) < MIN_PRODUCTION_SECRET_LENGTH:
            problems.append(
                f"SECRET_KEY must be at least {MIN_PRODUCTION_SECRET_LENGTH} characters in production"
            )
        if problems:
            for problem in problems:
                logger.error(f"Configuration error: {problem}")
            raise ValueError("; ".join(problems))
        return self

    @property
    def is_sqlite(self) -> bool:
        return self.DATABASE_URL.startswith("sqlite")


settings = Settings()
