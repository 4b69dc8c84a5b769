"""
Storefront Backend

Assembles the FastAPI app: catalog and cart routers under /api, slowapi
limits on cart writes, domain error rendering, and a health check.
"""
import logging
from contextlib import asynccontextmanager

from fastapi import APIRouter, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text

from storefront import __version__
from storefront.api.routes import cart, products
from storefront.core.config import settings
from storefront.core.database import AsyncSessionLocal, create_tables, engine
from storefront.core.error_handler import ErrorSanitizationMiddleware, register_exception_handlers
from storefront.core.rate_limit import limiter, rate_limit_exceeded_handler

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

status_router = APIRouter()


@status_router.get("/")
async def root():
    return {"message": f"{settings.APP_NAME} API", "status": "operational"}


@status_router.get("/health")
async def health():
    """Liveness plus a database ping"""
    try:
        async with AsyncSessionLocal() as session:
            await session.execute(text("SELECT 1"))
        database = "connected"
    except Exception as e:
        logger.error(f"Health check database ping failed: {type(e).__name__}: {e}")
        database = "error"

    return {
        "status": "healthy" if database == "connected" else "degraded",
        "database": database,
    }


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting {settings.APP_NAME} ({settings.ENVIRONMENT})")
    if settings.AUTO_CREATE_TABLES:
        await create_tables()
    try:
        yield
    finally:
        await engine.dispose()
        logger.info(f"{settings.APP_NAME} shut down")


def create_app() -> FastAPI:
    application = FastAPI(
        title=f"{settings.APP_NAME} API",
        version=__version__,
        lifespan=lifespan,
    )

    application.state.limiter = limiter
    application.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    register_exception_handlers(application)

    application.add_middleware(ErrorSanitizationMiddleware)
    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.include_router(status_router)
    application.include_router(products.router, prefix="/api/products", tags=["Products"])
    application.include_router(cart.router, prefix="/api/cart", tags=["Cart"])
    return application


app = create_app()
