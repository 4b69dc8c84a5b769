"""
Pytest configuration and fixtures for storefront tests.
"""
import os
from decimal import Decimal
from typing import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient

# Set test environment before importing app modules
os.environ["ENVIRONMENT"] = "development"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["SECRET_KEY"] = "test-secret-key-for-unit-tests-only"
os.environ["RATE_LIMIT_ENABLED"] = "false"

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from storefront.core.database import Base, get_db  # noqa: E402
from storefront.core.security import create_access_token  # noqa: E402
from storefront.models import Product, ProductVariant, User  # noqa: E402


@pytest.fixture
async def engine():
    """Fresh in-memory database per test."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app, each request on its own session."""
    from storefront.main import app

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
async def user(db) -> User:
    user = User(email="shopper@example.com", name="Sam Shopper")
    db.add(user)
    await db.commit()
    return user


@pytest.fixture
async def other_user(db) -> User:
    user = User(email="other@example.com", name="Alex Other")
    db.add(user)
    await db.commit()
    return user


@pytest.fixture
async def admin(db) -> User:
    user = User(email="admin@example.com", name="Admin", is_admin=True)
    db.add(user)
    await db.commit()
    return user


def auth_headers(user: User) -> dict:
    token = create_access_token({"sub": user.id})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def user_headers(user) -> dict:
    return auth_headers(user)


@pytest.fixture
def other_headers(other_user) -> dict:
    return auth_headers(other_user)


@pytest.fixture
def admin_headers(admin) -> dict:
    return auth_headers(admin)


@pytest.fixture
async def plain_product(db) -> Product:
    """Product without variants: price 100, stock 5."""
    product = Product(
        name="Canvas Tote",
        description="Heavy cotton tote bag",
        category="Bags",
        price=Decimal("100.00"),
        original_price=Decimal("120.00"),
        discount=Decimal("16.67"),
        stock=5,
        images=[{"url": "/img/tote.jpg", "alt": "Tote"}],
        tags=["cotton", "bag"],
    )
    db.add(product)
    await db.commit()
    return product


@pytest.fixture
async def cheap_product(db) -> Product:
    """Product without variants: price 50, stock 10."""
    product = Product(
        name="Enamel Pin",
        description="Small enamel pin",
        category="Accessories",
        price=Decimal("50.00"),
        original_price=Decimal("50.00"),
        discount=Decimal("0"),
        stock=10,
    )
    db.add(product)
    await db.commit()
    return product


@pytest.fixture
async def shirt(db) -> Product:
    """
    Product with three variants.

    Base fields are left stale on purpose; the flush listener derives them
    from the first active variant (M/Red) and the variant stock total.
    """
    product = Product(
        name="Logo Shirt",
        description="Organic cotton shirt",
        category="Apparel",
        price=Decimal("1.00"),
        original_price=Decimal("1.00"),
        discount=Decimal("0"),
        stock=0,
        images=[
            {"url": "/img/shirt-red.jpg", "alt": "Red", "color": "Red"},
            {"url": "/img/shirt-blue.jpg", "alt": "Blue", "color": "Blue"},
            {"url": "/img/shirt-label.jpg", "alt": "Label"},
        ],
    )
    product.variants = [
        ProductVariant(size="S", color="Red", price=Decimal("20.00"), original_price=Decimal("25.00"),
                       discount=Decimal("20"), stock=2, sku="SHIRT-S-RED", is_active=False),
        ProductVariant(size="M", color="Red", price=Decimal("22.00"), original_price=Decimal("25.00"),
                       discount=Decimal("12"), stock=3, sku="SHIRT-M-RED"),
        ProductVariant(size="M", color="Blue", price=Decimal("24.00"), original_price=Decimal("30.00"),
                       discount=Decimal("20"), stock=4, sku="SHIRT-M-BLUE"),
    ]
    db.add(product)
    await db.commit()
    return product
