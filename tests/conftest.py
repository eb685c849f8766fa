"""
Shared pytest fixtures.

Every test gets a fresh in-memory SQLite database (aiosqlite). Settings are
pointed at it through the environment before the app package is imported.
"""
import os
from decimal import Decimal
from typing import AsyncGenerator

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key")

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app import models  # noqa: F401
from app.core.permissions import Actor
from app.core.security import create_access_token
from app.database import Base, get_db
from app.models.product import Product
from app.models.user import User, UserRole, WholesaleStatus


# ============================================================================
# DATABASE FIXTURES
# ============================================================================


@pytest_asyncio.fixture
async def async_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(async_engine) -> async_sessionmaker:
    return async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


# ============================================================================
# TEST DATA
# ============================================================================


@pytest.fixture
def make_user(db_session):
    """Factory: await make_user(role, **fields) -> persisted User."""
    counter = {"n": 0}

    async def _make(role: UserRole = UserRole.RETAIL, **fields) -> User:
        counter["n"] += 1
        if role == UserRole.WHOLESALE:
            fields.setdefault("wholesale_status", WholesaleStatus.APPROVED.value)
        user = User(
            username=fields.pop("username", f"{role.value.lower()}{counter['n']}"),
            role=role.value,
            **fields,
        )
        db_session.add(user)
        await db_session.commit()
        return user

    return _make


@pytest.fixture
def make_product(db_session):
    """Factory: await make_product(**fields) -> persisted Product."""

    async def _make(**fields) -> Product:
        product = Product(
            name=fields.pop("name", "Cool Mint 6mg"),
            flavor=fields.pop("flavor", "Mint"),
            strength=fields.pop("strength", "6mg"),
            price=fields.pop("price", Decimal("10.00")),
            stock=fields.pop("stock", 10000),
            **fields,
        )
        db_session.add(product)
        await db_session.commit()
        return product

    return _make


@pytest_asyncio.fixture
async def admin(make_user) -> User:
    return await make_user(UserRole.ADMIN, username="admin")


@pytest_asyncio.fixture
async def retail_user(make_user) -> User:
    return await make_user(UserRole.RETAIL, username="shopper")


@pytest_asyncio.fixture
async def wholesaler(make_user) -> User:
    return await make_user(UserRole.WHOLESALE, username="bulkbuyer")


@pytest_asyncio.fixture
async def distributor(make_user) -> User:
    return await make_user(UserRole.DISTRIBUTOR, username="courier")


@pytest_asyncio.fixture
async def product(make_product) -> Product:
    return await make_product()


def actor_for(user: User) -> Actor:
    return Actor.from_user(user)


# ============================================================================
# API FIXTURES
# ============================================================================


@pytest_asyncio.fixture
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app, with get_db bound to the test database."""
    from app.main import app

    async def _get_test_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _get_test_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


def auth_headers(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}


@pytest.fixture
def make_order(db_session):
    """Factory: await make_order(**fields) -> persisted PENDING Order with no items."""
    from app.models.order import Order, OrderStatus, PaymentMethod

    async def _make(**fields) -> Order:
        subtotal = Decimal(fields.pop("subtotal", Decimal("100.00")))
        shipping = Decimal(fields.pop("shipping_cost", Decimal("0.00")))
        order = Order(
            status=fields.pop("status", OrderStatus.PENDING.value),
            payment_method=fields.pop("payment_method", PaymentMethod.CARD.value),
            subtotal=subtotal,
            shipping_cost=shipping,
            total=fields.pop("total", subtotal + shipping),
            items=[],
            status_history=[],
            **fields,
        )
        db_session.add(order)
        await db_session.commit()
        return order

    return _make
