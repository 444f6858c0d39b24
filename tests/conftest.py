"""
Shared fixtures.

Settings are read once at import time, so the environment is prepared here
before any storefront module is imported.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("METRICS_ENABLED", "false")
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret")
os.environ.setdefault("CRON_SECRET", "test-cron-secret")
os.environ.setdefault("PAYMENT_WEBHOOK_SECRET", "test-webhook-secret")
os.environ.setdefault("OPT_LOCK_BASE_DELAY_MS", "1")
os.environ.setdefault("OPT_LOCK_JITTER_MS", "1")

import uuid
from datetime import timedelta

import fakeredis.aioredis
import httpx
import pytest
import pytest_asyncio
from jose import jwt
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from storefront.core import redis_client
from storefront.core.config import get_settings
from storefront.core.timeutil import utcnow
from storefront.db.cart_ops import sync_cart
from storefront.db.database import Base, get_db
from storefront.db.inventory_ops import create_product
from storefront.db.order_ops import checkout
from storefront.models.cart import CartItem
from storefront.models.catalog import Product
from storefront.models.order import Order

settings = get_settings()


@pytest_asyncio.fixture
async def engine(tmp_path):
    # File-backed so that every session gets its own connection and really contends
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'storefront.db'}", poolclass=NullPool)
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture(autouse=True)
def fake_redis(monkeypatch):
    client = fakeredis.aioredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)
    monkeypatch.setattr(redis_client, "_redis_client", client)
    return client


@pytest_asyncio.fixture
async def client(session_factory, fake_redis):
    from storefront.main import app

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


def make_token(sub: str, is_admin: bool = False) -> str:
    claims = {"sub": sub, "is_admin": is_admin, "exp": utcnow() + timedelta(hours=1)}
    return jwt.encode(claims, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def auth(sub: str, is_admin: bool = False) -> dict[str, str]:
    return {"Authorization": f"Bearer {make_token(sub, is_admin)}"}


@pytest.fixture
def make_product(session_factory):
    async def _make(stock: int = 10, price: int = 1000, **kwargs) -> Product:
        kwargs.setdefault("name", f"Product {uuid.uuid4().hex[:6]}")
        async with session_factory() as session:
            return await create_product(session, price=price, initial_stock=stock, actor_id="admin-1", **kwargs)
    return _make


@pytest.fixture
def stock_of(session_factory):
    async def _stock(product_id: str) -> int:
        async with session_factory() as session:
            result = await session.execute(select(Product.stock).where(Product.id == product_id))
            return result.scalar_one()
    return _stock


@pytest.fixture
def place_order(session_factory):
    """Put quantity units in the user's cart and check out."""
    async def _place(user_id: str, product_id: str, quantity: int = 1) -> Order:
        async with session_factory() as session:
            await sync_cart(session, user_id, [(product_id, quantity)])
        async with session_factory() as session:
            return await checkout(session, user_id, "1 Test Road")
    return _place


@pytest.fixture
def age_order(session_factory):
    """Move an order's created_at into the past."""
    async def _age(order_id: str, minutes: int) -> None:
        async with session_factory() as session:
            await session.execute(
                update(Order)
                .where(Order.id == order_id)
                .values(created_at=utcnow() - timedelta(minutes=minutes))
            )
            await session.commit()
    return _age


@pytest.fixture
def expire_cart_lines(session_factory):
    async def _expire(user_cart_id: str | None = None) -> None:
        stmt = update(CartItem).values(expires_at=utcnow() - timedelta(seconds=1))
        if user_cart_id is not None:
            stmt = stmt.where(CartItem.cart_id == user_cart_id)
        async with session_factory() as session:
            await session.execute(stmt)
            await session.commit()
    return _expire
