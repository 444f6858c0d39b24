"""
Checkout: cart to reserved order in one unit of work.
"""
import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import func, select, update

from storefront.core import redis_client
from storefront.core.exceptions import CartChanged, EmptyCart, InsufficientStock
from storefront.core.timeutil import utcnow
from storefront.db import order_ops
from storefront.db.cart_ops import get_cart, sync_cart
from storefront.db.inventory_ops import list_ledger, reconcile_product
from storefront.db.order_ops import checkout, get_order
from storefront.models.cart import Cart, CartItem
from storefront.models.catalog import Product
from storefront.models.ledger import LedgerEntryType
from storefront.models.order import Order, OrderStatus


async def _order_count(session_factory) -> int:
    async with session_factory() as session:
        return (await session.execute(select(func.count()).select_from(Order))).scalar_one()


@pytest.mark.asyncio
async def test_checkout_converts_hold_into_sale(make_product, session_factory, stock_of):
    product = await make_product(stock=10, price=1500)
    async with session_factory() as session:
        await sync_cart(session, "user-a", [(product.id, 2)])
    assert await stock_of(product.id) == 8

    async with session_factory() as session:
        order = await checkout(session, "user-a", "99 Sukhumvit Rd")

    assert order.status == OrderStatus.RESERVED
    assert order.total_amount == 3000
    assert [(i.product_id, i.quantity, i.unit_price) for i in order.items] == [(product.id, 2, 1500)]
    assert [h.status for h in order.status_history] == ["reserved"]
    assert order.status_history[0].changed_by == "user-a"
    assert await stock_of(product.id) == 8

    async with session_factory() as session:
        view = await get_cart(session, "user-a")
        entries = await list_ledger(session, product_id=product.id)
        report = await reconcile_product(session, product.id)
    assert view.items == []
    assert [e.entry_type for e in entries[:2]] == [LedgerEntryType.SALE, LedgerEntryType.RELEASE]
    assert entries[0].reference_id == order.id
    assert entries[0].payload == {"kind": "sale", "order_id": order.id, "unit_price": 1500}
    assert entries[1].payload["cause"] == "checkout"
    assert report.consistent


@pytest.mark.asyncio
async def test_checkout_without_cart_lines(make_product, session_factory):
    async with session_factory() as session:
        with pytest.raises(EmptyCart):
            await checkout(session, "user-a")

    product = await make_product(stock=3)
    async with session_factory() as session:
        await sync_cart(session, "user-a", [(product.id, 1)])
        await sync_cart(session, "user-a", [])
        with pytest.raises(EmptyCart):
            await checkout(session, "user-a")


@pytest.mark.asyncio
async def test_checkout_skips_expired_lines(make_product, session_factory, stock_of, expire_cart_lines):
    product = await make_product(stock=4)
    async with session_factory() as session:
        view = await sync_cart(session, "user-a", [(product.id, 2)])
    await expire_cart_lines(view.cart_id)

    async with session_factory() as session:
        with pytest.raises(EmptyCart):
            await checkout(session, "user-a")
    # the sweep is committed even though the checkout itself failed
    assert await stock_of(product.id) == 4
    async with session_factory() as session:
        swept = await get_cart(session, "user-a")
        entries = await list_ledger(session, product_id=product.id)
    assert swept.removed_count == 0
    assert entries[0].payload["cause"] == "expired"


@pytest.mark.asyncio
async def test_expired_release_survives_failed_sale(make_product, session_factory, stock_of, expire_cart_lines):
    sold_out = await make_product(stock=0)
    other = await make_product(stock=5)
    async with session_factory() as session:
        view = await sync_cart(session, "user-a", [(other.id, 3)])
    await expire_cart_lines()
    await _stale_line(session_factory, view.cart_id, sold_out.id)

    async with session_factory() as session:
        with pytest.raises(InsufficientStock):
            await checkout(session, "user-a")
    assert await stock_of(other.id) == 5
    assert await stock_of(sold_out.id) == 0
    async with session_factory() as session:
        remaining = await get_cart(session, "user-a")
    assert [line.product_id for line in remaining.items] == [sold_out.id]


@pytest.mark.asyncio
async def test_price_is_frozen_at_checkout(make_product, place_order, session_factory):
    product = await make_product(stock=5, price=1000)
    order = await place_order("user-a", product.id, 2)

    async with session_factory() as session:
        await session.execute(update(Product).where(Product.id == product.id).values(price=9999))
        await session.commit()

    async with session_factory() as session:
        stored = await get_order(session, order.id)
    assert stored.items[0].unit_price == 1000
    assert stored.total_amount == 2000


async def _stale_cart(session_factory, user_id: str, product_id: str, quantity: int = 1) -> None:
    """A cart line whose units were never held, as left behind by older cart bookkeeping."""
    async with session_factory() as session:
        cart = Cart(user_id=user_id)
        session.add(cart)
        await session.flush()
        session.add(CartItem(
            cart_id=cart.id,
            product_id=product_id,
            quantity=quantity,
            held_quantity=0,
            expires_at=utcnow() + timedelta(minutes=15),
        ))
        await session.commit()


@pytest.mark.asyncio
async def test_concurrent_checkouts_for_last_unit(make_product, session_factory, stock_of):
    product = await make_product(stock=1)
    buyers = ["user-a", "user-b", "user-c"]
    for buyer in buyers:
        await _stale_cart(session_factory, buyer, product.id)

    async def attempt(user_id):
        async with session_factory() as session:
            return await checkout(session, user_id)

    results = await asyncio.gather(*(attempt(b) for b in buyers), return_exceptions=True)

    orders = [r for r in results if isinstance(r, Order)]
    refused = [r for r in results if isinstance(r, InsufficientStock)]
    assert len(orders) == 1
    assert len(refused) == 2
    assert orders[0].status == OrderStatus.RESERVED
    assert refused[0].product_id == product.id
    assert await stock_of(product.id) == 0
    assert await _order_count(session_factory) == 1


@pytest.mark.asyncio
async def test_failed_checkout_leaves_no_trace(make_product, session_factory, stock_of):
    plenty = await make_product(stock=5)
    empty = await make_product(stock=0)
    async with session_factory() as session:
        await sync_cart(session, "user-a", [(plenty.id, 2)])
    async with session_factory() as session:
        cart_id = (await session.execute(select(Cart.id).where(Cart.user_id == "user-a"))).scalar_one()
    await _stale_line(session_factory, cart_id, empty.id)

    async with session_factory() as session:
        with pytest.raises(InsufficientStock):
            await checkout(session, "user-a")

    assert await stock_of(plenty.id) == 3
    assert await _order_count(session_factory) == 0
    async with session_factory() as session:
        view = await get_cart(session, "user-a")
    assert sorted(line.product_id for line in view.items) == sorted([plenty.id, empty.id])


async def _stale_line(session_factory, cart_id: str, product_id: str) -> None:
    async with session_factory() as session:
        session.add(CartItem(
            cart_id=cart_id,
            product_id=product_id,
            quantity=1,
            held_quantity=0,
            expires_at=utcnow() + timedelta(minutes=15),
        ))
        await session.commit()


@pytest.mark.asyncio
async def test_order_event_is_published(make_product, place_order, monkeypatch):
    published = []

    async def record(event, order_id, user_id, status, reason=None):
        published.append((event, order_id, status))
        return True

    monkeypatch.setattr(order_ops, "publish_order_event", record)
    product = await make_product(stock=5)
    order = await place_order("user-a", product.id, 1)
    assert published == [("order.reserved", order.id, "reserved")]


@pytest.mark.asyncio
async def test_notification_outage_does_not_undo_checkout(make_product, place_order, session_factory, monkeypatch):
    class DownRedis:
        async def publish(self, channel, message):
            raise ConnectionError("redis is down")

    monkeypatch.setattr(redis_client, "_redis_client", DownRedis())
    product = await make_product(stock=5)
    order = await place_order("user-a", product.id, 1)

    async with session_factory() as session:
        stored = await get_order(session, order.id)
    assert stored.status == OrderStatus.RESERVED


async def _held_in_carts(session_factory, product_id: str) -> int:
    async with session_factory() as session:
        result = await session.execute(
            select(func.coalesce(func.sum(CartItem.held_quantity), 0)).where(CartItem.product_id == product_id)
        )
        return result.scalar_one()


@pytest.mark.asyncio
async def test_checkout_refuses_line_resized_under_it(make_product, session_factory, stock_of, monkeypatch):
    product = await make_product(stock=10)
    async with session_factory() as session:
        await sync_cart(session, "user-a", [(product.id, 2)])

    real_claim = order_ops.claim_item

    async def resize_then_claim(db, item, quantity, held, expired_before=None):
        # a second tab grows the line after checkout read it
        async with session_factory() as other:
            await sync_cart(other, "user-a", [(product.id, 5)])
        return await real_claim(db, item, quantity, held, expired_before)

    monkeypatch.setattr(order_ops, "claim_item", resize_then_claim)
    async with session_factory() as session:
        with pytest.raises(CartChanged):
            await checkout(session, "user-a")

    stock = await stock_of(product.id)
    held = await _held_in_carts(session_factory, product.id)
    assert (stock, held) == (5, 5)
    assert stock + held == 10
    assert await _order_count(session_factory) == 0
    async with session_factory() as session:
        assert (await reconcile_product(session, product.id)).consistent
