"""
Reaper sweep over reserved orders and expired cart lines.
"""
import pytest
from sqlalchemy import select

from storefront.db import reaper
from storefront.db.cart_ops import sync_cart
from storefront.db.inventory_ops import list_ledger, reconcile_product
from storefront.db.order_ops import checkout, get_order
from storefront.db.payment_ops import handle_payment_event
from storefront.db.reaper import run_sweep
from storefront.models.cart import Cart
from storefront.models.ledger import LedgerEntryType
from storefront.models.order import OrderStatus


@pytest.mark.asyncio
async def test_timed_out_order_is_cancelled_and_restocked(
    make_product, place_order, age_order, session_factory, stock_of
):
    product = await make_product(stock=5, reservation_duration=10)
    order = await place_order("user-a", product.id, 2)
    assert await stock_of(product.id) == 3
    await age_order(order.id, minutes=11)

    async with session_factory() as session:
        summary = await run_sweep(session)
    assert (summary.processed, summary.expired, summary.errors) == (1, 1, 0)

    async with session_factory() as session:
        cancelled = await get_order(session, order.id)
        entries = await list_ledger(session, product_id=product.id)
        report = await reconcile_product(session, product.id)
    assert cancelled.status == OrderStatus.CANCELLED
    last = cancelled.status_history[-1]
    assert last.status == "cancelled"
    assert last.reason == "System: Payment timeout > 10 mins"
    assert last.changed_by is None
    assert await stock_of(product.id) == 5

    assert entries[0].entry_type == LedgerEntryType.CANCEL
    assert entries[0].change == 2
    assert entries[0].reference_id == order.id
    assert entries[0].payload == {"kind": "cancel", "order_id": order.id, "cause": "payment_timeout"}
    assert report.consistent


@pytest.mark.asyncio
async def test_order_inside_its_window_is_left_alone(make_product, place_order, age_order, session_factory):
    product = await make_product(stock=5, reservation_duration=10)
    order = await place_order("user-a", product.id, 1)
    await age_order(order.id, minutes=9)

    async with session_factory() as session:
        summary = await run_sweep(session)
    assert (summary.processed, summary.expired) == (0, 0)

    async with session_factory() as session:
        assert (await get_order(session, order.id)).status == OrderStatus.RESERVED


@pytest.mark.asyncio
async def test_shortest_product_window_governs(make_product, session_factory, age_order, stock_of):
    quick = await make_product(stock=5, reservation_duration=5)
    slow = await make_product(stock=5, reservation_duration=30)
    async with session_factory() as session:
        await sync_cart(session, "user-a", [(quick.id, 1), (slow.id, 1)])
    async with session_factory() as session:
        order = await checkout(session, "user-a")
    await age_order(order.id, minutes=6)

    async with session_factory() as session:
        summary = await run_sweep(session)
    assert summary.expired == 1
    assert await stock_of(quick.id) == 5
    assert await stock_of(slow.id) == 5


@pytest.mark.asyncio
async def test_default_window_without_product_durations(make_product, place_order, age_order, session_factory):
    product = await make_product(stock=5)
    order = await place_order("user-a", product.id, 1)

    await age_order(order.id, minutes=30)
    async with session_factory() as session:
        assert (await run_sweep(session)).expired == 0

    await age_order(order.id, minutes=61)
    async with session_factory() as session:
        assert (await run_sweep(session)).expired == 1


@pytest.mark.asyncio
async def test_paid_orders_are_never_touched(make_product, place_order, age_order, session_factory, stock_of):
    product = await make_product(stock=5, reservation_duration=1)
    order = await place_order("user-a", product.id, 1)
    async with session_factory() as session:
        await handle_payment_event(session, "transaction.succeeded", {"order_id": order.id})
    await age_order(order.id, minutes=120)

    async with session_factory() as session:
        summary = await run_sweep(session)
    assert summary.processed == 0
    assert await stock_of(product.id) == 4


@pytest.mark.asyncio
async def test_one_failing_order_does_not_stop_the_sweep(
    make_product, place_order, age_order, session_factory, stock_of, monkeypatch
):
    product = await make_product(stock=10, reservation_duration=5)
    doomed = await place_order("user-a", product.id, 1)
    healthy = await place_order("user-b", product.id, 2)
    await age_order(doomed.id, minutes=10)
    await age_order(healthy.id, minutes=10)
    assert await stock_of(product.id) == 7

    real_release = reaper.release_order_stock

    async def flaky_release(db, order, cause, actor_id=None):
        if order.id == doomed.id:
            raise RuntimeError("disk on fire")
        await real_release(db, order, cause, actor_id)

    monkeypatch.setattr(reaper, "release_order_stock", flaky_release)

    async with session_factory() as session:
        summary = await run_sweep(session)
    assert (summary.processed, summary.expired, summary.errors) == (2, 1, 1)

    async with session_factory() as session:
        assert (await get_order(session, doomed.id)).status == OrderStatus.RESERVED
        assert (await get_order(session, healthy.id)).status == OrderStatus.CANCELLED
    assert await stock_of(product.id) == 9


@pytest.mark.asyncio
async def test_sweep_releases_expired_cart_lines(make_product, session_factory, expire_cart_lines, stock_of):
    product = await make_product(stock=10)
    async with session_factory() as session:
        await sync_cart(session, "user-a", [(product.id, 2)])
        await sync_cart(session, "user-b", [(product.id, 3)])
    async with session_factory() as session:
        await sync_cart(session, "user-c", [(product.id, 1)])
    assert await stock_of(product.id) == 4

    async with session_factory() as session:
        cart_a = (await session.execute(select(Cart.id).where(Cart.user_id == "user-a"))).scalar_one()
        cart_b = (await session.execute(select(Cart.id).where(Cart.user_id == "user-b"))).scalar_one()
    await expire_cart_lines(cart_a)
    await expire_cart_lines(cart_b)

    async with session_factory() as session:
        summary = await run_sweep(session)
    assert summary.carts_swept == 2
    assert summary.cart_items_released == 2
    assert await stock_of(product.id) == 9


@pytest.mark.asyncio
async def test_repeated_sweeps_release_once(make_product, place_order, age_order, session_factory, stock_of):
    product = await make_product(stock=5, reservation_duration=1)
    order = await place_order("user-a", product.id, 3)
    await age_order(order.id, minutes=5)

    async with session_factory() as first, session_factory() as second:
        one = await run_sweep(first)
        two = await run_sweep(second)
    assert one.expired + two.expired == 1
    assert await stock_of(product.id) == 5
