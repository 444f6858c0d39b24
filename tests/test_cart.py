"""
Cart reservations: holds, expiry sweep, quota and all-or-nothing sync.
"""
from datetime import timedelta

import pytest
from sqlalchemy import select, update

from storefront.core.exceptions import InsufficientStock, ProductNotFound, QuotaExceeded
from storefront.core.timeutil import utcnow
from storefront.db import cart_ops
from storefront.db.cart_ops import get_cart, release_expired_items, sync_cart
from storefront.db.database import unit_of_work
from storefront.db.inventory_ops import list_ledger
from storefront.models.cart import CartItem
from storefront.models.ledger import LedgerEntryType
from storefront.models.order import Order, OrderItem, OrderStatus


@pytest.mark.asyncio
async def test_hold_then_expire_returns_stock(make_product, db, stock_of, expire_cart_lines, session_factory):
    product = await make_product(stock=10, reservation_duration=1)

    view = await sync_cart(db, "user-a", [(product.id, 3)])
    assert await stock_of(product.id) == 7
    assert len(view.items) == 1
    expires_in = view.items[0].expires_at - utcnow()
    assert timedelta(seconds=50) < expires_in <= timedelta(minutes=1)

    await expire_cart_lines(view.cart_id)

    async with session_factory() as session:
        swept = await get_cart(session, "user-a")
    assert swept.items == []
    assert swept.removed_count == 1
    assert swept.notice == "1 item(s) removed due to reservation timeout"
    assert await stock_of(product.id) == 10

    # a second read finds nothing left to release
    async with session_factory() as session:
        again = await get_cart(session, "user-a")
    assert again.removed_count == 0
    assert await stock_of(product.id) == 10

    entries = await list_ledger(db, product_id=product.id)
    assert [e.entry_type for e in entries] == [
        LedgerEntryType.RELEASE, LedgerEntryType.RESERVE, LedgerEntryType.RESTOCK,
    ]
    assert entries[0].payload["cause"] == "expired"


@pytest.mark.asyncio
async def test_quantity_changes_reserve_and_release_the_difference(make_product, db, stock_of):
    product = await make_product(stock=10)

    await sync_cart(db, "user-a", [(product.id, 4)])
    assert await stock_of(product.id) == 6

    view = await sync_cart(db, "user-a", [(product.id, 1)])
    assert view.items[0].quantity == 1
    assert await stock_of(product.id) == 9

    view = await sync_cart(db, "user-a", [])
    assert view.items == []
    assert await stock_of(product.id) == 10

    causes = [e.payload.get("cause") for e in await list_ledger(db, product_id=product.id)]
    assert causes[:2] == ["removed", "quantity_reduced"]


@pytest.mark.asyncio
async def test_zero_quantity_removes_line(make_product, db, stock_of):
    keep = await make_product(stock=5)
    drop = await make_product(stock=5)
    await sync_cart(db, "user-a", [(keep.id, 1), (drop.id, 2)])

    view = await sync_cart(db, "user-a", [(keep.id, 1), (drop.id, 0)])
    assert [line.product_id for line in view.items] == [keep.id]
    assert await stock_of(drop.id) == 5
    assert await stock_of(keep.id) == 4


@pytest.mark.asyncio
async def test_duplicate_lines_are_merged(make_product, db, stock_of):
    product = await make_product(stock=10)
    view = await sync_cart(db, "user-a", [(product.id, 2), (product.id, 3)])
    assert view.items[0].quantity == 5
    assert await stock_of(product.id) == 5


@pytest.mark.asyncio
async def test_failed_sync_changes_nothing(make_product, db, stock_of, session_factory):
    plenty = await make_product(stock=5)
    scarce = await make_product(stock=1)

    with pytest.raises(InsufficientStock) as exc_info:
        await sync_cart(db, "user-a", [(plenty.id, 2), (scarce.id, 3)])
    assert exc_info.value.product_id == scarce.id

    assert await stock_of(plenty.id) == 5
    assert await stock_of(scarce.id) == 1
    async with session_factory() as session:
        view = await get_cart(session, "user-a")
    assert view.items == []


@pytest.mark.asyncio
async def test_unknown_product_is_reported(db):
    with pytest.raises(ProductNotFound):
        await sync_cart(db, "user-a", [("missing-product", 1)])


@pytest.mark.asyncio
async def test_quota_counts_previous_orders(make_product, db, stock_of):
    product = await make_product(stock=10, quota_limit=2)
    db.add(Order(
        user_id="user-a",
        status=OrderStatus.COMPLETED,
        total_amount=2 * product.price,
        items=[OrderItem(product_id=product.id, product_name=product.name, quantity=2, unit_price=product.price)],
        status_history=[],
    ))
    await db.commit()

    with pytest.raises(QuotaExceeded) as exc_info:
        await sync_cart(db, "user-a", [(product.id, 1)])
    assert exc_info.value.details == {"limit": 2, "bought": 2, "requested": 1}
    assert "Limit: 2, Bought: 2, Requested: 1" in exc_info.value.message
    assert await stock_of(product.id) == 10

    # another buyer is not affected
    view = await sync_cart(db, "user-b", [(product.id, 2)])
    assert view.items[0].quantity == 2


@pytest.mark.asyncio
async def test_quota_is_checked_against_desired_quantity(make_product, db):
    product = await make_product(stock=10, quota_limit=3)
    await sync_cart(db, "user-a", [(product.id, 3)])
    with pytest.raises(QuotaExceeded):
        await sync_cart(db, "user-a", [(product.id, 4)])


@pytest.mark.asyncio
async def test_touching_cart_refreshes_every_timer(make_product, db, session_factory):
    product = await make_product(stock=10, reservation_duration=30)
    other = await make_product(stock=10, reservation_duration=30)
    first = await sync_cart(db, "user-a", [(product.id, 1)])

    async with session_factory() as session:
        await session.execute(
            update(CartItem).values(expires_at=utcnow() + timedelta(minutes=5))
        )
        await session.commit()

    view = await sync_cart(db, "user-a", [(product.id, 1), (other.id, 1)])
    line = next(i for i in view.items if i.product_id == product.id)
    assert line.expires_at - utcnow() > timedelta(minutes=29)
    assert view.cart_id == first.cart_id


@pytest.mark.asyncio
async def test_cart_read_without_cart(db):
    view = await get_cart(db, "nobody")
    assert view.cart_id is None
    assert view.items == []
    assert view.total_amount == 0


@pytest.mark.asyncio
async def test_cart_totals_use_current_price(make_product, db):
    product = await make_product(stock=10, price=250)
    view = await sync_cart(db, "user-a", [(product.id, 3)])
    assert view.total_amount == 750
    assert view.items[0].line_total == 750

    result = await db.execute(select(Order).where(Order.user_id == "user-a"))
    assert result.scalars().all() == []


def _claim_after(monkeypatch, interleave):
    """Run `interleave` in its own session just before the sweep claims a line."""
    real_claim = cart_ops.claim_item

    async def claim(db, item, quantity, held, expired_before=None):
        await interleave()
        return await real_claim(db, item, quantity, held, expired_before)

    monkeypatch.setattr(cart_ops, "claim_item", claim)


@pytest.mark.asyncio
async def test_sweep_skips_line_resized_after_read(make_product, session_factory, stock_of, monkeypatch):
    product = await make_product(stock=10)
    async with session_factory() as session:
        view = await sync_cart(session, "user-a", [(product.id, 2)])

    async def grow_line():
        async with session_factory() as other:
            await sync_cart(other, "user-a", [(product.id, 5)])

    _claim_after(monkeypatch, grow_line)
    async with session_factory() as session:
        async with unit_of_work(session):
            removed = await release_expired_items(session, view.cart_id, utcnow() + timedelta(minutes=20))

    assert removed == 0
    assert await stock_of(product.id) == 5
    async with session_factory() as session:
        item = (await session.execute(select(CartItem).where(CartItem.cart_id == view.cart_id))).scalar_one()
    assert (item.quantity, item.held_quantity) == (5, 5)


@pytest.mark.asyncio
async def test_sweep_skips_line_refreshed_after_read(make_product, session_factory, stock_of, monkeypatch):
    product = await make_product(stock=10)
    async with session_factory() as session:
        view = await sync_cart(session, "user-a", [(product.id, 2)])
    sweep_at = utcnow() + timedelta(minutes=20)

    async def refresh_timer():
        async with session_factory() as other:
            await other.execute(
                update(CartItem)
                .where(CartItem.cart_id == view.cart_id)
                .values(expires_at=sweep_at + timedelta(minutes=15))
            )
            await other.commit()

    _claim_after(monkeypatch, refresh_timer)
    async with session_factory() as session:
        async with unit_of_work(session):
            removed = await release_expired_items(session, view.cart_id, sweep_at)

    assert removed == 0
    assert await stock_of(product.id) == 8
