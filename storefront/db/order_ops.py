"""
Storefront Inventory - Order orchestration

checkout() turns a user's cart into a reserved order in one unit of work:
  1. claim each cart line (conditional DELETE) and return its held units
  2. take the order quantity with try_adjust(-qty); this decrement is the
     authoritative stock gate, whatever the cart bookkeeping said
  3. freeze the unit price into the order line, one sale ledger row per line
  4. insert the order with its first status-history row
Any failure rolls all of it back.

Status changes are compare-and-set on the current status, so a webhook, the
reaper and an admin racing on the same order cannot both win.
"""
import logging
import uuid

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from storefront.core.exceptions import CartChanged, EmptyCart, InvalidTransition, OrderNotFound, ProductNotFound
from storefront.core.notifier import publish_order_event
from storefront.core.retry import StaleDataError, with_optimistic_retry
from storefront.core.timeutil import utcnow
from storefront.db.cart_ops import claim_item, release_expired_items, release_held
from storefront.db.database import unit_of_work
from storefront.db.stock_ops import try_adjust
from storefront.models.cart import Cart, CartItem
from storefront.models.catalog import Product
from storefront.models.ledger import ReferenceType
from storefront.models.order import Order, OrderItem, OrderStatus
from storefront.schemas.ledger import CancelPayload, SalePayload

logger = logging.getLogger(__name__)


async def load_order(db: AsyncSession, order_id: str, for_update: bool = False) -> Order:
    stmt = select(Order).where(Order.id == order_id).execution_options(populate_existing=True)
    if for_update:
        stmt = stmt.with_for_update()
    order = (await db.execute(stmt)).scalar_one_or_none()
    if order is None:
        raise OrderNotFound(order_id)
    return order


async def transition_order(
    db: AsyncSession,
    order: Order,
    target: OrderStatus,
    reason: str | None,
    changed_by: str | None = None,
    **values,
) -> None:
    """
    Move an order to target if the edge is allowed and nobody moved it first.
    Raises InvalidTransition for a forbidden edge and StaleDataError when the
    stored status no longer matches the one we read.
    """
    current = order.status
    if not order.can_transition(target):
        raise InvalidTransition(order.id, current.value, target.value)

    now = utcnow()
    result = await db.execute(
        update(Order)
        .where(Order.id == order.id, Order.status == current)
        .values(status=target, updated_at=now, **values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise StaleDataError(f"Order {order.id} left status '{current.value}' concurrently")

    set_committed_value(order, "status", target)
    set_committed_value(order, "updated_at", now)
    for key, value in values.items():
        set_committed_value(order, key, value)
    order.record(target, reason, changed_by)
    logger.info("Order %s: %s -> %s (%s)", order.id, current.value, target.value, reason)


async def release_order_stock(
    db: AsyncSession, order: Order, cause: str, actor_id: str | None = None
) -> None:
    """Give every line of an order back to stock. Caller owns the transaction."""
    for item in sorted(order.items, key=lambda i: i.product_id):
        await try_adjust(
            db,
            item.product_id,
            item.quantity,
            CancelPayload(order_id=order.id, cause=cause),
            reference_type=ReferenceType.ORDER,
            reference_id=order.id,
            actor_id=actor_id,
        )


async def notify(event: str, order: Order, reason: str | None = None) -> None:
    await publish_order_event(event, order.id, order.user_id, order.status.value, reason)


# ── Checkout ──────────────────────────────────────────────────────────────────

async def checkout(db: AsyncSession, user_id: str, shipping_address: str | None = None) -> Order:
    order_id = str(uuid.uuid4())

    cart = (await db.execute(select(Cart).where(Cart.user_id == user_id))).scalar_one_or_none()
    if cart is None:
        raise EmptyCart()

    # expired lines are released for good, whether or not the checkout goes through
    async with unit_of_work(db):
        removed = await release_expired_items(db, cart.id)
    if removed:
        logger.info("Checkout for %s dropped %d expired line(s)", user_id, removed)

    async with unit_of_work(db):
        result = await db.execute(
            select(CartItem)
            .where(CartItem.cart_id == cart.id)
            .order_by(CartItem.product_id)
            .execution_options(populate_existing=True)
        )
        cart_items = list(result.scalars().all())
        if not cart_items:
            raise EmptyCart()

        lines: list[OrderItem] = []
        for item in cart_items:
            product_id, quantity, held = item.product_id, item.quantity, item.held_quantity
            product = await db.get(Product, product_id)
            if product is None:
                raise ProductNotFound(product_id)

            if not await claim_item(db, item, quantity, held):
                raise CartChanged("Cart was modified during checkout, please retry")
            await release_held(db, cart.id, product_id, held, "checkout", actor_id=user_id)

            await try_adjust(
                db,
                product_id,
                -quantity,
                SalePayload(order_id=order_id, unit_price=product.price),
                reference_type=ReferenceType.ORDER,
                reference_id=order_id,
                actor_id=user_id,
            )
            lines.append(OrderItem(
                product_id=product_id,
                product_name=product.name,
                quantity=quantity,
                unit_price=product.price,
            ))

        order = Order(
            id=order_id,
            user_id=user_id,
            status=OrderStatus.RESERVED,
            total_amount=sum(line.line_total for line in lines),
            shipping_address=shipping_address,
            items=lines,
            status_history=[],
        )
        order.record(OrderStatus.RESERVED, "Order placed", changed_by=user_id)
        db.add(order)

    logger.info(
        "Order %s reserved for user %s: %d line(s), total=%d",
        order.id, user_id, len(lines), order.total_amount,
    )
    await notify("order.reserved", order)
    return order


# ── Reads ─────────────────────────────────────────────────────────────────────

async def list_orders(db: AsyncSession, user_id: str, limit: int = 50) -> list[Order]:
    result = await db.execute(
        select(Order)
        .where(Order.user_id == user_id)
        .order_by(Order.created_at.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def get_order(db: AsyncSession, order_id: str, user_id: str | None = None) -> Order:
    """Fetch an order; with user_id set, orders of other users are reported as missing."""
    order = await load_order(db, order_id)
    if user_id is not None and order.user_id != user_id:
        raise OrderNotFound(order_id)
    return order


# ── Admin lifecycle ───────────────────────────────────────────────────────────

@with_optimistic_retry()
async def ship_order(
    db: AsyncSession, order_id: str, tracking_number: str, courier: str, actor_id: str
) -> Order:
    async with unit_of_work(db):
        order = await load_order(db, order_id, for_update=True)
        await transition_order(
            db,
            order,
            OrderStatus.SHIPPED,
            f"Shipped via {courier} ({tracking_number})",
            actor_id,
            tracking_number=tracking_number,
            tracking_courier=courier,
            shipped_at=utcnow(),
        )
    await notify("order.shipped", order)
    return order


@with_optimistic_retry()
async def complete_order(db: AsyncSession, order_id: str, actor_id: str, reason: str | None = None) -> Order:
    async with unit_of_work(db):
        order = await load_order(db, order_id, for_update=True)
        await transition_order(db, order, OrderStatus.COMPLETED, reason or "Delivered", actor_id)
    await notify("order.completed", order)
    return order


@with_optimistic_retry()
async def cancel_order(db: AsyncSession, order_id: str, reason: str, actor_id: str) -> Order:
    """
    Cancel from any non-terminal state. Stock comes back only while the goods
    are still in the warehouse (reserved or paid); a shipped order is not restocked.
    """
    async with unit_of_work(db):
        order = await load_order(db, order_id, for_update=True)
        previous = order.status
        await transition_order(db, order, OrderStatus.CANCELLED, reason, actor_id)
        if previous in (OrderStatus.RESERVED, OrderStatus.PAID):
            await release_order_stock(db, order, "admin", actor_id)
    await notify("order.cancelled", order, reason)
    return order
