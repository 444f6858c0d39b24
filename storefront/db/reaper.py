"""
Storefront Inventory - Reservation reaper

One sweep:
  - every order still 'reserved' past createdAt + min(reservation_duration of
    its products) is cancelled and its lines go back to stock
  - every expired cart line in the system is released

Each order and each cart is its own unit of work. A failure is logged,
counted and rolled back without stopping the rest of the sweep. Running the
sweep more often than needed is harmless: every release is claimed by a
conditional UPDATE/DELETE first, so nothing is returned twice.
"""
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta

from sqlalchemy import distinct, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.config import get_settings
from storefront.core.retry import StaleDataError
from storefront.core.timeutil import as_utc, utcnow
from storefront.db.cart_ops import release_expired_items
from storefront.db.database import unit_of_work
from storefront.db.order_ops import load_order, notify, release_order_stock, transition_order
from storefront.models.cart import CartItem
from storefront.models.catalog import Product
from storefront.models.order import Order, OrderItem, OrderStatus

settings = get_settings()
logger = logging.getLogger(__name__)


@dataclass
class ReaperSummary:
    processed: int = 0
    expired: int = 0
    errors: int = 0
    carts_swept: int = 0
    cart_items_released: int = 0

    def as_dict(self) -> dict:
        return asdict(self)


async def order_window_minutes(db: AsyncSession, order_id: str) -> int:
    """The shortest reservation window among the order's products governs the order."""
    result = await db.execute(
        select(func.min(Product.reservation_duration))
        .join(OrderItem, OrderItem.product_id == Product.id)
        .where(OrderItem.order_id == order_id)
    )
    minutes = result.scalar_one_or_none()
    return minutes or settings.ORDER_RESERVATION_DEFAULT_MINUTES


async def expire_order(db: AsyncSession, order_id: str, now: datetime) -> bool:
    """Cancel one reserved order if its window has closed. True if it was cancelled here."""
    async with unit_of_work(db):
        order = await load_order(db, order_id, for_update=True)
        if order.status != OrderStatus.RESERVED:
            return False

        minutes = await order_window_minutes(db, order.id)
        deadline = as_utc(order.created_at) + timedelta(minutes=minutes)
        if now <= deadline:
            return False

        reason = f"System: Payment timeout > {minutes} mins"
        await transition_order(db, order, OrderStatus.CANCELLED, reason)
        await release_order_stock(db, order, "payment_timeout")

    await notify("order.cancelled", order, reason)
    return True


async def sweep_expired_orders(db: AsyncSession, summary: ReaperSummary, now: datetime) -> None:
    """Expire every reserved order past its deadline; `processed` counts only those."""
    result = await db.execute(
        select(Order.id, Order.created_at).where(Order.status == OrderStatus.RESERVED).order_by(Order.created_at)
    )
    candidates = list(result.all())

    for order_id, created_at in candidates:
        try:
            minutes = await order_window_minutes(db, order_id)
            if now <= as_utc(created_at) + timedelta(minutes=minutes):
                continue
            summary.processed += 1
            if await expire_order(db, order_id, now):
                summary.expired += 1
        except StaleDataError:
            # paid or cancelled by someone else between our read and our write
            logger.info("Order %s changed status during sweep; skipped", order_id)
        except Exception:
            summary.errors += 1
            logger.exception("Reaper failed to expire order %s", order_id)


async def sweep_expired_carts(db: AsyncSession, summary: ReaperSummary, now: datetime) -> None:
    result = await db.execute(
        select(distinct(CartItem.cart_id)).where(CartItem.expires_at < now)
    )
    cart_ids = sorted(result.scalars().all())

    for cart_id in cart_ids:
        try:
            async with unit_of_work(db):
                released = await release_expired_items(db, cart_id, now)
        except Exception:
            summary.errors += 1
            logger.exception("Reaper failed to release expired items of cart %s", cart_id)
            continue
        summary.carts_swept += 1
        summary.cart_items_released += released


async def run_sweep(db: AsyncSession, now: datetime | None = None) -> ReaperSummary:
    now = now or utcnow()
    summary = ReaperSummary()
    await sweep_expired_orders(db, summary, now)
    await sweep_expired_carts(db, summary, now)
    logger.info(
        "Reaper sweep done: processed=%d expired=%d errors=%d carts=%d cart_items=%d",
        summary.processed, summary.expired, summary.errors,
        summary.carts_swept, summary.cart_items_released,
    )
    return summary
