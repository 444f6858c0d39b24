"""
Storefront Inventory - Cart reservations (soft holds)

A cart line holds stock: the units were taken from products.stock when the
line was written and go back exactly once, through
  - the expiry sweep (release_expired_items)
  - a quantity reduction or removal in sync_cart
  - conversion at checkout (storefront.db.order_ops)

Each of those first claims the line with a conditional DELETE/UPDATE on the
cart_items row, matching the quantity and held units it read; only the caller
whose statement matched the row may return the held units.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.config import get_settings
from storefront.core.exceptions import CartChanged, ProductNotFound, QuotaExceeded
from storefront.core.timeutil import as_utc, utcnow
from storefront.db.database import unit_of_work
from storefront.db.stock_ops import try_adjust
from storefront.models.cart import Cart, CartItem
from storefront.models.catalog import Product
from storefront.models.ledger import ReferenceType
from storefront.models.order import Order, OrderItem
from storefront.schemas.ledger import ReleasePayload, ReservePayload

settings = get_settings()
logger = logging.getLogger(__name__)


@dataclass
class CartLine:
    product_id: str
    product_name: str
    unit_price: int
    quantity: int
    expires_at: datetime

    @property
    def line_total(self) -> int:
        return self.unit_price * self.quantity


@dataclass
class CartView:
    user_id: str
    cart_id: str | None
    items: list[CartLine] = field(default_factory=list)
    removed_count: int = 0

    @property
    def total_amount(self) -> int:
        return sum(line.line_total for line in self.items)

    @property
    def notice(self) -> str | None:
        if not self.removed_count:
            return None
        return f"{self.removed_count} item(s) removed due to reservation timeout"


async def claim_item(
    db: AsyncSession, item: CartItem, quantity: int, held: int, expired_before: datetime | None = None
) -> bool:
    """
    Delete a cart line only if it still carries the quantity and held units the
    caller read. True means the caller now owns exactly `held` units.
    """
    stmt = delete(CartItem).where(
        CartItem.id == item.id,
        CartItem.quantity == quantity,
        CartItem.held_quantity == held,
    )
    if expired_before is not None:
        stmt = stmt.where(CartItem.expires_at < expired_before)
    result = await db.execute(stmt.execution_options(synchronize_session=False))
    db.expunge(item)
    return result.rowcount == 1


async def release_held(
    db: AsyncSession, cart_id: str, product_id: str, quantity: int, cause: str, actor_id: str | None = None
) -> None:
    if quantity <= 0:
        return
    await try_adjust(
        db,
        product_id,
        quantity,
        ReleasePayload(cart_id=cart_id, cause=cause),
        reference_type=ReferenceType.CART,
        reference_id=cart_id,
        actor_id=actor_id,
    )


async def release_expired_items(db: AsyncSession, cart_id: str, now: datetime | None = None) -> int:
    """
    Drop every expired line of one cart and give its held stock back.
    Does not commit. Returns the number of lines removed by this call.
    """
    now = now or utcnow()
    result = await db.execute(
        select(CartItem)
        .where(CartItem.cart_id == cart_id, CartItem.expires_at < now)
        .order_by(CartItem.product_id)
        .execution_options(populate_existing=True)
    )
    removed = 0
    for item in result.scalars().all():
        held = item.held_quantity
        product_id = item.product_id
        if not await claim_item(db, item, item.quantity, held, expired_before=now):
            continue  # released, resized or refreshed by someone else
        await release_held(db, cart_id, product_id, held, "expired")
        removed += 1

    if removed:
        logger.info("Released %d expired item(s) from cart %s", removed, cart_id)
    return removed


async def quantity_bought(db: AsyncSession, user_id: str, product_id: str) -> int:
    """Units of a product across all of the user's orders."""
    result = await db.execute(
        select(func.coalesce(func.sum(OrderItem.quantity), 0))
        .join(Order, Order.id == OrderItem.order_id)
        .where(Order.user_id == user_id, OrderItem.product_id == product_id)
    )
    return int(result.scalar_one())


async def check_quota(db: AsyncSession, user_id: str, product: Product, desired_qty: int) -> None:
    if product.quota_limit <= 0:
        return
    bought = await quantity_bought(db, user_id, product.id)
    if bought + desired_qty > product.quota_limit:
        logger.info(
            "Quota refused for user %s on %s: limit=%d bought=%d requested=%d",
            user_id, product.id, product.quota_limit, bought, desired_qty,
        )
        raise QuotaExceeded(product.name, product.quota_limit, bought, desired_qty)


async def _find_cart(db: AsyncSession, user_id: str) -> Cart | None:
    result = await db.execute(select(Cart).where(Cart.user_id == user_id))
    return result.scalar_one_or_none()


async def _load_lines(db: AsyncSession, cart_id: str) -> list[CartLine]:
    result = await db.execute(
        select(CartItem, Product.name, Product.price)
        .join(Product, Product.id == CartItem.product_id)
        .where(CartItem.cart_id == cart_id)
        .order_by(CartItem.product_id)
        .execution_options(populate_existing=True)
    )
    return [
        CartLine(
            product_id=item.product_id,
            product_name=name,
            unit_price=price,
            quantity=item.quantity,
            expires_at=as_utc(item.expires_at),
        )
        for item, name, price in result.all()
    ]


async def get_cart(db: AsyncSession, user_id: str) -> CartView:
    """Sweep the user's expired lines, then return what is left."""
    cart = await _find_cart(db, user_id)
    if cart is None:
        return CartView(user_id=user_id, cart_id=None)

    async with unit_of_work(db):
        removed = await release_expired_items(db, cart.id)
    items = await _load_lines(db, cart.id)
    return CartView(user_id=user_id, cart_id=cart.id, items=items, removed_count=removed)


def _merge_desired(desired: Iterable[tuple[str, int]]) -> dict[str, int]:
    wanted: dict[str, int] = {}
    for product_id, quantity in desired:
        wanted[product_id] = wanted.get(product_id, 0) + max(0, quantity)
    return wanted


async def sync_cart(db: AsyncSession, user_id: str, desired: Iterable[tuple[str, int]]) -> CartView:
    """
    Replace the user's cart with the desired {product_id: quantity} state.

    The whole diff runs in one unit of work: if any product fails (not found,
    quota, insufficient stock) every stock change made earlier in the same
    call is rolled back with it. Products are visited in id order so two
    syncs touching the same products lock them in the same order.
    """
    wanted = _merge_desired(desired)
    now = utcnow()

    async with unit_of_work(db):
        cart = await _find_cart(db, user_id)
        if cart is None:
            cart = Cart(user_id=user_id)
            db.add(cart)
            await db.flush()

        removed = await release_expired_items(db, cart.id, now)

        result = await db.execute(
            select(CartItem)
            .where(CartItem.cart_id == cart.id)
            .execution_options(populate_existing=True)
        )
        current = {item.product_id: item for item in result.scalars().all()}

        for product_id in sorted(set(wanted) | set(current)):
            target = wanted.get(product_id, 0)
            item = current.get(product_id)

            if target == 0:
                if item is not None:
                    held = item.held_quantity
                    if not await claim_item(db, item, item.quantity, held):
                        raise CartChanged("Cart was modified concurrently, please retry")
                    await release_held(db, cart.id, product_id, held, "removed", actor_id=user_id)
                continue

            product = await db.get(Product, product_id)
            if product is None or not product.is_active:
                raise ProductNotFound(product_id)

            minutes = product.reservation_duration or settings.CART_RESERVATION_DEFAULT_MINUTES
            expires_at = now + timedelta(minutes=minutes)
            current_qty = item.quantity if item is not None else 0
            delta = target - current_qty

            held_change = 0
            if delta > 0:
                await check_quota(db, user_id, product, target)
                await try_adjust(
                    db,
                    product_id,
                    -delta,
                    ReservePayload(cart_id=cart.id, expires_at=expires_at),
                    reference_type=ReferenceType.CART,
                    reference_id=cart.id,
                    actor_id=user_id,
                )
                held_change = delta
            elif delta < 0:
                give_back = min(item.held_quantity, -delta)
                await release_held(db, cart.id, product_id, give_back, "quantity_reduced", actor_id=user_id)
                held_change = -give_back

            if item is None:
                db.add(CartItem(
                    cart_id=cart.id,
                    product_id=product_id,
                    quantity=target,
                    held_quantity=held_change,
                    expires_at=expires_at,
                ))
                continue

            # every touched line gets a fresh timer, even when its quantity is unchanged
            result = await db.execute(
                update(CartItem)
                .where(
                    CartItem.id == item.id,
                    CartItem.quantity == item.quantity,
                    CartItem.held_quantity == item.held_quantity,
                )
                .values(
                    quantity=target,
                    held_quantity=CartItem.held_quantity + held_change,
                    expires_at=expires_at,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise CartChanged("Cart was modified concurrently, please retry")

        await db.flush()

    items = await _load_lines(db, cart.id)
    logger.info("Cart %s of user %s synced: %d line(s)", cart.id, user_id, len(items))
    return CartView(user_id=user_id, cart_id=cart.id, items=items, removed_count=removed)
