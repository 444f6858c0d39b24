"""
Storefront Inventory - Atomic stock mutation

Every change to products.stock in the system goes through try_adjust():
  - the floor check and the write are one conditional UPDATE
        UPDATE products SET stock = stock + :delta
        WHERE id = :id AND stock >= :needed
    so two callers can never both take the last unit
  - the ledger row is added to the caller's session, so it commits or rolls
    back together with whatever else the caller is writing

try_adjust() never commits. The caller owns the transaction.
"""
import logging
from dataclasses import dataclass

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.exceptions import InsufficientStock, ProductNotFound
from storefront.core.retry import StaleDataError
from storefront.core.timeutil import utcnow
from storefront.models.catalog import LocationStock, Product
from storefront.models.ledger import LedgerEntryType, ReferenceType, StockLedgerEntry
from storefront.schemas.ledger import LedgerPayload

logger = logging.getLogger(__name__)


@dataclass
class StockAdjustment:
    product_id: str
    change: int
    before_balance: int
    after_balance: int
    entry: StockLedgerEntry


async def try_adjust(
    db: AsyncSession,
    product_id: str,
    delta: int,
    payload: LedgerPayload,
    *,
    reason: str | None = None,
    reference_type: ReferenceType = ReferenceType.SYSTEM,
    reference_id: str | None = None,
    actor_id: str | None = None,
    location_id: str | None = None,
    expected_stock: int | None = None,
) -> StockAdjustment:
    """
    Apply delta to a product's stock and append the matching ledger row.

    Negative deltas succeed only if the result stays >= 0, otherwise
    InsufficientStock is raised and nothing is written. Positive deltas always
    succeed; returning exactly what was taken is the caller's job.
    With expected_stock the update is also a compare-and-set on the current
    balance and a mismatch raises StaleDataError.
    """
    if delta == 0:
        raise ValueError("Stock delta must be non-zero")

    conditions = [Product.id == product_id]
    if delta < 0:
        conditions.append(Product.stock >= -delta)
    if expected_stock is not None:
        conditions.append(Product.stock == expected_stock)

    result = await db.execute(
        update(Product)
        .where(*conditions)
        .values(stock=Product.stock + delta, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )

    if result.rowcount == 0:
        row = (
            await db.execute(select(Product.name, Product.stock).where(Product.id == product_id))
        ).one_or_none()
        if row is None:
            raise ProductNotFound(product_id)
        if expected_stock is not None and row.stock != expected_stock:
            raise StaleDataError(
                f"Stock of {product_id} changed concurrently: expected {expected_stock}, found {row.stock}"
            )
        logger.info(
            "Insufficient stock for %s: requested=%d available=%d", product_id, -delta, row.stock
        )
        raise InsufficientStock(product_id, row.name, -delta, row.stock)

    # The row stays locked by our UPDATE until commit, so this read is our own write
    after = (await db.execute(select(Product.stock).where(Product.id == product_id))).scalar_one()

    entry = StockLedgerEntry(
        product_id=product_id,
        location_id=location_id,
        change=delta,
        before_balance=after - delta,
        after_balance=after,
        entry_type=LedgerEntryType(payload.kind),
        reference_type=reference_type,
        reference_id=reference_id,
        actor_id=actor_id,
        reason=reason,
        payload=payload.model_dump(mode="json"),
        created_at=utcnow(),
    )
    db.add(entry)

    return StockAdjustment(
        product_id=product_id,
        change=delta,
        before_balance=after - delta,
        after_balance=after,
        entry=entry,
    )


async def adjust_location_stock(
    db: AsyncSession,
    product_id: str,
    location_id: str,
    delta: int,
    expected: int | None = None,
) -> tuple[int, int]:
    """Conditionally move a per-location counter. Returns (before, after)."""
    conditions = [LocationStock.product_id == product_id, LocationStock.location_id == location_id]
    if delta < 0:
        conditions.append(LocationStock.quantity >= -delta)
    if expected is not None:
        conditions.append(LocationStock.quantity == expected)

    result = await db.execute(
        update(LocationStock)
        .where(*conditions)
        .values(quantity=LocationStock.quantity + delta, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )

    if result.rowcount == 0:
        current = (
            await db.execute(select(LocationStock.quantity).where(*conditions[:2]))
        ).scalar_one_or_none()
        if expected is not None and (current or 0) != expected:
            raise StaleDataError(
                f"Location stock of {product_id}@{location_id} changed concurrently"
            )
        if current is None and delta > 0:
            db.add(LocationStock(product_id=product_id, location_id=location_id, quantity=delta))
            await db.flush()
            return 0, delta
        raise InsufficientStock(product_id, f"{product_id} at location {location_id}", -delta, current or 0)

    after = (await db.execute(select(LocationStock.quantity).where(*conditions[:2]))).scalar_one()
    return after - delta, after
