"""
Storefront Inventory - Admin inventory operations

Catalog provisioning, locations, manual adjustments and ledger queries.
Every stock change here goes through try_adjust(); there is no admin path
that writes products.stock directly.
"""
import logging
from dataclasses import dataclass

from sqlalchemy import exists, select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.exceptions import LocationNotFound, ProductHasHistory, ProductNotFound
from storefront.core.retry import with_optimistic_retry
from storefront.db.database import unit_of_work
from storefront.db.stock_ops import adjust_location_stock, try_adjust
from storefront.models.catalog import Location, LocationStock, Product
from storefront.models.ledger import ReferenceType, StockLedgerEntry
from storefront.schemas.ledger import AdjustmentPayload, ReconciliationReport, RestockPayload

logger = logging.getLogger(__name__)


@dataclass
class AdjustmentResult:
    product_id: str
    location_id: str | None
    mode: str
    change: int
    before_balance: int
    after_balance: int
    location_before: int | None = None
    location_after: int | None = None
    ledger_entry_id: int | None = None


async def _require_product(db: AsyncSession, product_id: str) -> Product:
    product = await db.get(Product, product_id)
    if product is None:
        raise ProductNotFound(product_id)
    return product


async def _require_location(db: AsyncSession, location_id: str) -> Location:
    location = await db.get(Location, location_id)
    if location is None:
        raise LocationNotFound(location_id)
    return location


async def _current_stock(db: AsyncSession, product_id: str) -> int:
    return (await db.execute(select(Product.stock).where(Product.id == product_id))).scalar_one()


# ── Catalog ───────────────────────────────────────────────────────────────────

async def create_product(
    db: AsyncSession,
    *,
    name: str,
    price: int,
    initial_stock: int = 0,
    description: str | None = None,
    reservation_duration: int | None = None,
    quota_limit: int = 0,
    actor_id: str | None = None,
) -> Product:
    """Create a product. Initial stock is booked as a restock so the ledger replays to it."""
    async with unit_of_work(db):
        product = Product(
            name=name,
            description=description,
            price=price,
            stock=0,
            reservation_duration=reservation_duration,
            quota_limit=quota_limit,
        )
        db.add(product)
        await db.flush()

        if initial_stock > 0:
            await try_adjust(
                db,
                product.id,
                initial_stock,
                RestockPayload(source="initial"),
                reason="Initial stock",
                reference_type=ReferenceType.MANUAL,
                actor_id=actor_id,
            )

    await db.refresh(product)
    logger.info("Product %s created by %s with stock=%d", product.id, actor_id, product.stock)
    return product


async def list_products(db: AsyncSession, include_inactive: bool = False) -> list[Product]:
    stmt = select(Product).order_by(Product.created_at)
    if not include_inactive:
        stmt = stmt.where(Product.is_active.is_(True))
    # stock is only ever changed by conditional UPDATEs; reload it
    result = await db.execute(stmt.execution_options(populate_existing=True))
    return list(result.scalars().all())


async def delete_product(db: AsyncSession, product_id: str) -> None:
    async with unit_of_work(db):
        product = await _require_product(db, product_id)
        has_history = (
            await db.execute(select(exists().where(StockLedgerEntry.product_id == product_id)))
        ).scalar()
        if has_history:
            raise ProductHasHistory(product_id)
        await db.delete(product)
    logger.info("Product %s deleted", product_id)


# ── Locations ─────────────────────────────────────────────────────────────────

async def create_location(
    db: AsyncSession, *, name: str, kind: str = "warehouse", address: str | None = None
) -> Location:
    async with unit_of_work(db):
        location = Location(name=name, kind=kind, address=address)
        db.add(location)
    logger.info("Location %s (%s) created", location.id, name)
    return location


async def list_locations(db: AsyncSession) -> list[Location]:
    result = await db.execute(select(Location).order_by(Location.name))
    return list(result.scalars().all())


# ── Manual adjustment ─────────────────────────────────────────────────────────

@with_optimistic_retry()
async def adjust_inventory(
    db: AsyncSession,
    product_id: str,
    mode: str,
    quantity: int,
    reason: str,
    actor_id: str | None,
    location_id: str | None = None,
) -> AdjustmentResult:
    """
    Manual stock adjustment (add / subtract / set).

    'set' is a compare-and-set against the balance read at the start of the
    attempt. If another writer moves the balance first the unit of work rolls
    back and the decorator retries with a fresh read.
    """
    if mode not in ("add", "subtract", "set"):
        raise ValueError(f"Unknown adjustment mode: {mode}")
    if quantity < 0:
        raise ValueError("Adjustment quantity must be >= 0")
    if not reason or not reason.strip():
        raise ValueError("Adjustment reason is required")

    async with unit_of_work(db):
        await _require_product(db, product_id)
        if location_id is not None:
            await _require_location(db, location_id)

        expected_stock = None
        expected_location = None
        if mode == "add":
            delta = quantity
        elif mode == "subtract":
            delta = -quantity
        elif location_id is not None:
            observed = (
                await db.execute(
                    select(LocationStock.quantity).where(
                        LocationStock.product_id == product_id,
                        LocationStock.location_id == location_id,
                    )
                )
            ).scalar_one_or_none() or 0
            expected_location = observed
            delta = quantity - observed
        else:
            observed = await _current_stock(db, product_id)
            expected_stock = observed
            delta = quantity - observed

        if delta == 0:
            balance = await _current_stock(db, product_id)
            return AdjustmentResult(
                product_id=product_id,
                location_id=location_id,
                mode=mode,
                change=0,
                before_balance=balance,
                after_balance=balance,
            )

        location_before = location_after = None
        if location_id is not None:
            location_before, location_after = await adjust_location_stock(
                db, product_id, location_id, delta, expected=expected_location
            )

        adjustment = await try_adjust(
            db,
            product_id,
            delta,
            AdjustmentPayload(mode=mode, location_id=location_id),
            reason=reason.strip(),
            reference_type=ReferenceType.MANUAL,
            actor_id=actor_id,
            location_id=location_id,
            expected_stock=expected_stock,
        )
        await db.flush()

    logger.info(
        "Stock of %s adjusted by %+d (%s) by %s: %s",
        product_id, delta, mode, actor_id, reason,
    )
    return AdjustmentResult(
        product_id=product_id,
        location_id=location_id,
        mode=mode,
        change=delta,
        before_balance=adjustment.before_balance,
        after_balance=adjustment.after_balance,
        location_before=location_before,
        location_after=location_after,
        ledger_entry_id=adjustment.entry.id,
    )


# ── Ledger ────────────────────────────────────────────────────────────────────

async def list_ledger(
    db: AsyncSession,
    product_id: str | None = None,
    location_id: str | None = None,
    limit: int = 100,
) -> list[StockLedgerEntry]:
    stmt = select(StockLedgerEntry).order_by(StockLedgerEntry.id.desc()).limit(limit)
    if product_id is not None:
        stmt = stmt.where(StockLedgerEntry.product_id == product_id)
    if location_id is not None:
        stmt = stmt.where(StockLedgerEntry.location_id == location_id)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def reconcile_product(db: AsyncSession, product_id: str) -> ReconciliationReport:
    """Replay a product's ledger from zero and compare it with products.stock."""
    await _require_product(db, product_id)
    stock = await _current_stock(db, product_id)

    entries = await db.scalars(
        select(StockLedgerEntry)
        .where(StockLedgerEntry.product_id == product_id)
        .order_by(StockLedgerEntry.id)
    )
    balance = 0
    count = 0
    first_break = None
    for entry in entries:
        count += 1
        if first_break is None and (
            entry.before_balance != balance
            or entry.after_balance != entry.before_balance + entry.change
        ):
            first_break = entry.id
        balance += entry.change

    consistent = first_break is None and balance == stock
    if not consistent:
        logger.warning(
            "Ledger for %s does not reconcile: stock=%d replayed=%d break_at=%s",
            product_id, stock, balance, first_break,
        )
    return ReconciliationReport(
        product_id=product_id,
        stock=stock,
        replayed_balance=balance,
        entry_count=count,
        first_break_entry_id=first_break,
        consistent=consistent,
    )

