"""
Storefront Inventory - Stock ledger

[TRANSACTIONAL DATA] Append-only. One row per stock mutation, written in the
same transaction as the mutation itself. Replaying a product's rows from zero
in id order reproduces products.stock. Rows are never updated or deleted.
"""
from datetime import datetime
from enum import Enum as PyEnum
from sqlalchemy import String, Integer, DateTime, Text, JSON, Enum, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from storefront.core.timeutil import utcnow
from storefront.db.database import Base


class LedgerEntryType(str, PyEnum):
    RESTOCK = "restock"
    RESERVE = "reserve"
    RELEASE = "release"
    SALE = "sale"
    CANCEL = "cancel"
    ADJUSTMENT = "adjustment"


class ReferenceType(str, PyEnum):
    ORDER = "order"
    CART = "cart"
    MANUAL = "manual"
    SYSTEM = "system"


class StockLedgerEntry(Base):
    __tablename__ = "stock_ledger"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    product_id: Mapped[str] = mapped_column(String(36), ForeignKey("products.id"), index=True, nullable=False)
    location_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("locations.id"), index=True, nullable=True)
    change: Mapped[int] = mapped_column(Integer, nullable=False)  # positive=returned/added, negative=consumed
    before_balance: Mapped[int] = mapped_column(Integer, nullable=False)
    after_balance: Mapped[int] = mapped_column(Integer, nullable=False)
    entry_type: Mapped[LedgerEntryType] = mapped_column(
        Enum(LedgerEntryType, name="ledger_entry_type", native_enum=False, length=20,
             values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    reference_type: Mapped[ReferenceType] = mapped_column(
        Enum(ReferenceType, name="ledger_reference_type", native_enum=False, length=20,
             values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=ReferenceType.SYSTEM,
    )
    reference_id: Mapped[str | None] = mapped_column(String(64), index=True, nullable=True)
    actor_id: Mapped[str | None] = mapped_column(String(64), nullable=True)  # None: system
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True, nullable=False)
