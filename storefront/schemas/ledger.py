"""
Storefront Inventory - Ledger payloads and views

Each ledger row carries a structured payload tagged by `kind`; the row's
entry_type is always equal to that kind.
"""
from datetime import datetime
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter


class RestockPayload(BaseModel):
    kind: Literal["restock"] = "restock"
    source: Literal["initial", "manual", "return"] = "manual"


class ReservePayload(BaseModel):
    kind: Literal["reserve"] = "reserve"
    cart_id: str
    expires_at: datetime


class ReleasePayload(BaseModel):
    kind: Literal["release"] = "release"
    cart_id: str
    cause: Literal["expired", "quantity_reduced", "removed", "checkout"]


class SalePayload(BaseModel):
    kind: Literal["sale"] = "sale"
    order_id: str
    unit_price: int


class CancelPayload(BaseModel):
    kind: Literal["cancel"] = "cancel"
    order_id: str
    cause: Literal["payment_timeout", "payment_failed", "admin"]


class AdjustmentPayload(BaseModel):
    kind: Literal["adjustment"] = "adjustment"
    mode: Literal["add", "subtract", "set"]
    location_id: str | None = None


LedgerPayload = Annotated[
    Union[RestockPayload, ReservePayload, ReleasePayload, SalePayload, CancelPayload, AdjustmentPayload],
    Field(discriminator="kind"),
]

ledger_payload_adapter: TypeAdapter[LedgerPayload] = TypeAdapter(LedgerPayload)


class LedgerEntryView(BaseModel):
    id: int
    product_id: str
    location_id: str | None
    change: int
    before_balance: int
    after_balance: int
    entry_type: str
    reference_type: str
    reference_id: str | None
    actor_id: str | None
    reason: str | None
    payload: LedgerPayload
    created_at: datetime

    @classmethod
    def from_entry(cls, entry) -> "LedgerEntryView":
        return cls(
            id=entry.id,
            product_id=entry.product_id,
            location_id=entry.location_id,
            change=entry.change,
            before_balance=entry.before_balance,
            after_balance=entry.after_balance,
            entry_type=entry.entry_type.value,
            reference_type=entry.reference_type.value,
            reference_id=entry.reference_id,
            actor_id=entry.actor_id,
            reason=entry.reason,
            payload=entry.payload,
            created_at=entry.created_at,
        )


class ReconciliationReport(BaseModel):
    product_id: str
    stock: int
    replayed_balance: int
    entry_count: int
    first_break_entry_id: int | None = None
    consistent: bool
