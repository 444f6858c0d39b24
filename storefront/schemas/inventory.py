"""
Storefront Inventory - Admin inventory schemas
"""
from datetime import datetime
from typing import Literal
from pydantic import BaseModel, Field


class ProductCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    price: int = Field(..., ge=0)  # minor units
    initial_stock: int = Field(0, ge=0)
    reservation_duration: int | None = Field(None, ge=1, le=10080)  # minutes
    quota_limit: int = Field(0, ge=0)


class ProductResponse(BaseModel):
    id: str
    name: str
    description: str | None
    price: int
    stock: int
    reservation_duration: int | None
    quota_limit: int
    is_active: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class LocationCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    kind: Literal["warehouse", "store", "virtual"] = "warehouse"
    address: str | None = None


class LocationResponse(BaseModel):
    id: str
    name: str
    kind: str
    address: str | None
    is_active: bool

    model_config = {"from_attributes": True}


class AdjustmentRequest(BaseModel):
    product_id: str
    mode: Literal["add", "subtract", "set"] = "add"
    quantity: int = Field(..., ge=0)
    reason: str = Field(..., min_length=1, max_length=500)
    location_id: str | None = None


class AdjustmentResponse(BaseModel):
    product_id: str
    location_id: str | None
    mode: str
    change: int
    before_balance: int
    after_balance: int
    location_before: int | None = None
    location_after: int | None = None
    ledger_entry_id: int | None = None

    model_config = {"from_attributes": True}
