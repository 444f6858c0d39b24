"""
Storefront Inventory - Order schemas
"""
from datetime import datetime
from pydantic import BaseModel, Field, field_validator


class CheckoutRequest(BaseModel):
    shipping_address: str | None = Field(None, max_length=1000)


class OrderItemResponse(BaseModel):
    product_id: str
    product_name: str
    quantity: int
    unit_price: int
    line_total: int

    model_config = {"from_attributes": True}


class StatusHistoryResponse(BaseModel):
    status: str
    reason: str | None
    changed_by: str | None
    created_at: datetime

    model_config = {"from_attributes": True}


class OrderResponse(BaseModel):
    id: str
    user_id: str
    status: str
    total_amount: int
    shipping_address: str | None = None
    payment_id: str | None = None
    tracking_courier: str | None = None
    tracking_number: str | None = None
    shipped_at: datetime | None = None
    created_at: datetime
    items: list[OrderItemResponse]
    status_history: list[StatusHistoryResponse]

    model_config = {"from_attributes": True}

    @field_validator("status", mode="before")
    @classmethod
    def _status_value(cls, v):
        return getattr(v, "value", v)


class ShipRequest(BaseModel):
    tracking_number: str = Field(..., min_length=1, max_length=100)
    courier: str = Field(..., min_length=1, max_length=100)


class CompleteRequest(BaseModel):
    reason: str | None = Field(None, max_length=500)


class CancelRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)
