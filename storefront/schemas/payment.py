"""
Storefront Inventory - Payment webhook and slip schemas
"""
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field


class PaymentEventData(BaseModel):
    model_config = ConfigDict(extra="allow")

    order_id: str | None = None
    transaction_id: str | None = None
    refund_id: str | None = None
    amount: int | None = None
    reason: str | None = None


class PaymentEvent(BaseModel):
    """Gateway delivery, e.g. {"type": "transaction.succeeded", "data": {"order_id": ...}}."""
    type: str
    data: PaymentEventData = Field(default_factory=PaymentEventData)


class SlipVerifyRequest(BaseModel):
    order_id: str
    bank_name: str = Field(..., min_length=1, max_length=100)
    transfer_amount: int = Field(..., ge=0)  # minor units
    transfer_date: datetime
    reference_number: str | None = Field(None, max_length=100)
    sender_name: str | None = Field(None, max_length=255)
    sender_account: str | None = Field(None, max_length=64)
    slip_image_url: str | None = Field(None, max_length=1000)


class SlipRejectRequest(BaseModel):
    reason: str = Field("Slip verification failed", min_length=1, max_length=500)


class SweepResponse(BaseModel):
    processed: int
    expired: int
    errors: int
    carts_swept: int
    cart_items_released: int
