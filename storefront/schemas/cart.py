"""
Storefront Inventory - Cart schemas
"""
from datetime import datetime
from pydantic import BaseModel, Field


class CartItemRequest(BaseModel):
    product_id: str = Field(..., min_length=1, max_length=36)
    quantity: int = Field(..., ge=0, le=1000)  # 0 removes the line


class CartSyncRequest(BaseModel):
    """Full desired state of the cart; lines left out are removed."""
    items: list[CartItemRequest] = Field(default_factory=list, max_length=100)


class CartLineResponse(BaseModel):
    product_id: str
    product_name: str
    unit_price: int
    quantity: int
    line_total: int
    expires_at: datetime

    model_config = {"from_attributes": True}


class CartResponse(BaseModel):
    cart_id: str | None
    items: list[CartLineResponse]
    total_amount: int
    removed_count: int = 0
    notice: str | None = None

    model_config = {"from_attributes": True}
