"""
Storefront Inventory - Orders API

Flow of POST /orders:
  1. JWT validated by middleware (request.state.user set)
  2. Idempotency-Key replay handled by IdempotencyMiddleware
  3. checkout() converts the cart into a reserved order in one transaction
  4. order.reserved published after commit
"""
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.api.deps import current_user_id
from storefront.db.database import get_db
from storefront.db.order_ops import checkout, get_order, list_orders
from storefront.schemas.order import CheckoutRequest, OrderResponse

router = APIRouter(prefix="/orders", tags=["orders"])


@router.post("", response_model=OrderResponse, status_code=status.HTTP_201_CREATED)
async def place_order(
    payload: CheckoutRequest,
    user_id: str = Depends(current_user_id),
    db: AsyncSession = Depends(get_db),
):
    order = await checkout(db, user_id, payload.shipping_address)
    return OrderResponse.model_validate(order)


@router.get("", response_model=list[OrderResponse])
async def my_orders(
    limit: int = Query(50, ge=1, le=200),
    user_id: str = Depends(current_user_id),
    db: AsyncSession = Depends(get_db),
):
    return [OrderResponse.model_validate(o) for o in await list_orders(db, user_id, limit)]


@router.get("/{order_id}", response_model=OrderResponse)
async def my_order(order_id: str, user_id: str = Depends(current_user_id), db: AsyncSession = Depends(get_db)):
    return OrderResponse.model_validate(await get_order(db, order_id, user_id))
