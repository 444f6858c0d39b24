"""
Storefront Inventory - Cart API

Both routes sweep the caller's expired lines first; removed_count and notice
tell the client how many lines timed out.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.api.deps import current_user_id
from storefront.db.cart_ops import get_cart, sync_cart
from storefront.db.database import get_db
from storefront.schemas.cart import CartResponse, CartSyncRequest

router = APIRouter(prefix="/cart", tags=["cart"])


@router.get("", response_model=CartResponse)
async def read_cart(user_id: str = Depends(current_user_id), db: AsyncSession = Depends(get_db)):
    view = await get_cart(db, user_id)
    return CartResponse.model_validate(view)


@router.put("", response_model=CartResponse)
async def replace_cart(
    payload: CartSyncRequest,
    user_id: str = Depends(current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Set the cart to exactly payload.items, reserving or releasing stock for the difference."""
    view = await sync_cart(db, user_id, [(i.product_id, i.quantity) for i in payload.items])
    return CartResponse.model_validate(view)
