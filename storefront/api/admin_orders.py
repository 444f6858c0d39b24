"""
Storefront Inventory - Admin order lifecycle and bank slip API
"""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.api.deps import require_admin
from storefront.db.database import get_db
from storefront.db.order_ops import cancel_order, complete_order, ship_order
from storefront.db.payment_ops import reject_bank_slip, verify_bank_slip
from storefront.schemas.order import CancelRequest, CompleteRequest, OrderResponse, ShipRequest
from storefront.schemas.payment import SlipRejectRequest, SlipVerifyRequest

router = APIRouter(prefix="/admin", tags=["admin-orders"], dependencies=[Depends(require_admin)])


@router.post("/orders/{order_id}/ship", response_model=OrderResponse)
async def ship(
    order_id: str,
    payload: ShipRequest,
    admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    order = await ship_order(db, order_id, payload.tracking_number, payload.courier, admin["sub"])
    return OrderResponse.model_validate(order)


@router.post("/orders/{order_id}/complete", response_model=OrderResponse)
async def complete(
    order_id: str,
    payload: CompleteRequest | None = None,
    admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    reason = payload.reason if payload else None
    return OrderResponse.model_validate(await complete_order(db, order_id, admin["sub"], reason))


@router.post("/orders/{order_id}/cancel", response_model=OrderResponse)
async def cancel(
    order_id: str,
    payload: CancelRequest,
    admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return OrderResponse.model_validate(await cancel_order(db, order_id, payload.reason, admin["sub"]))


@router.post("/slips/verify", response_model=OrderResponse)
async def verify_slip(
    payload: SlipVerifyRequest,
    admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    order = await verify_bank_slip(db, actor_id=admin["sub"], **payload.model_dump())
    return OrderResponse.model_validate(order)


@router.post("/slips/{order_id}/reject", response_model=OrderResponse)
async def reject_slip(
    order_id: str,
    payload: SlipRejectRequest,
    admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return OrderResponse.model_validate(await reject_bank_slip(db, order_id, payload.reason, admin["sub"]))
