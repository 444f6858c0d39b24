"""
Storefront Inventory - Admin inventory API (catalog, locations, adjustments, ledger)
"""
import logging
from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.api.deps import require_admin
from storefront.db.database import get_db
from storefront.db.inventory_ops import (
    adjust_inventory,
    create_location,
    create_product,
    delete_product,
    list_ledger,
    list_locations,
    list_products,
    reconcile_product,
)
from storefront.schemas.inventory import (
    AdjustmentRequest,
    AdjustmentResponse,
    LocationCreateRequest,
    LocationResponse,
    ProductCreateRequest,
    ProductResponse,
)
from storefront.schemas.ledger import LedgerEntryView, ReconciliationReport

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/admin", tags=["admin-inventory"], dependencies=[Depends(require_admin)])


@router.post("/products", response_model=ProductResponse, status_code=status.HTTP_201_CREATED)
async def add_product(
    payload: ProductCreateRequest,
    admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    product = await create_product(db, actor_id=admin["sub"], **payload.model_dump())
    return ProductResponse.model_validate(product)


@router.get("/products", response_model=list[ProductResponse])
async def get_products(include_inactive: bool = False, db: AsyncSession = Depends(get_db)):
    return [ProductResponse.model_validate(p) for p in await list_products(db, include_inactive)]


@router.delete("/products/{product_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_product(product_id: str, db: AsyncSession = Depends(get_db)):
    await delete_product(db, product_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/locations", response_model=LocationResponse, status_code=status.HTTP_201_CREATED)
async def add_location(payload: LocationCreateRequest, db: AsyncSession = Depends(get_db)):
    try:
        location = await create_location(db, **payload.model_dump())
    except IntegrityError:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=f"Location '{payload.name}' already exists")
    return LocationResponse.model_validate(location)


@router.get("/locations", response_model=list[LocationResponse])
async def get_locations(db: AsyncSession = Depends(get_db)):
    return [LocationResponse.model_validate(loc) for loc in await list_locations(db)]


@router.post("/inventory/adjust", response_model=AdjustmentResponse)
async def adjust_stock(
    payload: AdjustmentRequest,
    admin: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Manual +N / -N / =N with a mandatory reason. Same conditional update and ledger as every other path."""
    try:
        result = await adjust_inventory(
            db,
            payload.product_id,
            payload.mode,
            payload.quantity,
            payload.reason,
            admin["sub"],
            location_id=payload.location_id,
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return AdjustmentResponse.model_validate(result)


@router.get("/ledger", response_model=list[LedgerEntryView])
async def get_ledger(
    product_id: str | None = None,
    location_id: str | None = None,
    limit: int = Query(100, ge=1, le=1000),
    db: AsyncSession = Depends(get_db),
):
    entries = await list_ledger(db, product_id=product_id, location_id=location_id, limit=limit)
    return [LedgerEntryView.from_entry(e) for e in entries]


@router.get("/ledger/{product_id}/reconcile", response_model=ReconciliationReport)
async def reconcile(product_id: str, db: AsyncSession = Depends(get_db)):
    return await reconcile_product(db, product_id)
