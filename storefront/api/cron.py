"""
Storefront Inventory - Scheduled sweep trigger

Any external scheduler may call this as often as it likes; a sweep only
releases what has actually expired. Guarded by `Authorization: Bearer <CRON_SECRET>`.
"""
import hmac
import logging
from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.config import get_settings
from storefront.db.database import get_db
from storefront.db.reaper import run_sweep
from storefront.schemas.payment import SweepResponse

settings = get_settings()
logger = logging.getLogger(__name__)
router = APIRouter(prefix="/cron", tags=["cron"])


def verify_cron_secret(request: Request) -> None:
    if not settings.CRON_SECRET:
        return
    supplied = request.headers.get("Authorization", "")
    if not hmac.compare_digest(supplied, f"Bearer {settings.CRON_SECRET}"):
        logger.warning("Rejected cron call from %s", request.client.host if request.client else "unknown")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


@router.api_route(
    "/release-stock",
    methods=["GET", "POST"],
    response_model=SweepResponse,
    dependencies=[Depends(verify_cron_secret)],
)
async def release_stock(db: AsyncSession = Depends(get_db)):
    summary = await run_sweep(db)
    return SweepResponse(**summary.as_dict())
