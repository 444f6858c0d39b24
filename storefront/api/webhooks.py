"""
Storefront Inventory - Payment gateway webhook

Authenticated by an HMAC-SHA256 of the raw body in X-Payment-Signature,
not by JWT. Deliveries may repeat or arrive out of order; see
storefront.db.payment_ops for how each event is applied.
"""
import logging
from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.security import verify_webhook_signature
from storefront.db.database import get_db
from storefront.db.payment_ops import HANDLED_EVENTS, handle_payment_event
from storefront.schemas.payment import PaymentEvent

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/payments")
async def payment_webhook(request: Request, db: AsyncSession = Depends(get_db)):
    body = await request.body()
    if not verify_webhook_signature(body, request.headers.get("X-Payment-Signature", "")):
        logger.warning("Rejected payment webhook with bad signature")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature")

    try:
        event = PaymentEvent.model_validate_json(body)
    except ValidationError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Malformed event payload")

    if event.type not in HANDLED_EVENTS:
        return {"message": "Ignored event type", "type": event.type}

    if not event.data.order_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing order_id")

    outcome = await handle_payment_event(db, event.type, event.data.model_dump(exclude_none=True))
    return {
        "message": outcome.message,
        "order_id": outcome.order_id,
        "status": outcome.status,
        "changed": outcome.changed,
    }
