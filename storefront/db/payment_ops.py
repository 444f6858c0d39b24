"""
Storefront Inventory - Payment and slip verification handlers

Gateway webhooks are delivered at least once and possibly out of order, so
every handler re-reads the order and decides from its current status:
  transaction.succeeded  reserved -> paid; paid/shipped/completed is a no-op
  transaction.failed     reserved -> cancelled, lines go back to stock
  refund.completed       any non-terminal -> refunded, no restock
Anything else is acknowledged and ignored.
"""
import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.config import get_settings
from storefront.core.exceptions import AmountMismatch, DuplicateSlipDetected, OrderAlreadyFinalized
from storefront.core.retry import with_optimistic_retry
from storefront.core.timeutil import as_utc, utcnow
from storefront.db.database import unit_of_work
from storefront.db.order_ops import load_order, notify, release_order_stock, transition_order
from storefront.models.order import Order, OrderStatus

settings = get_settings()
logger = logging.getLogger(__name__)

PAID_OR_LATER = frozenset({OrderStatus.PAID, OrderStatus.SHIPPED, OrderStatus.COMPLETED})
DUPLICATE_CANDIDATE_STATUSES = (
    OrderStatus.PAID, OrderStatus.RESERVED, OrderStatus.SHIPPED, OrderStatus.COMPLETED,
)
SLIP_REJECTED = "slip_rejected"
HANDLED_EVENTS = frozenset({"transaction.succeeded", "transaction.failed", "refund.completed"})


@dataclass
class PaymentOutcome:
    order_id: str
    status: str
    message: str
    changed: bool = False


# ── Gateway webhook ───────────────────────────────────────────────────────────

@with_optimistic_retry()
async def handle_payment_event(db: AsyncSession, event_type: str, data: dict[str, Any]) -> PaymentOutcome:
    order_id = data["order_id"]
    event = None

    async with unit_of_work(db):
        order = await load_order(db, order_id, for_update=True)

        if event_type == "transaction.succeeded":
            if order.status in PAID_OR_LATER:
                return PaymentOutcome(order.id, order.status.value, "Order already paid")
            if order.status != OrderStatus.RESERVED:
                logger.warning(
                    "Payment succeeded for order %s in status %s; ignored", order.id, order.status.value
                )
                return PaymentOutcome(order.id, order.status.value, f"Order is {order.status.value}, ignored")
            await transition_order(
                db,
                order,
                OrderStatus.PAID,
                "Payment confirmed via gateway webhook",
                payment_id=data.get("transaction_id") or order.payment_id,
                payment_metadata={"source": "gateway", **data},
            )
            event = "order.paid"

        elif event_type == "transaction.failed":
            if order.status != OrderStatus.RESERVED:
                return PaymentOutcome(order.id, order.status.value, "Ignored: order is not awaiting payment")
            reason = f"Payment failed: {data.get('reason') or 'declined by gateway'}"
            await transition_order(db, order, OrderStatus.CANCELLED, reason)
            await release_order_stock(db, order, "payment_failed")
            event = "order.cancelled"

        elif event_type == "refund.completed":
            if order.is_terminal:
                return PaymentOutcome(order.id, order.status.value, "Ignored: order already finalized")
            # refund is a financial reversal only; goods are not restocked
            await transition_order(
                db,
                order,
                OrderStatus.REFUNDED,
                "Refund completed via gateway webhook",
                refund_metadata={
                    "refund_id": data.get("refund_id"),
                    "amount": data.get("amount"),
                    "reason": data.get("reason"),
                    "refunded_at": utcnow().isoformat(),
                },
            )
            event = "order.refunded"

        else:
            logger.info("Ignoring payment event %s for order %s", event_type, order_id)
            return PaymentOutcome(order.id, order.status.value, "Ignored event type")

    await notify(event, order)
    return PaymentOutcome(order.id, order.status.value, f"Order updated to {order.status.value}", changed=True)


# ── Manual bank slip ──────────────────────────────────────────────────────────

def _day_bounds(day: date) -> tuple[datetime, datetime]:
    start = datetime.combine(day, time.min, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


async def find_duplicate_slip(
    db: AsyncSession, order_id: str, amount: int, transfer_date: datetime
) -> Order | None:
    """Another live order of about the same amount created on the transfer day."""
    tolerance = settings.SLIP_DUPLICATE_TOLERANCE_PERCENT
    start, end = _day_bounds(as_utc(transfer_date).date())
    result = await db.execute(
        select(Order)
        .where(
            Order.id != order_id,
            Order.created_at >= start,
            Order.created_at < end,
            Order.total_amount * 100 >= amount * (100 - tolerance),
            Order.total_amount * 100 <= amount * (100 + tolerance),
            Order.status.in_(DUPLICATE_CANDIDATE_STATUSES),
        )
        .order_by(Order.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


def amount_matches(expected: int, received: int) -> bool:
    return abs(received - expected) * 100 <= expected * settings.SLIP_AMOUNT_TOLERANCE_PERCENT


async def _refuse_slip(db: AsyncSession, order: Order, reason: str, actor_id: str | None) -> None:
    async with unit_of_work(db):
        order.record(SLIP_REJECTED, reason, actor_id)


@with_optimistic_retry()
async def verify_bank_slip(
    db: AsyncSession,
    *,
    order_id: str,
    bank_name: str,
    transfer_amount: int,
    transfer_date: datetime,
    reference_number: str | None = None,
    sender_name: str | None = None,
    sender_account: str | None = None,
    slip_image_url: str | None = None,
    actor_id: str | None = None,
) -> Order:
    order = await load_order(db, order_id)
    if order.status in PAID_OR_LATER:
        raise OrderAlreadyFinalized(order.id, order.status.value)

    duplicate = await find_duplicate_slip(db, order.id, transfer_amount, transfer_date)
    if duplicate is not None:
        logger.warning(
            "Slip for order %s looks like a duplicate of order %s (amount=%d)",
            order.id, duplicate.id, transfer_amount,
        )
        await _refuse_slip(db, order, f"Duplicate payment: matches order {duplicate.id}", actor_id)
        raise DuplicateSlipDetected(
            duplicate.id, duplicate.total_amount, as_utc(duplicate.created_at).isoformat()
        )

    if not amount_matches(order.total_amount, transfer_amount):
        logger.info(
            "Slip amount mismatch for order %s: expected=%d received=%d",
            order.id, order.total_amount, transfer_amount,
        )
        await _refuse_slip(
            db, order, f"Amount mismatch: expected {order.total_amount}, received {transfer_amount}", actor_id
        )
        raise AmountMismatch(order.total_amount, transfer_amount)

    reference = reference_number or str(int(utcnow().timestamp() * 1000))
    async with unit_of_work(db):
        await transition_order(
            db,
            order,
            OrderStatus.PAID,
            f"Bank transfer verified via slip. Bank: {bank_name}, Ref: {reference_number or 'N/A'}",
            actor_id,
            payment_id=f"BANK_{reference}",
            payment_metadata={
                "source": "bank_transfer",
                "bank_name": bank_name,
                "amount": transfer_amount,
                "transfer_date": as_utc(transfer_date).isoformat(),
                "reference_number": reference_number,
                "sender_name": sender_name,
                "sender_account": sender_account,
                "slip_image_url": slip_image_url,
                "verified_at": utcnow().isoformat(),
                "verified_by": actor_id,
            },
        )

    logger.info("Bank slip verified for order %s by %s", order.id, actor_id)
    await notify("order.paid", order)
    return order


async def reject_bank_slip(db: AsyncSession, order_id: str, reason: str, actor_id: str) -> Order:
    """Record a rejected slip on the order. Status and stock are left alone."""
    order = await load_order(db, order_id)
    await _refuse_slip(db, order, f"Bank transfer rejected: {reason}", actor_id)
    logger.info("Bank slip for order %s rejected by %s: %s", order.id, actor_id, reason)
    return order
