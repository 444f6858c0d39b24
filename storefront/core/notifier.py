"""
Storefront Inventory - Order event publisher

Order state changes are published to Redis pub/sub after the owning
transaction has committed:
  - order:{order_id}   per-order channel (status streams)
  - orders:events      firehose consumed by email / LINE notification workers
"""
import json
import logging

from storefront.core.redis_client import get_redis
from storefront.core.timeutil import utcnow

logger = logging.getLogger(__name__)

EVENTS_CHANNEL = "orders:events"


async def publish_order_event(
    event: str,
    order_id: str,
    user_id: str,
    status: str,
    reason: str | None = None,
) -> bool:
    """Publish an order event. Returns False when the hub could not be reached."""
    payload = json.dumps({
        "event": event,
        "order_id": order_id,
        "user_id": user_id,
        "status": status,
        "reason": reason,
        "occurred_at": utcnow().isoformat(),
    })
    try:
        redis = get_redis()
        await redis.publish(f"order:{order_id}", payload)
        await redis.publish(EVENTS_CHANNEL, payload)
    except Exception as exc:
        # Notification failures MUST NOT affect stock or order state
        logger.warning("Order event %s for %s not published: %s", event, order_id, exc)
        return False
    return True
