"""
Storefront Inventory - Compare-and-set retry decorator

Uses exponential backoff + jitter to handle StaleDataError.
StaleDataError is raised when a conditional UPDATE guarded by an observed
value (a stock balance, an order status) matched no row because another
transaction changed that value between our read and our write.
"""
import asyncio
import random
import functools
import logging

from storefront.core.config import get_settings
from storefront.core.exceptions import StorefrontError

settings = get_settings()
logger = logging.getLogger(__name__)


class StaleDataError(StorefrontError):
    """Raised when a compare-and-set lost the race: the guarded value in the
    store changed between our read and our update.
    """
    status_code = 409
    code = "concurrent_update"


def with_optimistic_retry(max_retries: int | None = None):
    """
    Decorator for async functions that perform compare-and-set writes.
    The wrapped function must roll back its own unit of work before the
    StaleDataError escapes, so each attempt starts from a clean session.

    Usage:
        @with_optimistic_retry()
        async def set_stock(db, ...):
            ...
    """
    _max = max_retries or settings.OPT_LOCK_MAX_RETRIES

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            for attempt in range(1, _max + 1):
                try:
                    return await func(*args, **kwargs)
                except StaleDataError:
                    if attempt == _max:
                        logger.error(
                            "Compare-and-set conflict unresolved after %d retries for %s",
                            _max, func.__name__,
                        )
                        raise
                    # Exponential backoff: base * 2^attempt + jitter
                    base_delay = settings.OPT_LOCK_BASE_DELAY_MS / 1000.0
                    max_delay = settings.OPT_LOCK_MAX_DELAY_MS / 1000.0
                    jitter = random.uniform(0, settings.OPT_LOCK_JITTER_MS / 1000.0)
                    delay = min(base_delay * (2 ** attempt), max_delay) + jitter
                    logger.warning(
                        "StaleDataError on attempt %d/%d in %s, retrying in %.3fs",
                        attempt, _max, func.__name__, delay,
                    )
                    await asyncio.sleep(delay)
        return wrapper
    return decorator
