"""
Storefront Inventory - Celery tasks (reservation reaper)

Beat fires release_expired_reservations every REAPER_INTERVAL_SECONDS.
Celery tasks are not async-native, so each run drives the async sweep in a
fresh event loop with its own engine and disposes of both afterwards.
"""
import asyncio
import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from storefront.core.celery_app import celery_app
from storefront.core.config import get_settings
from storefront.core.redis_client import close_redis
from storefront.db.reaper import run_sweep

settings = get_settings()
logger = logging.getLogger(__name__)


async def _sweep(database_url: str) -> dict:
    engine = create_async_engine(database_url, pool_pre_ping=True)
    session_factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    try:
        async with session_factory() as db:
            summary = await run_sweep(db)
        return summary.as_dict()
    finally:
        await close_redis()
        await engine.dispose()


@celery_app.task(
    name="release_expired_reservations",
    bind=True,
    max_retries=3,
    default_retry_delay=10,
    acks_late=True,
)
def release_expired_reservations(self) -> dict:
    """Cancel timed-out reserved orders and release expired cart holds."""
    try:
        result = asyncio.run(_sweep(settings.database_url))
    except Exception as exc:
        logger.exception("Reservation sweep failed")
        raise self.retry(exc=exc)

    if result["errors"]:
        logger.warning("Reservation sweep finished with %d error(s)", result["errors"])
    return result
