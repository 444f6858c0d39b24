"""
Storefront Inventory - Celery application

Uses Redis as both broker and result backend. Beat drives the reservation
reaper; the same sweep is reachable over HTTP at /cron/release-stock.
"""
from celery import Celery
from storefront.core.config import get_settings

settings = get_settings()

celery_app = Celery(
    "storefront",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=["storefront.tasks.reaper_tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    task_acks_late=True,           # Only ack after task completes (fault-tolerant)
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,  # One sweep at a time per worker
    task_track_started=True,
    beat_schedule={
        "release-expired-reservations": {
            "task": "release_expired_reservations",
            "schedule": float(settings.REAPER_INTERVAL_SECONDS),
        },
    },
)
