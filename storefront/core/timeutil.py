"""
Storefront Inventory - UTC time helpers

SQLite hands DateTime(timezone=True) columns back as naive values; everything
stored here is UTC, so naive values are read as UTC.
"""
from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
