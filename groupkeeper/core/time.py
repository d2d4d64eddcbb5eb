"""
Time helpers. All timestamps handled by the service are timezone-aware UTC.
"""

from datetime import datetime, timedelta, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_expiration_ts(days: int | None, now: datetime | None = None) -> datetime | None:
    """
    Convert an expiration given in days from now into a timestamp.
    """
    if days is None:
        return None

    return (now or utcnow()) + timedelta(days=days)


def as_utc(value: datetime) -> datetime:
    """
    Interpret naive datetimes as UTC.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)

    return value.astimezone(timezone.utc)
