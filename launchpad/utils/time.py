"""Timezone helpers: a single UTC-aware *now()* plus epoch conversions."""

from datetime import datetime
from datetime import timezone


def utc_now() -> datetime:  # noqa: D401
    """Return *aware* current time in UTC."""

    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from SQLite."""

    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def epoch_ms(value: datetime | None = None) -> int:
    """Milliseconds since the epoch for *value* (default: now)."""

    return int((value or utc_now()).timestamp() * 1000)


__all__ = ["utc_now", "as_utc", "epoch_ms"]
