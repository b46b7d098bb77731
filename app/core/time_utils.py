"""
Timezone-safe datetime utilities.

All timestamps are stored in UTC. Compatible with both SQLite (which drops
tzinfo on round-trip) and PostgreSQL.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from dateutil import parser as date_parser

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """
    Return current UTC datetime with timezone info attached.

    Example:
        >>> now = utc_now()
        >>> now.tzinfo
        datetime.timezone.utc
    """
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """
    Convert any datetime to UTC.

    If the datetime is naive (no timezone info), it's assumed to be UTC.
    If it has timezone info, it's converted to UTC.

    Example:
        >>> naive_dt = datetime(2024, 1, 1, 12, 0, 0)
        >>> ensure_utc(naive_dt).tzinfo
        datetime.timezone.utc
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def ensure_utc_optional(dt: Optional[datetime]) -> Optional[datetime]:
    return ensure_utc(dt) if dt is not None else None


def format_utc_datetime(dt: Optional[datetime]) -> Optional[str]:
    """Format a datetime as ISO-8601 in UTC with a trailing Z."""
    if dt is None:
        return None
    return ensure_utc(dt).isoformat().replace("+00:00", "Z")


def parse_datetime(value: Any) -> datetime:
    """
    Parse a datetime, unix timestamp or free-form date string into an aware UTC datetime.

    Naive results are assumed to be UTC.

    Raises:
        ValueError: If the value cannot be parsed or has an unsupported type
    """
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, bool):
        raise ValueError(f"Unsupported date type: {type(value)}")
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc)
        except (ValueError, OverflowError, OSError) as e:
            raise ValueError(f"Timestamp out of range: {value}") from e
    if isinstance(value, str):
        try:
            return datetime.fromtimestamp(float(value), tz=timezone.utc)
        except (ValueError, OverflowError, OSError):
            pass
        try:
            return ensure_utc(date_parser.parse(value))
        except (ValueError, OverflowError) as e:
            raise ValueError(f"Unable to parse date: {value}") from e
    raise ValueError(f"Unsupported date type: {type(value)}")


def add_seconds(dt: datetime, seconds: float) -> datetime:
    return ensure_utc(dt) + timedelta(seconds=seconds)


class FrozenClock:
    """
    Manually advanced clock.

    Components that accept a ``clock`` callable use it instead of utc_now,
    which lets staleness and token-expiry logic run against a fixed time.
    """

    def __init__(self, start: Optional[datetime] = None):
        self._now = ensure_utc(start) if start else utc_now()

    def __call__(self) -> datetime:
        return self._now

    def advance(self, seconds: float) -> datetime:
        self._now = self._now + timedelta(seconds=seconds)
        return self._now

    def set(self, value: datetime) -> None:
        self._now = ensure_utc(value)
