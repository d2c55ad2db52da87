"""Time helpers shared by the log store, lifecycle manager and scanner."""

from datetime import datetime, timezone
from typing import Any, Callable, Optional

from dateutil import parser as date_parser

Clock = Callable[[], datetime]

SECONDS_PER_DAY = 60 * 60 * 24


def utcnow() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_datetime(value: Any) -> Optional[datetime]:
    """
    Coerce a stored timestamp into an aware UTC datetime.

    Accepts datetimes, ISO-8601 strings, epoch seconds, and the
    ``{"_seconds": ...}`` shape that serialized store timestamps take.
    Naive datetimes are assumed to be UTC.

    Returns:
        Aware datetime, or None for empty values
    """
    if value is None or value == "":
        return None

    if isinstance(value, datetime):
        result = value
    elif isinstance(value, str):
        try:
            result = date_parser.isoparse(value)
        except ValueError as exc:
            raise ValueError(f"Invalid timestamp: {value!r}") from exc
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        result = datetime.fromtimestamp(value, tz=timezone.utc)
    elif isinstance(value, dict) and isinstance(value.get("_seconds"), (int, float)):
        result = datetime.fromtimestamp(value["_seconds"], tz=timezone.utc)
    else:
        raise ValueError(f"Unsupported timestamp value: {value!r}")

    if result.tzinfo is None:
        return result.replace(tzinfo=timezone.utc)
    return result.astimezone(timezone.utc)


def days_between(start: Any, end: datetime) -> int:
    """Whole days elapsed from ``start`` to ``end``, floored. Missing start is 0."""
    start_dt = to_datetime(start)
    if start_dt is None:
        return 0
    elapsed = (to_datetime(end) - start_dt).total_seconds()  # type: ignore[operator]
    return int(elapsed // SECONDS_PER_DAY)
