"""
Helpers for the instants stored on reservations.

All instants are kept as naive UTC datetimes, the form SQLite hands back.
"""
from datetime import datetime, timezone

from .errors import InvalidInput


def utcnow() -> datetime:
    """Current UTC time without tzinfo."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    # Aware values are converted, naive ones are assumed to already be UTC
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def parse_instant(value, field="date") -> datetime:
    """
    Parse an ISO-8601 string (``Z`` suffix accepted) into a naive UTC datetime.

    Args:
        value: string or datetime
        field: field name used in the error message

    Raises:
        InvalidInput: if the value is missing or cannot be parsed
    """
    if isinstance(value, datetime):
        return to_naive_utc(value)
    if not value or not isinstance(value, str):
        raise InvalidInput(f"'{field}' is required", field=field)
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        raise InvalidInput(f"'{field}' is not an ISO-8601 instant: {value!r}", field=field)
    return to_naive_utc(dt)


def isoformat(value):
    if value is None:
        return None
    return value.isoformat() + "Z"
