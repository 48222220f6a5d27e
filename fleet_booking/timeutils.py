from datetime import datetime, timezone

from dateutil import parser


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt: datetime) -> datetime:
    # naive values come back from SQLite and from callers; they are UTC
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_instant(value) -> datetime:
    """Accept a datetime or an ISO-8601 string and return an aware UTC datetime.

    Raises ValueError for anything else.
    """
    if isinstance(value, datetime):
        return as_utc(value)
    if isinstance(value, str):
        return as_utc(parser.isoparse(value.strip()))
    raise ValueError(f"Not a valid instant: {value!r}")
