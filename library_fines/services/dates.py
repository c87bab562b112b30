"""Timestamp helpers shared by the ledger and the fine generator.

Timestamps are stored in UTC. SQLite hands DateTime(timezone=True) columns
back as naive values, so anything naive read from the database is taken to
be UTC. Services call utcnow() through this module so tests can pin it.
"""

from datetime import datetime, timedelta, timezone, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

DAY = timedelta(days=1)
DAY_OF_SECONDS = 86400


def utcnow() -> datetime:
    """Current time, timezone-aware in UTC."""
    return datetime.now(timezone.utc)


def as_aware(value: datetime) -> datetime:
    """Attach UTC to a naive datetime; aware values pass through."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def to_utc(value: datetime) -> datetime:
    """Normalize a datetime to aware UTC for storage and comparison."""
    return as_aware(value).astimezone(timezone.utc)


def parse_datetime(value: str | datetime) -> datetime:
    """Parse an ISO 8601 string into an aware datetime.

    Raises:
        ValueError: If the string is not ISO 8601
    """
    if isinstance(value, datetime):
        return as_aware(value)
    try:
        return as_aware(datetime.fromisoformat(value.strip()))
    except ValueError as e:
        raise ValueError(f"Could not parse datetime string '{value}': {e}") from e


def to_iso8601(value: datetime) -> str:
    """Render as YYYY-MM-DDTHH:MM:SS+ZZZZ."""
    return as_aware(value).strftime("%Y-%m-%dT%H:%M:%S%z")


def resolve_timezone(name: str | None) -> tzinfo:
    """Resolve a lib.timezone setting value.

    None and "local" resolve to the host's local zone.

    Raises:
        ValueError: If the zone name is unknown
    """
    if not name or name == "local":
        local = datetime.now().astimezone().tzinfo
        return local if local is not None else timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValueError(f"Cannot parse timezone: {name}") from e


__all__ = [
    "DAY",
    "DAY_OF_SECONDS",
    "utcnow",
    "as_aware",
    "to_utc",
    "parse_datetime",
    "to_iso8601",
    "resolve_timezone",
]
