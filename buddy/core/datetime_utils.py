"""Centralized datetime utilities for consistent timezone handling.

All instants handled by the delivery core are timezone-aware UTC datetimes and
are persisted as ISO-8601 strings. Subscriber-local arithmetic always goes
through full IANA rules (``zoneinfo``), never fixed offsets.

Usage:
    from buddy.core.datetime_utils import utc_now, resolve_timezone, parse_instant

    now = utc_now()
    tz = resolve_timezone(subscriber.timezone)      # invalid/absent -> UTC
    due_at = parse_instant(subscriber.next_delivery_at)  # unparsable -> None
"""

from datetime import UTC, date, datetime, time, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from buddy.core.logging import get_logger

logger = get_logger(__name__)

UTC_ZONE = ZoneInfo("UTC")

# Free-text city names users commonly give instead of an IANA identifier
COMMON_TIMEZONE_MAPPINGS = {
    "lima": "America/Lima",
    "london": "Europe/London",
    "paris": "Europe/Paris",
    "berlin": "Europe/Berlin",
    "tokyo": "Asia/Tokyo",
    "new york": "America/New_York",
    "los angeles": "America/Los_Angeles",
    "chicago": "America/Chicago",
    "madrid": "Europe/Madrid",
    "rome": "Europe/Rome",
}


def utc_now() -> datetime:
    """Get current time as an aware UTC datetime."""
    return datetime.now(UTC)


def process_today() -> date:
    """Calendar date of the scheduling process's own local clock."""
    return datetime.now().date()


def to_utc(dt: datetime) -> datetime:
    """Convert a datetime to aware UTC.

    Naive datetimes are assumed to already be UTC.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def to_iso(dt: datetime) -> str:
    """Serialize an instant for storage."""
    return to_utc(dt).isoformat()


def parse_instant(value: object) -> datetime | None:
    """Parse a stored ISO-8601 instant.

    Args:
        value: Raw stored value (string expected)

    Returns:
        Aware UTC datetime, or None if the value is missing or unparsable
    """
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return to_utc(parsed)


def is_valid_timezone(tz_name: str) -> bool:
    """Check if a timezone name is a valid IANA identifier."""
    try:
        ZoneInfo(tz_name)
        return True
    except (ZoneInfoNotFoundError, ValueError, TypeError, OSError):
        return False


def normalize_timezone(tz_name: str | None) -> str | None:
    """Return a valid IANA name for the given input, or None.

    Accepts IANA identifiers as-is and maps a few common city names.
    """
    if not tz_name or not isinstance(tz_name, str):
        return None

    candidate = tz_name.strip()
    if candidate and is_valid_timezone(candidate):
        return candidate

    mapped = COMMON_TIMEZONE_MAPPINGS.get(candidate.lower())
    if mapped:
        return mapped

    return None


def resolve_timezone(tz_name: str | None) -> ZoneInfo:
    """Resolve a subscriber timezone, substituting UTC when invalid or absent."""
    normalized = normalize_timezone(tz_name)
    if normalized is None:
        if tz_name:
            logger.bind(timezone=tz_name).warning("invalid_timezone_defaulting_to_utc")
        return UTC_ZONE
    return ZoneInfo(normalized)


def parse_time_of_day(value: str) -> time | None:
    """Parse a time-of-day string (HH:mm).

    Returns:
        time object, or None if parsing fails
    """
    try:
        parts = value.split(":")
        if len(parts) != 2:
            return None
        return time(hour=int(parts[0]), minute=int(parts[1]))
    except (ValueError, AttributeError):
        return None


def local_instant(day: date, at: time, tz: ZoneInfo) -> datetime:
    """The UTC instant of a local wall-clock time on a given local date.

    Wall-clock times skipped by a DST transition resolve to the post-transition
    instant; ambiguous ones resolve to the first occurrence.
    """
    return datetime.combine(day, at, tzinfo=tz).astimezone(UTC)


def whole_days_between(start: datetime, end: datetime) -> int:
    """Number of full 24-hour periods from start to end (negative spans -> 0)."""
    return max(0, (to_utc(end) - to_utc(start)) // timedelta(days=1))
