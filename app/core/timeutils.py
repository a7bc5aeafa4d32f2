"""Conversions between clinic wall-clock times and calendar timestamps.

Appointments are stored as a local calendar day plus ``HH:mm`` start/end
times. The calendar service wants RFC 3339 ``dateTime`` values, either with an
explicit offset or paired with an IANA ``timeZone``. Everything here is pure
and keyed by a single configured clinic timezone.
"""

import re
from datetime import date, datetime, time
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app.core.exceptions import ValidationException

_OFFSET_RE = re.compile(r"(?:Z|[+\-]\d{2}:\d{2})$")
_TIME_RE = re.compile(r"^(\d{2}):(\d{2})$")
_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

MINUTES_PER_DAY = 24 * 60


def get_zone(timezone: str) -> ZoneInfo:
    """Resolve an IANA timezone name."""
    try:
        return ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValidationException(f"Unknown timezone: {timezone}") from e


def has_offset(value: str) -> bool:
    """Return True when an ISO string ends in ``Z`` or ``±HH:MM``."""
    return bool(_OFFSET_RE.search(value.strip()))


def parse_date(value: str | date) -> date:
    """Parse a ``YYYY-MM-DD`` calendar day."""
    if isinstance(value, date):
        return value
    raw = str(value).strip()
    if not _DATE_RE.match(raw):
        raise ValidationException(f"Invalid date '{value}', expected YYYY-MM-DD")
    try:
        return date.fromisoformat(raw)
    except ValueError as e:
        raise ValidationException(f"Invalid date '{value}'") from e


def parse_time(value: str | time) -> time:
    """Parse an ``HH:mm`` wall-clock time at minute precision."""
    if isinstance(value, time):
        return value.replace(second=0, microsecond=0, tzinfo=None)
    match = _TIME_RE.match(str(value).strip())
    if not match:
        raise ValidationException(f"Invalid time '{value}', expected HH:mm")
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        raise ValidationException(f"Invalid time '{value}'")
    return time(hour, minute)


def format_date(value: date) -> str:
    return value.isoformat()


def format_time(value: time) -> str:
    return f"{value.hour:02d}:{value.minute:02d}"


def to_minutes(value: time | str) -> int:
    """Minutes since midnight."""
    parsed = parse_time(value)
    return parsed.hour * 60 + parsed.minute


def from_minutes(minutes: int) -> time:
    if not 0 <= minutes < MINUTES_PER_DAY:
        raise ValidationException(f"Minute offset out of range: {minutes}")
    return time(minutes // 60, minutes % 60)


def local_datetime(day: date | str, at: time | str, timezone: str) -> datetime:
    """Aware datetime for a clinic wall-clock date and time."""
    return datetime.combine(parse_date(day), parse_time(at), tzinfo=get_zone(timezone))


def to_external_timestamp(day: date | str, at: time | str, timezone: str) -> dict[str, str]:
    """
    Build a calendar ``start``/``end`` field from a wall-clock date and time.

    A time that already carries an offset (``"14:30+02:00"``, ``"14:30Z"``) is
    forwarded as-is without a ``timeZone``; otherwise the clinic timezone is
    attached so the calendar renders the intended wall-clock time no matter
    where this process runs.

    Args:
        day: Calendar day (``YYYY-MM-DD``)
        at: Wall-clock time (``HH:mm``), optionally with an offset suffix
        timezone: Clinic IANA timezone

    Returns:
        Calendar time field
    """
    raw_time = at if isinstance(at, str) else format_time(at)
    raw_time = raw_time.strip()
    day_str = format_date(parse_date(day))

    offset_match = _OFFSET_RE.search(raw_time)
    if offset_match:
        clock = parse_time(raw_time[: offset_match.start()])
        return {"dateTime": f"{day_str}T{format_time(clock)}:00{offset_match.group(0)}"}

    get_zone(timezone)
    return {
        "dateTime": f"{day_str}T{format_time(parse_time(raw_time))}:00",
        "timeZone": timezone,
    }


def parse_timestamp(value: str, timezone: str) -> datetime:
    """
    Parse an ISO timestamp into an aware datetime in the clinic timezone.

    Naive values are read as clinic wall-clock time.
    """
    raw = str(value).strip()
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError as e:
        raise ValidationException(f"Invalid timestamp '{value}'") from e

    zone = get_zone(timezone)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=zone)
    return parsed.astimezone(zone)


def from_external_timestamp(timestamp: str | dict[str, Any], timezone: str) -> tuple[str, str]:
    """
    Split a calendar timestamp into clinic-local ``(date, time)`` strings.

    Accepts either an ISO string or a calendar time field
    (``{"dateTime": ..., "timeZone": ...}``). A field's own ``timeZone`` wins
    over the clinic default for naive ``dateTime`` values.
    """
    if isinstance(timestamp, dict):
        raw = timestamp.get("dateTime")
        if not raw:
            raise ValidationException("Calendar timestamp has no dateTime")
        source_zone = timestamp.get("timeZone") or timezone
        local = parse_timestamp(raw, source_zone).astimezone(get_zone(timezone))
    else:
        local = parse_timestamp(timestamp, timezone)

    return format_date(local.date()), format_time(local.time())
