"""Offset-aware datetime helpers.

Every helper takes or returns timezone-aware values; nothing here falls
back to the process timezone.
"""

from datetime import date, datetime, time, timedelta, timezone, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dateutil import parser as dtparse

from scheduler.core.exceptions import InvalidRequestError

HHMM_FORMAT = '%H:%M'


def parse_datetime(value: str | datetime, field_name: str = 'datetime') -> datetime:
    """Parse an ISO-8601 value that carries an explicit UTC offset.

    The result keeps the caller's offset as a fixed ``timezone`` so it can
    be echoed back unchanged.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        try:
            parsed = dtparse.isoparse(value.strip())
        except (ValueError, OverflowError) as exc:
            raise InvalidRequestError(f'{field_name} must be an ISO-8601 datetime.') from exc
    else:
        raise InvalidRequestError(f'{field_name} must be an ISO-8601 string.')

    offset = parsed.utcoffset()
    if offset is None:
        raise InvalidRequestError(f'{field_name} must include a UTC offset.')

    if isinstance(parsed.tzinfo, ZoneInfo):
        return parsed
    return parsed.replace(tzinfo=timezone(offset))


def resolve_timezone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError, TypeError) as exc:
        raise InvalidRequestError(f'Unknown timezone: {name!r}') from exc


def to_utc(value: datetime) -> datetime:
    return value.astimezone(timezone.utc)


def to_zone(value: datetime, zone: tzinfo) -> datetime:
    return value.astimezone(zone)


def intervals_overlap(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    # Half-open: [a_start, a_end) and [b_start, b_end); touching bounds do not overlap.
    return a_start < b_end and b_start < a_end


def add_minutes(value: datetime, minutes: int) -> datetime:
    """Absolute-time addition; the result is expressed in ``value``'s zone."""
    return (to_utc(value) + timedelta(minutes=minutes)).astimezone(value.tzinfo)


def parse_hhmm(value: str) -> time:
    try:
        return datetime.strptime(value.strip(), HHMM_FORMAT).time()
    except (AttributeError, ValueError) as exc:
        raise ValueError(f'Expected HH:MM, got {value!r}') from exc


def format_hhmm(value: datetime) -> str:
    return value.strftime(HHMM_FORMAT)


def local_datetime(day: date, clock: str | time, zone: tzinfo) -> datetime:
    if isinstance(clock, str):
        clock = parse_hhmm(clock)
    return datetime.combine(day, clock, tzinfo=zone)


def local_day_bounds(day: date, zone: tzinfo) -> tuple[datetime, datetime]:
    """Local midnight of ``day`` and of the following day."""
    return local_datetime(day, time(0, 0), zone), local_datetime(day + timedelta(days=1), time(0, 0), zone)
