from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from scheduler.core.exceptions import InvalidRequestError
from scheduler.core.timeutils import (
    add_minutes,
    intervals_overlap,
    local_day_bounds,
    parse_datetime,
    parse_hhmm,
    resolve_timezone,
    to_utc,
)

UTC = timezone.utc


def test_parse_datetime_keeps_caller_offset() -> None:
    parsed = parse_datetime('2025-08-26T14:00:00-03:00')

    assert parsed.utcoffset() == timedelta(hours=-3)
    assert to_utc(parsed) == datetime(2025, 8, 26, 17, 0, tzinfo=UTC)
    assert parsed.isoformat() == '2025-08-26T14:00:00-03:00'


def test_parse_datetime_accepts_zulu_suffix() -> None:
    assert parse_datetime('2025-08-26T17:00:00Z') == datetime(2025, 8, 26, 17, 0, tzinfo=UTC)


def test_parse_datetime_accepts_aware_datetime() -> None:
    value = datetime(2025, 8, 26, 14, 0, tzinfo=ZoneInfo('America/Sao_Paulo'))

    assert parse_datetime(value) is value


@pytest.mark.parametrize(
    'value',
    ['2025-08-26T14:00:00', 'not a date', '', 12345, None, datetime(2025, 8, 26, 14, 0)],
)
def test_parse_datetime_rejects_naive_or_malformed_values(value) -> None:
    with pytest.raises(InvalidRequestError):
        parse_datetime(value, 'start_datetime')


def test_parse_datetime_error_names_the_field() -> None:
    with pytest.raises(InvalidRequestError) as exception_info:
        parse_datetime('2025-08-26T14:00:00', 'start_datetime')

    assert 'start_datetime' in str(exception_info.value)


def test_resolve_timezone_rejects_unknown_zone() -> None:
    with pytest.raises(InvalidRequestError):
        resolve_timezone('Mars/Olympus_Mons')


@pytest.mark.parametrize(
    ('b_start', 'b_end', 'expected'),
    [
        (10, 11, True),
        (9, 10, False),
        (11, 12, False),
        (9, 12, True),
    ],
)
def test_intervals_overlap_is_half_open(b_start: int, b_end: int, expected: bool) -> None:
    a_start = datetime(2025, 8, 25, 10, 0, tzinfo=UTC)
    a_end = datetime(2025, 8, 25, 11, 0, tzinfo=UTC)
    b_start_dt = datetime(2025, 8, 25, b_start, 0, tzinfo=UTC)
    b_end_dt = datetime(2025, 8, 25, b_end, 0, tzinfo=UTC)

    assert intervals_overlap(a_start, a_end, b_start_dt, b_end_dt) is expected


def test_touching_intervals_never_overlap_in_either_order() -> None:
    first = (datetime(2025, 8, 25, 13, 0, tzinfo=UTC), datetime(2025, 8, 25, 13, 30, tzinfo=UTC))
    second = (datetime(2025, 8, 25, 13, 30, tzinfo=UTC), datetime(2025, 8, 25, 14, 0, tzinfo=UTC))

    assert not intervals_overlap(*first, *second)
    assert not intervals_overlap(*second, *first)


def test_add_minutes_uses_absolute_time_across_dst_change() -> None:
    zone = ZoneInfo('America/New_York')
    start = datetime(2025, 3, 9, 1, 30, tzinfo=zone)

    result = add_minutes(start, 60)

    assert to_utc(result) - to_utc(start) == timedelta(hours=1)
    assert (result.hour, result.minute) == (3, 30)


def test_parse_hhmm_rejects_garbage() -> None:
    with pytest.raises(ValueError):
        parse_hhmm('9am')


def test_local_day_bounds_span_one_local_day() -> None:
    zone = ZoneInfo('America/Sao_Paulo')

    start, end = local_day_bounds(date(2025, 8, 25), zone)

    assert to_utc(start) == datetime(2025, 8, 25, 3, 0, tzinfo=UTC)
    assert to_utc(end) == datetime(2025, 8, 26, 3, 0, tzinfo=UTC)
