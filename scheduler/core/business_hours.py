"""Business-hours types, containment checks and slot-grid generation."""

from collections.abc import Iterable, Iterator
from datetime import date, datetime, timedelta, tzinfo
from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict, field_validator

from scheduler.core.exceptions import InvalidRequestError
from scheduler.core.timeutils import (
    HHMM_FORMAT,
    format_hhmm,
    local_datetime,
    parse_hhmm,
    resolve_timezone,
    to_utc,
    to_zone,
)

WEEKDAYS = ('monday', 'tuesday', 'wednesday', 'thursday', 'friday', 'saturday', 'sunday')

# Sorts after every valid HH:MM; used for windows that end on a later local day.
PAST_END_OF_DAY = '24:00'


class DaySchedule(BaseModel):
    """One weekday's hours.

    Blank or unreadable clock values are stored as None. A day without a
    usable opening window is treated as closed, and a break with only one
    bound is ignored.
    """

    enabled: bool = False
    start_time: str | None = '09:00'
    end_time: str | None = '18:00'
    break_start: str | None = None
    break_end: str | None = None

    @field_validator('start_time', 'end_time', 'break_start', 'break_end', mode='before')
    @classmethod
    def normalize_clock(cls, value: Any) -> str | None:
        if not isinstance(value, str) or not value.strip():
            return None
        try:
            return parse_hhmm(value).strftime(HHMM_FORMAT)
        except ValueError:
            return None

    @property
    def is_open(self) -> bool:
        return (
            self.enabled
            and self.start_time is not None
            and self.end_time is not None
            and self.start_time < self.end_time
        )

    @property
    def has_break(self) -> bool:
        return self.break_start is not None and self.break_end is not None

    def periods(self, day: date, zone: tzinfo) -> list[tuple[datetime, datetime]]:
        """Bookable periods of ``day``: one, or two split around the break."""
        opening = local_datetime(day, self.start_time, zone)
        closing = local_datetime(day, self.end_time, zone)
        if not self.has_break:
            return [(opening, closing)]
        return [
            (opening, local_datetime(day, self.break_start, zone)),
            (local_datetime(day, self.break_end, zone), closing),
        ]


class BusinessHours(BaseModel):
    model_config = ConfigDict(extra='ignore')

    monday: DaySchedule | None = None
    tuesday: DaySchedule | None = None
    wednesday: DaySchedule | None = None
    thursday: DaySchedule | None = None
    friday: DaySchedule | None = None
    saturday: DaySchedule | None = None
    sunday: DaySchedule | None = None

    @classmethod
    def coerce(cls, value: 'BusinessHours | dict[str, Any] | None') -> 'BusinessHours':
        if isinstance(value, BusinessHours):
            return value
        return cls.model_validate(value or {})

    def for_weekday(self, weekday: int) -> DaySchedule | None:
        """Schedule for ``weekday`` (0 = Monday), or None when closed."""
        schedule = getattr(self, WEEKDAYS[weekday])
        if schedule is None or not schedule.is_open:
            return None
        return schedule


class AvailabilitySlot(BaseModel):
    start_datetime: datetime
    end_datetime: datetime
    calendar_id: str
    calendar_name: str
    priority: int


class SlotCalendar(Protocol):
    id: str
    name: str
    priority: int


def _zone(value: str | tzinfo) -> tzinfo:
    return resolve_timezone(value) if isinstance(value, str) else value


def is_within_business_hours(
    nominal_start: datetime,
    nominal_end: datetime,
    business_hours: BusinessHours | dict[str, Any] | None,
    entity_timezone: str | tzinfo,
) -> bool:
    zone = _zone(entity_timezone)
    local_start = to_zone(nominal_start, zone)
    local_end = to_zone(nominal_end, zone)

    schedule = BusinessHours.coerce(business_hours).for_weekday(local_start.weekday())
    if schedule is None:
        return False

    start_str = format_hhmm(local_start)
    end_str = format_hhmm(local_end) if local_end.date() == local_start.date() else PAST_END_OF_DAY

    if start_str < schedule.start_time or end_str > schedule.end_time:
        return False

    if schedule.has_break and not (end_str <= schedule.break_start or start_str >= schedule.break_end):
        return False

    return True


def generate_slot_grid(
    range_start: datetime,
    range_end: datetime,
    duration_minutes: int,
    interval_minutes: int,
    business_hours: BusinessHours | dict[str, Any] | None,
    entity_timezone: str | tzinfo,
    calendars: Iterable[SlotCalendar],
) -> Iterator[AvailabilitySlot]:
    """Candidate slots for every calendar over the entity-local days of the range.

    Windows are stepped on absolute time from each period's opening and
    emitted in ``range_start``'s offset. Those starting before ``range_start``
    are skipped rather than re-phased to it. Calling again with a wider
    range regenerates the sequence from scratch.
    """
    if duration_minutes <= 0:
        raise InvalidRequestError('duration_minutes must be positive.')
    if interval_minutes <= 0:
        raise InvalidRequestError('interval_minutes must be positive.')

    return _iter_grid(
        range_start,
        range_end,
        timedelta(minutes=duration_minutes),
        timedelta(minutes=interval_minutes),
        BusinessHours.coerce(business_hours),
        _zone(entity_timezone),
        list(calendars),
    )


def _iter_grid(
    range_start: datetime,
    range_end: datetime,
    duration: timedelta,
    interval: timedelta,
    business_hours: BusinessHours,
    zone: tzinfo,
    calendars: list[SlotCalendar],
) -> Iterator[AvailabilitySlot]:
    output_zone = range_start.tzinfo
    earliest_start = to_utc(range_start)
    current_day = to_zone(range_start, zone).date()
    last_day = to_zone(range_end, zone).date()

    while current_day <= last_day:
        schedule = business_hours.for_weekday(current_day.weekday())
        if schedule is not None:
            for period_start, period_end in schedule.periods(current_day, zone):
                window_start = to_utc(period_start)
                period_close = to_utc(period_end)

                while window_start + duration <= period_close:
                    window_end = window_start + duration
                    if window_start >= earliest_start:
                        for calendar in calendars:
                            yield AvailabilitySlot(
                                start_datetime=window_start.astimezone(output_zone),
                                end_datetime=window_end.astimezone(output_zone),
                                calendar_id=calendar.id,
                                calendar_name=calendar.name,
                                priority=calendar.priority,
                            )
                    window_start += interval

        current_day += timedelta(days=1)
