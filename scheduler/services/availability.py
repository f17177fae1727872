"""
Availability Service

Answers whether a service can be booked at a given start time:
- on one calendar (check_availability), always returning a verdict
- across several calendars (check_calendars_availability)

Business hours are checked on the nominal window in the owning instance's
timezone; the provider is queried with the buffered window in UTC.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from enum import Enum

from pydantic import BaseModel

from scheduler.core.business_hours import is_within_business_hours
from scheduler.core.exceptions import (
    InvalidRequestError,
    NoActiveCalendarsFoundError,
    ServiceNotFoundError,
)
from scheduler.core.timeutils import add_minutes, parse_datetime, to_utc
from scheduler.services.conflict_checker import ConflictChecker
from scheduler.services.stores import CalendarRecord, InstanceRecord, SchedulingStore, ServiceRecord

UNKNOWN = 'Unknown'


class ConflictReason(str, Enum):
    CALENDAR_NOT_FOUND = 'Calendar not found or inactive'
    INSTANCE_NOT_FOUND = 'Instance not found'
    OUTSIDE_BUSINESS_HOURS = 'Outside business hours'
    TIME_SLOT_ALREADY_BOOKED = 'Time slot already booked'


def error_reason(exc: BaseException) -> str:
    return f'Error: {str(exc) or exc.__class__.__name__}'


class AvailabilityVerdict(BaseModel):
    available: bool
    calendar_name: str
    start_datetime: datetime | str
    end_datetime: datetime | str
    service_name: str
    service_duration: int
    conflict_reason: str | None = None


class CalendarAvailability(BaseModel):
    calendar_id: str
    calendar_name: str
    priority: int


class UnavailableCalendar(CalendarAvailability):
    conflict_reason: str


class MultiCalendarVerdict(BaseModel):
    available: bool
    service_name: str
    service_duration: int
    start_datetime: datetime
    end_datetime: datetime
    available_calendars: list[CalendarAvailability]
    unavailable_calendars: list[UnavailableCalendar]
    total_calendars_checked: int
    total_available: int
    total_unavailable: int


def require_id(value, field_name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidRequestError(f'{field_name} must be a non-empty string.')
    return value.strip()


def require_ids(values, field_name: str = 'calendar_ids') -> list[str]:
    if isinstance(values, str) or not isinstance(values, (list, tuple)) or not values:
        raise InvalidRequestError(f'{field_name} must be a non-empty list.')
    ids = [require_id(value, field_name) for value in values]
    return list(dict.fromkeys(ids))


def _requested_end(start: datetime, end_datetime: str | datetime | None) -> datetime | None:
    if end_datetime is None:
        return None
    end = parse_datetime(end_datetime, 'end_datetime')
    if end <= start:
        raise InvalidRequestError('end_datetime must be after start_datetime.')
    return end


class AvailabilityService:
    def __init__(self, store: SchedulingStore, checker: ConflictChecker, logger: logging.Logger | None = None):
        self.store = store
        self.checker = checker
        self.logger = logger or logging.getLogger(__name__)

    async def load_service(self, service_id: str) -> ServiceRecord:
        service = await self.store.get_service(service_id)
        if service is None or not service.is_active:
            raise ServiceNotFoundError(service_id)
        return service

    async def evaluate_calendar(
        self,
        start: datetime,
        service: ServiceRecord,
        calendar: CalendarRecord,
        instance: InstanceRecord,
        exclude_event_id: str | None = None,
        end: datetime | None = None,
    ) -> str | None:
        """Conflict reason for booking ``service`` at ``start`` on ``calendar``, None when free.

        The window runs for the service's duration unless ``end`` is given.
        """
        if end is None:
            end = add_minutes(start, service.duration_minutes)

        if not is_within_business_hours(start, end, instance.business_hours, instance.timezone):
            return ConflictReason.OUTSIDE_BUSINESS_HOURS.value

        buffered_start = to_utc(start) - timedelta(minutes=service.buffer_before_minutes)
        buffered_end = to_utc(end) + timedelta(minutes=service.buffer_after_minutes)

        conflicted = await self.checker.has_conflict(
            calendar.external_calendar_id,
            buffered_start,
            buffered_end,
            timezone=instance.timezone,
            exclude_event_id=exclude_event_id,
        )
        if conflicted:
            return ConflictReason.TIME_SLOT_ALREADY_BOOKED.value
        return None

    async def check_availability(
        self,
        start_datetime: str | datetime,
        service_id: str,
        calendar_id: str,
        *,
        exclude_event_id: str | None = None,
        end_datetime: str | datetime | None = None,
    ) -> AvailabilityVerdict:
        """Verdict for one calendar. Never raises; failures become the verdict's reason.

        ``end_datetime`` replaces the service-duration window when given.
        """
        self.logger.info(
            "Checking availability: %s for service %s in calendar %s", start_datetime, service_id, calendar_id
        )
        service: ServiceRecord | None = None
        try:
            start = parse_datetime(start_datetime, 'start_datetime')
            requested_end = _requested_end(start, end_datetime)
            service = await self.load_service(require_id(service_id, 'service_id'))

            calendar = await self.store.get_calendar(require_id(calendar_id, 'calendar_id'))
            if calendar is None:
                return AvailabilityVerdict(
                    available=False,
                    calendar_name=UNKNOWN,
                    start_datetime=start,
                    end_datetime=start,
                    service_name=service.name,
                    service_duration=service.duration_minutes,
                    conflict_reason=ConflictReason.CALENDAR_NOT_FOUND.value,
                )

            end = requested_end or add_minutes(start, service.duration_minutes)
            instance = await self.store.get_instance(calendar.instance_id)
            if instance is None:
                return AvailabilityVerdict(
                    available=False,
                    calendar_name=calendar.name,
                    start_datetime=start,
                    end_datetime=start,
                    service_name=service.name,
                    service_duration=service.duration_minutes,
                    conflict_reason=ConflictReason.INSTANCE_NOT_FOUND.value,
                )

            reason = await self.evaluate_calendar(start, service, calendar, instance, exclude_event_id, end)
            return AvailabilityVerdict(
                available=reason is None,
                calendar_name=calendar.name,
                start_datetime=start,
                end_datetime=end,
                service_name=service.name,
                service_duration=service.duration_minutes,
                conflict_reason=reason,
            )
        except Exception as exc:
            self.logger.warning("Error checking availability for calendar %s: %s", calendar_id, exc)
            echoed = start_datetime if isinstance(start_datetime, (str, datetime)) else str(start_datetime)
            return AvailabilityVerdict(
                available=False,
                calendar_name=UNKNOWN,
                start_datetime=echoed,
                end_datetime=echoed,
                service_name=service.name if service else UNKNOWN,
                service_duration=service.duration_minutes if service else 0,
                conflict_reason=error_reason(exc),
            )

    async def _get_instance(self, instance_id: str) -> InstanceRecord | None:
        return await self.store.get_instance(instance_id)

    async def check_calendars_availability(
        self,
        start_datetime: str | datetime,
        service_id: str,
        calendar_ids: list[str],
        end_datetime: str | datetime | None = None,
    ) -> MultiCalendarVerdict:
        """Check every requested active calendar independently.

        Raises for malformed input and for a missing service or calendar set;
        per-calendar failures are recorded as unavailable entries.
        """
        start = parse_datetime(start_datetime, 'start_datetime')
        requested_end = _requested_end(start, end_datetime)
        service_id = require_id(service_id, 'service_id')
        calendar_ids = require_ids(calendar_ids)

        service = await self.load_service(service_id)
        end = requested_end or add_minutes(start, service.duration_minutes)
        calendars = await self.store.list_calendars(calendar_ids, active_only=True)
        if not calendars:
            raise NoActiveCalendarsFoundError(calendar_ids)

        self.logger.info("Checking availability for %d calendars at %s", len(calendars), start.isoformat())

        instance_ids = list(dict.fromkeys(calendar.instance_id for calendar in calendars))
        loaded = await asyncio.gather(
            *(self._get_instance(instance_id) for instance_id in instance_ids),
            return_exceptions=True,
        )
        instances = dict(zip(instance_ids, loaded))

        async def check_calendar(calendar: CalendarRecord) -> str | None:
            instance = instances[calendar.instance_id]
            if isinstance(instance, Exception):
                return error_reason(instance)
            if instance is None:
                return ConflictReason.INSTANCE_NOT_FOUND.value
            try:
                return await self.evaluate_calendar(start, service, calendar, instance, end=end)
            except Exception as exc:
                self.logger.warning("Error checking calendar %s (%s): %s", calendar.name, calendar.id, exc)
                return error_reason(exc)

        reasons = await asyncio.gather(*(check_calendar(calendar) for calendar in calendars))

        available_calendars: list[CalendarAvailability] = []
        unavailable_calendars: list[UnavailableCalendar] = []
        for calendar, reason in zip(calendars, reasons):
            if reason is None:
                available_calendars.append(
                    CalendarAvailability(calendar_id=calendar.id, calendar_name=calendar.name, priority=calendar.priority)
                )
            else:
                unavailable_calendars.append(
                    UnavailableCalendar(
                        calendar_id=calendar.id,
                        calendar_name=calendar.name,
                        priority=calendar.priority,
                        conflict_reason=reason,
                    )
                )

        available_calendars.sort(key=lambda entry: entry.priority)

        self.logger.info(
            "%d/%d calendars available at %s", len(available_calendars), len(calendars), start.isoformat()
        )
        return MultiCalendarVerdict(
            available=bool(available_calendars),
            service_name=service.name,
            service_duration=service.duration_minutes,
            start_datetime=start,
            end_datetime=end,
            available_calendars=available_calendars,
            unavailable_calendars=unavailable_calendars,
            total_calendars_checked=len(calendars),
            total_available=len(available_calendars),
            total_unavailable=len(unavailable_calendars),
        )
