"""
Slot Suggestion Service

Walks the business-hours slot grid of a date range, keeps the slots whose
buffered window is free on the provider and hands them to a selection
strategy. When too few slots are free the range can grow one day at a
time, up to ``max_attempts`` times.

Provider events are fetched once per calendar and local day and filtered
locally for every slot of that day.
"""

import logging
from datetime import date, datetime, timedelta, tzinfo
from typing import Any

from pydantic import ValidationError

from scheduler.core import config
from scheduler.core.business_hours import AvailabilitySlot, generate_slot_grid
from scheduler.core.exceptions import (
    InstanceNotFoundError,
    InvalidRequestError,
    NoActiveCalendarsFoundError,
    ProviderError,
    ServiceNotFoundError,
)
from scheduler.core.timeutils import local_day_bounds, parse_datetime, resolve_timezone, to_utc, to_zone
from scheduler.providers.base import ProviderEvent
from scheduler.services.availability import require_id, require_ids
from scheduler.services.conflict_checker import ConflictChecker, blocking_events
from scheduler.services.stores import CalendarRecord, SchedulingStore, ServiceRecord
from scheduler.services.strategies import EARLIEST, PriorityConfig, TimeBlocksConfig, apply_strategy

logger = logging.getLogger(__name__)


def _coerce_model(model, value: Any, field_name: str):
    if value is None or isinstance(value, model):
        return value
    try:
        return model.model_validate(value)
    except ValidationError as exc:
        raise InvalidRequestError(f'{field_name} is invalid: {exc.errors()[0]["msg"]}') from exc


def _positive_int(value: Any, field_name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise InvalidRequestError(f'{field_name} must be a positive integer.')
    return value


class _DayEvents:
    """Blocking events per (calendar, local day), fetched lazily for one call."""

    def __init__(self, checker: ConflictChecker, service: ServiceRecord, zone: tzinfo, logger: logging.Logger):
        self.checker = checker
        self.zone = zone
        self.logger = logger
        self.before = timedelta(minutes=service.buffer_before_minutes)
        self.after = timedelta(minutes=service.buffer_after_minutes)
        self._cache: dict[tuple[str, date], list[ProviderEvent] | None] = {}

    async def get(self, external_calendar_id: str, day: date) -> list[ProviderEvent] | None:
        key = (external_calendar_id, day)
        if key not in self._cache:
            day_start, day_end = local_day_bounds(day, self.zone)
            try:
                self._cache[key] = await self.checker.list_blocking_events(
                    external_calendar_id,
                    to_utc(day_start) - self.before,
                    to_utc(day_end) + self.after,
                    timezone=self.zone,
                )
            except ProviderError as exc:
                self.logger.warning("Skipping %s on %s: %s", external_calendar_id, day.isoformat(), exc)
                self._cache[key] = None
        return self._cache[key]

    @property
    def fetch_count(self) -> int:
        return len(self._cache)


class SuggestionService:
    def __init__(
        self,
        store: SchedulingStore,
        checker: ConflictChecker,
        logger: logging.Logger | None = None,
        max_attempts: int = config.SUGGEST_MAX_ATTEMPTS,
    ):
        self.store = store
        self.checker = checker
        self.logger = logger or logging.getLogger(__name__)
        self.max_attempts = max_attempts

    async def _is_free(
        self,
        slot: AvailabilitySlot,
        calendar: CalendarRecord,
        day_events: _DayEvents,
    ) -> bool | None:
        """Whether the slot's buffered window is free; None when its day could not be fetched."""
        events = await day_events.get(calendar.external_calendar_id, to_zone(slot.start_datetime, day_events.zone).date())
        if events is None:
            return None
        buffered_start = to_utc(slot.start_datetime) - day_events.before
        buffered_end = to_utc(slot.end_datetime) + day_events.after
        return not blocking_events(events, buffered_start, buffered_end, default_zone=day_events.zone)

    async def suggest_availability(
        self,
        start_datetime: str | datetime,
        end_datetime: str | datetime,
        service_id: str,
        calendar_ids: list[str],
        max_results: int = config.DEFAULT_MAX_RESULTS,
        expand_timeframe: bool = False,
        interval_minutes: int = config.DEFAULT_INTERVAL_MINUTES,
        strategy: str = EARLIEST,
        priority_config: PriorityConfig | dict | None = None,
        time_blocks_config: TimeBlocksConfig | dict | None = None,
        now: datetime | None = None,
    ) -> list[AvailabilitySlot]:
        range_start = parse_datetime(start_datetime, 'start_datetime')
        range_end = parse_datetime(end_datetime, 'end_datetime')
        if range_end < range_start:
            raise InvalidRequestError('end_datetime must not be before start_datetime.')
        service_id = require_id(service_id, 'service_id')
        calendar_ids = require_ids(calendar_ids)
        max_results = _positive_int(max_results, 'max_results')
        interval_minutes = _positive_int(interval_minutes, 'interval_minutes')
        if not isinstance(strategy, str):
            raise InvalidRequestError('strategy must be a string.')
        priority_config = _coerce_model(PriorityConfig, priority_config, 'priority_config') or PriorityConfig()
        time_blocks_config = _coerce_model(TimeBlocksConfig, time_blocks_config, 'time_blocks_config')

        self.logger.info(
            "Suggesting availability from %s to %s for service %s",
            range_start.isoformat(),
            range_end.isoformat(),
            service_id,
        )

        try:
            service = await self.store.get_service(service_id)
            if service is None or not service.is_active:
                raise ServiceNotFoundError(service_id)

            calendars = await self.store.list_calendars(calendar_ids, active_only=True)
            if not calendars:
                raise NoActiveCalendarsFoundError(calendar_ids)

            instance = await self.store.get_instance(calendars[0].instance_id)
            if instance is None:
                raise InstanceNotFoundError(calendars[0].instance_id)

            zone = resolve_timezone(instance.timezone)
        except Exception:
            self.logger.exception("Error suggesting availability for service %s", service_id)
            return []

        calendars_by_id = {calendar.id: calendar for calendar in calendars}
        day_events = _DayEvents(self.checker, service, zone, self.logger)
        available: list[AvailabilitySlot] = []
        checked: set[tuple[str, datetime]] = set()
        search_end = range_end

        for attempt in range(self.max_attempts + 1):
            grid = generate_slot_grid(
                range_start,
                search_end,
                service.duration_minutes,
                interval_minutes,
                instance.business_hours,
                zone,
                calendars,
            )
            for slot in grid:
                if len(available) >= max_results:
                    break
                key = (slot.calendar_id, to_utc(slot.start_datetime))
                if key in checked:
                    continue
                checked.add(key)
                if await self._is_free(slot, calendars_by_id[slot.calendar_id], day_events):
                    available.append(slot)

            self.logger.debug("Attempt %d: %d/%d slots available", attempt + 1, len(available), max_results)

            if len(available) >= max_results or not expand_timeframe or attempt == self.max_attempts:
                break
            search_end = search_end + timedelta(days=1)
            self.logger.debug("Expanding timeframe to %s", search_end.date().isoformat())

        results = apply_strategy(
            available,
            strategy,
            max_results,
            priority_config=priority_config,
            time_blocks_config=time_blocks_config,
            zone=zone,
            now=now,
        )
        self.logger.info(
            "Suggested %d slots (%d provider queries)", len(results), day_events.fetch_count
        )
        return results
