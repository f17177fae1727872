"""Selection strategies that cut a list of free slots down to ``max_results``."""

import logging
from collections import defaultdict
from datetime import datetime, timezone, tzinfo
from typing import Literal

from pydantic import BaseModel, field_validator

from scheduler.core.business_hours import AvailabilitySlot
from scheduler.core.timeutils import HHMM_FORMAT, format_hhmm, parse_hhmm, to_utc, to_zone

EARLIEST = 'earliest'
NEAREST = 'nearest'
EQUALITY = 'equality'
TIME_BLOCKS = 'time_blocks'
BALANCED_DISTRIBUTION = 'balanced_distribution'

STRATEGIES = (EQUALITY, EARLIEST, NEAREST, TIME_BLOCKS, BALANCED_DISTRIBUTION)

logger = logging.getLogger(__name__)


class PriorityConfig(BaseModel):
    enabled: bool = True
    order: Literal['asc', 'desc'] = 'asc'


class TimeBlocksConfig(BaseModel):
    morning_start: str = '06:00'
    afternoon_start: str = '12:00'
    evening_start: str = '18:00'
    morning_slots: int | None = None
    afternoon_slots: int | None = None
    evening_slots: int | None = None

    @field_validator('morning_start', 'afternoon_start', 'evening_start')
    @classmethod
    def normalize_clock(cls, value: str) -> str:
        return parse_hhmm(value).strftime(HHMM_FORMAT)

    @field_validator('morning_slots', 'afternoon_slots', 'evening_slots')
    @classmethod
    def validate_count(cls, value: int | None) -> int | None:
        if value is not None and value < 0:
            raise ValueError('Slot counts cannot be negative.')
        return value

    def counts(self, max_results: int) -> tuple[int, int, int]:
        third = max_results // 3
        return (
            third if self.morning_slots is None else self.morning_slots,
            third if self.afternoon_slots is None else self.afternoon_slots,
            max_results - 2 * third if self.evening_slots is None else self.evening_slots,
        )


def _start_key(slot: AvailabilitySlot) -> datetime:
    return to_utc(slot.start_datetime)


def _by_time(slots: list[AvailabilitySlot]) -> list[AvailabilitySlot]:
    return sorted(slots, key=_start_key)


def _local(slot: AvailabilitySlot, zone: tzinfo | None) -> datetime:
    return to_zone(slot.start_datetime, zone) if zone is not None else slot.start_datetime


def earliest(slots: list[AvailabilitySlot], max_results: int) -> list[AvailabilitySlot]:
    return _by_time(slots)[:max_results]


def nearest(
    slots: list[AvailabilitySlot],
    max_results: int,
    now: datetime | None = None,
) -> list[AvailabilitySlot]:
    reference = to_utc(now) if now is not None else datetime.now(timezone.utc)
    return sorted(slots, key=lambda slot: abs(_start_key(slot) - reference))[:max_results]


def distribute_equally(slots: list[AvailabilitySlot], max_results: int) -> list[AvailabilitySlot]:
    """Same number of slots per calendar; the remainder goes to the highest-priority calendars."""
    groups: dict[str, list[AvailabilitySlot]] = {}
    for slot in slots:
        groups.setdefault(slot.calendar_id, []).append(slot)
    if not groups:
        return []

    ordered = sorted(groups.values(), key=lambda group: group[0].priority)
    per_calendar, remainder = divmod(max_results, len(ordered))

    result: list[AvailabilitySlot] = []
    for index, group in enumerate(ordered):
        take = per_calendar + (1 if index < remainder else 0)
        result.extend(_by_time(group)[:take])
    return _by_time(result)


def time_blocks(
    slots: list[AvailabilitySlot],
    max_results: int,
    config: TimeBlocksConfig | None = None,
    zone: tzinfo | None = None,
) -> list[AvailabilitySlot]:
    """Split slots into morning, afternoon and evening by local start time.

    Slots starting before ``morning_start`` belong to no block and are dropped.
    """
    config = config or TimeBlocksConfig()
    morning, afternoon, evening = [], [], []

    for slot in slots:
        clock = format_hhmm(_local(slot, zone))
        if config.morning_start <= clock < config.afternoon_start:
            morning.append(slot)
        elif config.afternoon_start <= clock < config.evening_start:
            afternoon.append(slot)
        elif clock >= config.evening_start:
            evening.append(slot)

    morning_count, afternoon_count, evening_count = config.counts(max_results)
    result = (
        _by_time(morning)[:morning_count]
        + _by_time(afternoon)[:afternoon_count]
        + _by_time(evening)[:evening_count]
    )
    return _by_time(result)[:max_results]


def balanced_distribution(
    slots: list[AvailabilitySlot],
    max_results: int,
    zone: tzinfo | None = None,
) -> list[AvailabilitySlot]:
    """Spread results across local days, sampling crowded days at a fixed stride."""
    days: dict = defaultdict(list)
    for slot in slots:
        days[_local(slot, zone).date()].append(slot)
    if not days:
        return []

    ordered_days = sorted(days)
    per_day, remainder = divmod(max_results, len(ordered_days))

    result: list[AvailabilitySlot] = []
    for index, day in enumerate(ordered_days):
        day_slots = _by_time(days[day])
        take = per_day + (1 if index < remainder else 0)
        if len(day_slots) > take > 1:
            stride = len(day_slots) // take
            result.extend(day_slots[min(i * stride, len(day_slots) - 1)] for i in range(take))
        else:
            result.extend(day_slots[:take])
    return _by_time(result)


def apply_priority_order(slots: list[AvailabilitySlot], config: PriorityConfig) -> list[AvailabilitySlot]:
    if not config.enabled:
        return list(slots)
    direction = 1 if config.order == 'asc' else -1
    return sorted(slots, key=lambda slot: (direction * slot.priority, _start_key(slot)))


def apply_strategy(
    slots: list[AvailabilitySlot],
    strategy: str,
    max_results: int,
    priority_config: PriorityConfig | None = None,
    time_blocks_config: TimeBlocksConfig | None = None,
    zone: tzinfo | None = None,
    now: datetime | None = None,
) -> list[AvailabilitySlot]:
    if strategy not in STRATEGIES:
        logger.warning(
            "Unknown strategy %r, expected one of %s; keeping grid order", strategy, ', '.join(STRATEGIES)
        )

    if strategy == EQUALITY:
        result = distribute_equally(slots, max_results)
    elif strategy == EARLIEST:
        result = earliest(slots, max_results)
    elif strategy == NEAREST:
        result = nearest(slots, max_results, now=now)
    elif strategy == TIME_BLOCKS:
        result = time_blocks(slots, max_results, time_blocks_config, zone=zone)
    elif strategy == BALANCED_DISTRIBUTION:
        result = balanced_distribution(slots, max_results, zone=zone)
    else:
        result = list(slots)[:max_results]

    return apply_priority_order(result, priority_config or PriorityConfig())
