"""
Provider conflict checker

Decides whether a calendar already holds a blocking event inside a UTC
window. Transparent ("free") and cancelled events never block, and windows
that only touch an event's boundary do not conflict.
"""

import logging
from datetime import datetime, timedelta, timezone, tzinfo

from scheduler.core.exceptions import InvalidRequestError, ProviderError
from scheduler.core.timeutils import intervals_overlap, local_datetime, resolve_timezone, to_utc
from scheduler.providers.base import CalendarProvider, EventBoundary, ProviderEvent

logger = logging.getLogger(__name__)

UTC = timezone.utc


def _boundary_zone(boundary: EventBoundary, default_zone: tzinfo) -> tzinfo:
    if boundary.time_zone:
        try:
            return resolve_timezone(boundary.time_zone)
        except InvalidRequestError:
            pass
    return default_zone


def resolve_event_window(event: ProviderEvent, default_zone: tzinfo = UTC) -> tuple[datetime, datetime] | None:
    """UTC span of ``event``, or None when it carries no usable bounds.

    All-day events run from local midnight of the start date to local
    midnight of the end date (exclusive, at least one day).
    """
    start, end = event.start, event.end

    if start.date_time is not None:
        event_start = start.date_time
        if event_start.tzinfo is None:
            event_start = event_start.replace(tzinfo=_boundary_zone(start, default_zone))
    elif start.day is not None:
        event_start = local_datetime(start.day, '00:00', _boundary_zone(start, default_zone))
    else:
        return None

    if end.date_time is not None:
        event_end = end.date_time
        if event_end.tzinfo is None:
            event_end = event_end.replace(tzinfo=_boundary_zone(end, default_zone))
    elif end.day is not None:
        end_day = end.day
        if start.day is not None and end_day <= start.day:
            end_day = start.day + timedelta(days=1)
        event_end = local_datetime(end_day, '00:00', _boundary_zone(end, default_zone))
    else:
        return None

    return to_utc(event_start), to_utc(event_end)


def blocking_events(
    events: list[ProviderEvent],
    utc_start: datetime,
    utc_end: datetime,
    default_zone: tzinfo = UTC,
    exclude_event_id: str | None = None,
) -> list[ProviderEvent]:
    conflicts = []
    for event in events:
        if event.is_transparent or event.is_cancelled:
            continue
        if exclude_event_id is not None and event.id == exclude_event_id:
            continue
        window = resolve_event_window(event, default_zone)
        if window is None:
            continue
        if intervals_overlap(window[0], window[1], utc_start, utc_end):
            conflicts.append(event)
    return conflicts


class ConflictChecker:
    def __init__(self, provider: CalendarProvider, logger: logging.Logger | None = None):
        self.provider = provider
        self.logger = logger or logging.getLogger(__name__)

    async def fetch_events(self, external_calendar_id: str, utc_start: datetime, utc_end: datetime) -> list[ProviderEvent]:
        """Provider events for the window; every failure surfaces as ``ProviderError``."""
        try:
            return await self.provider.list_events(external_calendar_id, to_utc(utc_start), to_utc(utc_end))
        except ProviderError as exc:
            self.logger.warning(
                "Provider query failed for calendar %s [%s, %s): %s",
                external_calendar_id,
                to_utc(utc_start).isoformat(),
                to_utc(utc_end).isoformat(),
                exc,
            )
            raise
        except Exception as exc:
            self.logger.exception(
                "Unexpected provider failure for calendar %s [%s, %s)",
                external_calendar_id,
                to_utc(utc_start).isoformat(),
                to_utc(utc_end).isoformat(),
            )
            raise ProviderError(
                str(exc) or exc.__class__.__name__,
                calendar_id=external_calendar_id,
                window_start=utc_start,
                window_end=utc_end,
            ) from exc

    async def list_blocking_events(
        self,
        external_calendar_id: str,
        utc_start: datetime,
        utc_end: datetime,
        *,
        timezone: str | tzinfo | None = None,
        exclude_event_id: str | None = None,
    ) -> list[ProviderEvent]:
        """Events that keep the calendar busy somewhere inside ``[utc_start, utc_end)``.

        ``timezone`` anchors all-day events whose calendar zone is unknown.
        """
        default_zone = resolve_timezone(timezone) if isinstance(timezone, str) else (timezone or UTC)
        events = await self.fetch_events(external_calendar_id, utc_start, utc_end)
        conflicts = blocking_events(
            events,
            to_utc(utc_start),
            to_utc(utc_end),
            default_zone=default_zone,
            exclude_event_id=exclude_event_id,
        )
        self.logger.debug(
            "Calendar %s [%s, %s): %d events, %d blocking",
            external_calendar_id,
            to_utc(utc_start).isoformat(),
            to_utc(utc_end).isoformat(),
            len(events),
            len(conflicts),
        )
        return conflicts

    async def has_conflict(
        self,
        external_calendar_id: str,
        utc_start: datetime,
        utc_end: datetime,
        *,
        timezone: str | tzinfo | None = None,
        exclude_event_id: str | None = None,
    ) -> bool:
        """True when the calendar is NOT free over ``[utc_start, utc_end)``."""
        conflicts = await self.list_blocking_events(
            external_calendar_id,
            utc_start,
            utc_end,
            timezone=timezone,
            exclude_event_id=exclude_event_id,
        )
        return bool(conflicts)
