import asyncio

import pytest
from fastapi import HTTPException
from pydantic import ValidationError

from scheduler.core.timeutils import parse_datetime
from scheduler.routes.availability_routes import (
    CheckAvailabilityRequest,
    CheckCalendarsRequest,
    SuggestAvailabilityRequest,
    check_availability,
    check_calendars_availability,
    suggest_availability,
)

from scheduling_fakes import FakeProvider, timed_event


@pytest.fixture
def provider(monkeypatch: pytest.MonkeyPatch) -> FakeProvider:
    monkeypatch.setattr('scheduler.routes.availability_routes.ensure_database_ready', lambda: None)
    return FakeProvider()


def _busy(provider: FakeProvider, external_calendar_id: str, start: str, end: str) -> None:
    provider.events.setdefault(external_calendar_id, []).append(timed_event(parse_datetime(start), parse_datetime(end)))


def test_check_request_strips_identifiers() -> None:
    request = CheckAvailabilityRequest(
        start_datetime='2025-08-25T10:00:00-03:00', service_id=' svc-1 ', calendar_id=' cal-a '
    )

    assert (request.service_id, request.calendar_id) == ('svc-1', 'cal-a')


@pytest.mark.parametrize('calendar_ids', [[], ['  ']])
def test_check_calendars_request_rejects_empty_calendar_ids(calendar_ids: list[str]) -> None:
    with pytest.raises(ValidationError):
        CheckCalendarsRequest(start_datetime='2025-08-25T10:00:00-03:00', service_id='svc-1', calendar_ids=calendar_ids)


def test_suggest_request_applies_defaults_and_normalizes_strategy() -> None:
    request = SuggestAvailabilityRequest(
        start_datetime='2025-08-25T00:00:00-03:00',
        end_datetime='2025-08-26T00:00:00-03:00',
        service_id='svc-1',
        calendar_ids=['cal-a'],
        strategy=' Balanced_Distribution ',
    )

    assert request.strategy == 'balanced_distribution'
    assert request.max_results == 10
    assert request.interval_minutes == 30
    assert request.priority_config.enabled is True
    assert request.time_blocks_config is None


def test_suggest_request_rejects_non_positive_values() -> None:
    with pytest.raises(ValidationError):
        SuggestAvailabilityRequest(
            start_datetime='2025-08-25T00:00:00-03:00',
            end_datetime='2025-08-26T00:00:00-03:00',
            service_id='svc-1',
            calendar_ids=['cal-a'],
            interval_minutes=0,
        )


def test_check_availability_reports_free_and_booked_slots(scheduling_db, provider: FakeProvider) -> None:
    _busy(provider, 'a@group', '2025-08-25T10:00:00-03:00', '2025-08-25T10:30:00-03:00')

    booked = asyncio.run(
        check_availability(
            CheckAvailabilityRequest(start_datetime='2025-08-25T10:00:00-03:00', service_id='svc-1', calendar_id='cal-a'),
            db=scheduling_db,
            provider=provider,
        )
    )
    free = asyncio.run(
        check_availability(
            CheckAvailabilityRequest(start_datetime='2025-08-25T10:30:00-03:00', service_id='svc-1', calendar_id='cal-a'),
            db=scheduling_db,
            provider=provider,
        )
    )

    assert booked.available is False
    assert booked.conflict_reason == 'Time slot already booked'
    assert free.available is True
    assert free.calendar_name == 'Room A'
    assert free.service_duration == 30


def test_check_availability_never_raises_for_inactive_calendar(scheduling_db, provider: FakeProvider) -> None:
    verdict = asyncio.run(
        check_availability(
            CheckAvailabilityRequest(
                start_datetime='2025-08-25T10:00:00-03:00', service_id='svc-1', calendar_id='cal-off'
            ),
            db=scheduling_db,
            provider=provider,
        )
    )

    assert verdict.available is False
    assert verdict.conflict_reason == 'Calendar not found or inactive'


def test_check_calendars_orders_available_by_priority(scheduling_db, provider: FakeProvider) -> None:
    verdict = asyncio.run(
        check_calendars_availability(
            CheckCalendarsRequest(
                start_datetime='2025-08-25T10:00:00-03:00', service_id='svc-1', calendar_ids=['cal-b', 'cal-a']
            ),
            db=scheduling_db,
            provider=provider,
        )
    )

    assert [entry.calendar_id for entry in verdict.available_calendars] == ['cal-a', 'cal-b']
    assert verdict.total_available == 2


@pytest.mark.parametrize(
    ('payload', 'status_code', 'detail'),
    [
        ({'service_id': 'missing', 'calendar_ids': ['cal-a']}, 404, 'Service not found'),
        ({'service_id': 'svc-1', 'calendar_ids': ['cal-off']}, 404, 'No active calendars found'),
    ],
)
def test_check_calendars_maps_lookup_failures_to_404(
    scheduling_db, provider: FakeProvider, payload: dict, status_code: int, detail: str
) -> None:
    with pytest.raises(HTTPException) as exception_info:
        asyncio.run(
            check_calendars_availability(
                CheckCalendarsRequest(start_datetime='2025-08-25T10:00:00-03:00', **payload),
                db=scheduling_db,
                provider=provider,
            )
        )

    assert exception_info.value.status_code == status_code
    assert exception_info.value.detail == detail


def test_check_calendars_rejects_naive_datetime(scheduling_db, provider: FakeProvider) -> None:
    with pytest.raises(HTTPException) as exception_info:
        asyncio.run(
            check_calendars_availability(
                CheckCalendarsRequest(start_datetime='2025-08-25T10:00:00', service_id='svc-1', calendar_ids=['cal-a']),
                db=scheduling_db,
                provider=provider,
            )
        )

    assert exception_info.value.status_code == 400


def test_suggest_returns_free_slots(scheduling_db, provider: FakeProvider) -> None:
    _busy(provider, 'a@group', '2025-08-25T09:30:00-03:00', '2025-08-25T10:00:00-03:00')

    slots = asyncio.run(
        suggest_availability(
            SuggestAvailabilityRequest(
                start_datetime='2025-08-25T09:00:00-03:00',
                end_datetime='2025-08-25T11:00:00-03:00',
                service_id='svc-1',
                calendar_ids=['cal-a'],
                max_results=3,
            ),
            db=scheduling_db,
            provider=provider,
        )
    )

    assert [slot.start_datetime.isoformat() for slot in slots] == [
        '2025-08-25T09:00:00-03:00',
        '2025-08-25T10:00:00-03:00',
        '2025-08-25T10:30:00-03:00',
    ]
    assert {slot.calendar_name for slot in slots} == {'Room A'}


def test_suggest_returns_empty_list_for_unknown_service(scheduling_db, provider: FakeProvider) -> None:
    slots = asyncio.run(
        suggest_availability(
            SuggestAvailabilityRequest(
                start_datetime='2025-08-25T09:00:00-03:00',
                end_datetime='2025-08-25T11:00:00-03:00',
                service_id='missing',
                calendar_ids=['cal-a'],
            ),
            db=scheduling_db,
            provider=provider,
        )
    )

    assert slots == []


def test_suggest_rejects_reversed_range(scheduling_db, provider: FakeProvider) -> None:
    with pytest.raises(HTTPException) as exception_info:
        asyncio.run(
            suggest_availability(
                SuggestAvailabilityRequest(
                    start_datetime='2025-08-25T11:00:00-03:00',
                    end_datetime='2025-08-25T09:00:00-03:00',
                    service_id='svc-1',
                    calendar_ids=['cal-a'],
                ),
                db=scheduling_db,
                provider=provider,
            )
        )

    assert exception_info.value.status_code == 400
