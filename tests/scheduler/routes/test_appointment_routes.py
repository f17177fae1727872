import asyncio

import pytest
from fastapi import HTTPException

from scheduler.core.timeutils import parse_datetime
from scheduler.routes.appointment_routes import (
    cancel_appointment,
    create_appointment,
    delete_appointment,
    list_appointments,
    update_appointment,
)
from scheduler.services.appointments import AppointmentCreate, AppointmentUpdate

from scheduling_fakes import FakeProvider, timed_event


@pytest.fixture
def provider(monkeypatch: pytest.MonkeyPatch) -> FakeProvider:
    monkeypatch.setattr('scheduler.routes.appointment_routes.ensure_database_ready', lambda: None)
    return FakeProvider()


def _create(db, provider: FakeProvider, **overrides):
    payload = {
        'instance_id': 'inst-1',
        'service_id': 'svc-1',
        'start_datetime': '2025-08-25T10:00:00-03:00',
        'client_name': 'Ana Souza',
    }
    payload.update(overrides)
    return asyncio.run(create_appointment(AppointmentCreate(**payload), db=db, provider=provider))


def test_create_appointment_books_highest_priority_calendar(scheduling_db, provider: FakeProvider) -> None:
    appointment = _create(scheduling_db, provider)

    assert appointment.calendar_id == 'cal-a'
    assert appointment.external_event_id == 'evt-1'
    assert provider.created[0][0] == 'a@group'
    assert appointment.start_datetime == parse_datetime('2025-08-25T13:00:00Z')


def test_create_appointment_returns_409_when_slot_taken(scheduling_db, provider: FakeProvider) -> None:
    provider.events['a@group'] = [
        timed_event(parse_datetime('2025-08-25T10:00:00-03:00'), parse_datetime('2025-08-25T10:30:00-03:00'))
    ]

    with pytest.raises(HTTPException) as exception_info:
        _create(scheduling_db, provider)

    assert exception_info.value.status_code == 409
    assert exception_info.value.detail == 'Time slot already booked'


def test_create_appointment_returns_404_for_unknown_calendar(scheduling_db, provider: FakeProvider) -> None:
    with pytest.raises(HTTPException) as exception_info:
        _create(scheduling_db, provider, calendar_id='cal-off')

    assert exception_info.value.status_code == 404


def test_list_and_cancel_appointments(scheduling_db, provider: FakeProvider) -> None:
    first = _create(scheduling_db, provider)
    _create(scheduling_db, provider, start_datetime='2025-08-25T11:00:00-03:00')

    cancelled = asyncio.run(cancel_appointment(first.id, db=scheduling_db, provider=provider))
    scheduled = asyncio.run(
        list_appointments(
            instance_id='inst-1',
            start_date=None,
            end_date=None,
            appointment_status='scheduled',
            db=scheduling_db,
            provider=provider,
        )
    )

    assert cancelled.status == 'cancelled'
    assert provider.deleted == [('a@group', 'evt-1')]
    assert [appointment.start_datetime.hour for appointment in scheduled] == [14]


def test_list_appointments_rejects_unknown_status(scheduling_db, provider: FakeProvider) -> None:
    with pytest.raises(HTTPException) as exception_info:
        asyncio.run(
            list_appointments(
                instance_id=None,
                start_date=None,
                end_date=None,
                appointment_status='archived',
                db=scheduling_db,
                provider=provider,
            )
        )

    assert exception_info.value.status_code == 400


def test_update_appointment_moves_event(scheduling_db, provider: FakeProvider) -> None:
    appointment = _create(scheduling_db, provider)

    updated = asyncio.run(
        update_appointment(
            appointment.id,
            AppointmentUpdate(start_datetime='2025-08-25T15:00:00-03:00'),
            db=scheduling_db,
            provider=provider,
        )
    )

    assert updated.start_datetime == parse_datetime('2025-08-25T18:00:00Z')
    assert updated.end_datetime == parse_datetime('2025-08-25T18:30:00Z')
    assert provider.updated[0][1] == 'evt-1'


def test_update_missing_appointment_returns_404(scheduling_db, provider: FakeProvider) -> None:
    with pytest.raises(HTTPException) as exception_info:
        asyncio.run(
            update_appointment('missing', AppointmentUpdate(title='Checkup'), db=scheduling_db, provider=provider)
        )

    assert exception_info.value.status_code == 404
    assert exception_info.value.detail == 'Appointment not found'


def test_delete_appointment_removes_row(scheduling_db, provider: FakeProvider) -> None:
    appointment = _create(scheduling_db, provider)

    asyncio.run(delete_appointment(appointment.id, db=scheduling_db, provider=provider))

    with pytest.raises(HTTPException) as exception_info:
        asyncio.run(cancel_appointment(appointment.id, db=scheduling_db, provider=provider))
    assert exception_info.value.status_code == 404
