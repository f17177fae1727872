"""
Appointment Service

Books, reschedules, cancels and deletes appointments. Every booking is
verified with the availability service first and mirrored as a provider
event; the database row and the provider event are kept in step.
"""

import logging
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ValidationError, field_validator

from scheduler.core.exceptions import (
    AppointmentNotFoundError,
    CalendarNotFoundError,
    InstanceNotFoundError,
    InvalidRequestError,
    NoActiveCalendarsFoundError,
    ProviderError,
    ServiceNotFoundError,
    SlotUnavailableError,
)
from scheduler.core.timeutils import add_minutes, parse_datetime
from scheduler.models.appointment import APPOINTMENT_STATUSES
from scheduler.providers.base import CalendarProvider, EventDraft
from scheduler.services.availability import AvailabilityService, require_id
from scheduler.services.stores import AppointmentRecord, CalendarRecord, SchedulingStore, ServiceRecord

logger = logging.getLogger(__name__)


def _parse_optional_datetime(value: Any, field_name: str) -> datetime | None:
    if value is None:
        return None
    return parse_datetime(value, field_name)


class AppointmentCreate(BaseModel):
    instance_id: str
    service_id: str
    start_datetime: datetime
    end_datetime: datetime | None = None
    client_name: str
    client_email: str | None = None
    client_phone: str | None = None
    description: str | None = None
    calendar_id: str | None = None
    flow_id: int | None = None
    agent_id: int | None = None
    user_id: int | None = None
    check_alternative_calendars: bool = False

    @field_validator('start_datetime', mode='before')
    @classmethod
    def validate_start(cls, value: Any) -> datetime:
        return parse_datetime(value, 'start_datetime')

    @field_validator('end_datetime', mode='before')
    @classmethod
    def validate_end(cls, value: Any) -> datetime | None:
        return _parse_optional_datetime(value, 'end_datetime')

    @field_validator('instance_id', 'service_id', 'client_name')
    @classmethod
    def validate_required_text(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError('Field cannot be empty.')
        return value


class AppointmentUpdate(BaseModel):
    start_datetime: datetime | None = None
    end_datetime: datetime | None = None
    title: str | None = None
    description: str | None = None
    client_name: str | None = None
    client_email: str | None = None
    client_phone: str | None = None
    status: str | None = None
    flow_id: int | None = None
    agent_id: int | None = None
    user_id: int | None = None

    @field_validator('start_datetime', 'end_datetime', mode='before')
    @classmethod
    def validate_datetimes(cls, value: Any) -> datetime | None:
        return _parse_optional_datetime(value, 'datetime')

    @field_validator('status')
    @classmethod
    def validate_status(cls, value: str | None) -> str | None:
        if value is not None and value not in APPOINTMENT_STATUSES:
            raise ValueError(f"status must be one of: {', '.join(APPOINTMENT_STATUSES)}.")
        return value


def _validate_model(model, value: Any):
    if isinstance(value, model):
        return value
    try:
        return model.model_validate(value)
    except ValidationError as exc:
        error = exc.errors()[0]
        location = '.'.join(str(part) for part in error.get('loc', ()))
        raise InvalidRequestError(f"{location}: {error['msg']}" if location else error['msg']) from exc


def build_event_description(service: ServiceRecord, client_name: str, notes: str | None = None) -> str:
    lines = [
        f'Service: {service.name}',
        f'Client: {client_name}',
        f'Duration: {service.duration_minutes} minutes',
    ]
    if service.price is not None:
        lines.append(f'Price: {service.price:.2f}')
    lines.append('')
    lines.append('A video call link is attached to this event.')
    if notes:
        lines.append('')
        lines.append(f'Notes: {notes}')
    return '\n'.join(lines)


class AppointmentService:
    def __init__(
        self,
        store: SchedulingStore,
        provider: CalendarProvider,
        availability: AvailabilityService,
        logger: logging.Logger | None = None,
    ):
        self.store = store
        self.provider = provider
        self.availability = availability
        self.logger = logger or logging.getLogger(__name__)

    async def _discard_event(self, external_calendar_id: str, event_id: str) -> None:
        # A failed provider delete must not block the local state change.
        try:
            await self.provider.delete_event(external_calendar_id, event_id)
        except ProviderError as exc:
            self.logger.warning("Could not delete event %s from %s: %s", event_id, external_calendar_id, exc)

    async def _target_calendar(self, request: AppointmentCreate) -> CalendarRecord:
        if request.calendar_id:
            calendar = await self.store.get_calendar(request.calendar_id)
            if calendar is None or calendar.instance_id != request.instance_id:
                raise CalendarNotFoundError(request.calendar_id)
            return calendar

        calendars = await self.store.list_instance_calendars(request.instance_id)
        if not calendars:
            raise NoActiveCalendarsFoundError()
        return calendars[0]

    async def _alternative_calendar(
        self,
        request: AppointmentCreate,
        rejected: CalendarRecord,
        end: datetime,
    ) -> CalendarRecord | None:
        candidates = [
            calendar.id
            for calendar in await self.store.list_instance_calendars(request.instance_id)
            if calendar.id != rejected.id
        ]
        if not candidates:
            return None

        verdict = await self.availability.check_calendars_availability(
            request.start_datetime, request.service_id, candidates, end_datetime=end
        )
        if not verdict.available_calendars:
            return None
        return await self.store.get_calendar(verdict.available_calendars[0].calendar_id)

    async def create_appointment(self, request: AppointmentCreate | dict[str, Any]) -> AppointmentRecord:
        request = _validate_model(AppointmentCreate, request)

        service = await self.availability.load_service(request.service_id)
        calendar = await self._target_calendar(request)
        instance = await self.store.get_instance(request.instance_id)
        if instance is None:
            raise InstanceNotFoundError(request.instance_id)

        start = request.start_datetime
        end = request.end_datetime or add_minutes(start, service.duration_minutes)
        if end <= start:
            raise InvalidRequestError('End time must be after start time.')

        verdict = await self.availability.check_availability(start, service.id, calendar.id, end_datetime=end)
        if not verdict.available:
            alternative = None
            if request.check_alternative_calendars:
                alternative = await self._alternative_calendar(request, calendar, end)
            if alternative is None:
                raise SlotUnavailableError(verdict.conflict_reason or 'Time slot unavailable', verdict)
            self.logger.info(
                "Calendar %s unavailable (%s); booking on %s instead",
                calendar.name,
                verdict.conflict_reason,
                alternative.name,
            )
            calendar = alternative

        title = f'{service.name} - {request.client_name}'
        draft = EventDraft(
            summary=title,
            description=build_event_description(service, request.client_name, request.description),
            start=start,
            end=end,
            time_zone=instance.timezone,
            attendees=[request.client_email] if request.client_email else [],
        )
        event_id = await self.provider.create_event(calendar.external_calendar_id, draft)

        try:
            appointment = await self.store.add_appointment(
                {
                    'instance_id': request.instance_id,
                    'calendar_id': calendar.id,
                    'service_id': service.id,
                    'external_event_id': event_id,
                    'title': title,
                    'description': request.description,
                    'start_datetime': start,
                    'end_datetime': end,
                    'client_name': request.client_name,
                    'client_email': request.client_email,
                    'client_phone': request.client_phone,
                    'status': 'scheduled',
                    'flow_id': request.flow_id,
                    'agent_id': request.agent_id,
                    'user_id': request.user_id,
                }
            )
        except Exception:
            self.logger.exception("Saving appointment failed; removing event %s", event_id)
            await self._discard_event(calendar.external_calendar_id, event_id)
            raise

        self.logger.info("Appointment %s booked on %s at %s", appointment.id, calendar.name, start.isoformat())
        return appointment

    async def _get_appointment(self, appointment_id: str) -> AppointmentRecord:
        appointment = await self.store.get_appointment(require_id(appointment_id, 'appointment_id'))
        if appointment is None:
            raise AppointmentNotFoundError(appointment_id)
        return appointment

    async def update_appointment(
        self,
        appointment_id: str,
        changes: AppointmentUpdate | dict[str, Any],
    ) -> AppointmentRecord:
        """Apply ``changes``; a new time is re-verified, ignoring the appointment's own event."""
        changes = _validate_model(AppointmentUpdate, changes)
        appointment = await self._get_appointment(appointment_id)
        values = changes.model_dump(exclude_unset=True)

        service = await self.store.get_service(appointment.service_id)
        if service is None:
            raise ServiceNotFoundError(appointment.service_id)

        start = values.get('start_datetime') or appointment.start_datetime
        if values.get('end_datetime'):
            end = values['end_datetime']
        elif values.get('start_datetime'):
            end = add_minutes(start, service.duration_minutes)
        else:
            end = appointment.end_datetime
        if end <= start:
            raise InvalidRequestError('End time must be after start time.')

        rescheduled = start != appointment.start_datetime or end != appointment.end_datetime
        if rescheduled:
            verdict = await self.availability.check_availability(
                start,
                service.id,
                appointment.calendar_id,
                exclude_event_id=appointment.external_event_id,
                end_datetime=end,
            )
            if not verdict.available:
                raise SlotUnavailableError(verdict.conflict_reason or 'Time slot unavailable', verdict)
            values['start_datetime'] = start
            values['end_datetime'] = end

        touches_event = rescheduled or 'title' in values or 'description' in values
        if touches_event and appointment.external_event_id:
            calendar = await self.store.get_calendar(appointment.calendar_id, active_only=False)
            if calendar is None:
                raise CalendarNotFoundError(appointment.calendar_id)
            instance = await self.store.get_instance(calendar.instance_id)
            if instance is None:
                raise InstanceNotFoundError(calendar.instance_id)
            await self.provider.update_event(
                calendar.external_calendar_id,
                appointment.external_event_id,
                EventDraft(
                    summary=values.get('title') or appointment.title or service.name,
                    description=values.get('description') or appointment.description,
                    start=start,
                    end=end,
                    time_zone=instance.timezone,
                ),
            )

        updated = await self.store.update_appointment(appointment.id, values)
        self.logger.info("Appointment %s updated", appointment.id)
        return updated

    async def cancel_appointment(self, appointment_id: str) -> AppointmentRecord:
        appointment = await self._get_appointment(appointment_id)
        if appointment.external_event_id:
            calendar = await self.store.get_calendar(appointment.calendar_id, active_only=False)
            if calendar is not None:
                await self._discard_event(calendar.external_calendar_id, appointment.external_event_id)

        cancelled = await self.store.update_appointment(appointment.id, {'status': 'cancelled'})
        self.logger.info("Appointment %s cancelled", appointment.id)
        return cancelled

    async def delete_appointment(self, appointment_id: str) -> None:
        appointment = await self._get_appointment(appointment_id)
        if appointment.external_event_id:
            calendar = await self.store.get_calendar(appointment.calendar_id, active_only=False)
            if calendar is not None:
                await self._discard_event(calendar.external_calendar_id, appointment.external_event_id)

        await self.store.delete_appointment(appointment.id)
        self.logger.info("Appointment %s deleted", appointment.id)

    async def list_appointments(
        self,
        instance_id: str | None = None,
        start: str | datetime | None = None,
        end: str | datetime | None = None,
        status: str | None = None,
    ) -> list[AppointmentRecord]:
        if status is not None and status not in APPOINTMENT_STATUSES:
            raise InvalidRequestError(f"status must be one of: {', '.join(APPOINTMENT_STATUSES)}.")
        return await self.store.list_appointments(
            instance_id=instance_id,
            start=_parse_optional_datetime(start, 'start'),
            end=_parse_optional_datetime(end, 'end'),
            status=status,
        )
