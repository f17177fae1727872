"""Metadata store used by the scheduling services.

Records are read-only snapshots; the services never mutate them while a
verdict is being computed.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from decimal import Decimal
from threading import Lock
from typing import Any, Callable

from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from scheduler.core.business_hours import BusinessHours
from scheduler.core.exceptions import AppointmentNotFoundError
from scheduler.models.appointment import Appointment
from scheduler.models.calendar import Calendar
from scheduler.models.instance import Instance
from scheduler.models.service import Service


def _as_utc(value: datetime | None) -> datetime | None:
    # SQLite drops tzinfo; stored values are always UTC.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class ServiceRecord(BaseModel):
    id: str
    name: str
    duration_minutes: int
    buffer_before_minutes: int = 0
    buffer_after_minutes: int = 0
    is_active: bool = True
    instance_id: str | None = None
    price: Decimal | None = None
    description: str | None = None

    class Config:
        from_attributes = True

    @field_validator('duration_minutes')
    @classmethod
    def validate_duration(cls, value: int) -> int:
        if value <= 0:
            raise ValueError('duration_minutes must be positive.')
        return value

    @field_validator('buffer_before_minutes', 'buffer_after_minutes', mode='before')
    @classmethod
    def validate_buffer(cls, value: int | None) -> int:
        if value is None:
            return 0
        if value < 0:
            raise ValueError('Buffers cannot be negative.')
        return value


class CalendarRecord(BaseModel):
    id: str
    external_calendar_id: str
    instance_id: str
    name: str
    priority: int = 1
    is_active: bool = True

    class Config:
        from_attributes = True


class InstanceRecord(BaseModel):
    id: str
    name: str = ''
    timezone: str
    business_hours: BusinessHours

    class Config:
        from_attributes = True

    @field_validator('business_hours', mode='before')
    @classmethod
    def default_business_hours(cls, value: Any) -> Any:
        return value or {}


class AppointmentRecord(BaseModel):
    id: str
    instance_id: str | None = None
    calendar_id: str
    service_id: str
    external_event_id: str | None = None
    title: str | None = None
    description: str | None = None
    start_datetime: datetime
    end_datetime: datetime
    client_name: str | None = None
    client_email: str | None = None
    client_phone: str | None = None
    status: str = 'scheduled'
    flow_id: int | None = None
    agent_id: int | None = None
    user_id: int | None = None

    class Config:
        from_attributes = True

    @field_validator('start_datetime', 'end_datetime')
    @classmethod
    def ensure_aware(cls, value: datetime) -> datetime:
        return _as_utc(value)


class SchedulingStore(ABC):
    @abstractmethod
    async def get_service(self, service_id: str) -> ServiceRecord | None:
        ...

    @abstractmethod
    async def get_calendar(self, calendar_id: str, active_only: bool = True) -> CalendarRecord | None:
        ...

    @abstractmethod
    async def list_calendars(self, calendar_ids: list[str], active_only: bool = True) -> list[CalendarRecord]:
        """Calendars among ``calendar_ids``, ordered by priority."""

    @abstractmethod
    async def list_instance_calendars(self, instance_id: str, active_only: bool = True) -> list[CalendarRecord]:
        ...

    @abstractmethod
    async def get_instance(self, instance_id: str) -> InstanceRecord | None:
        ...

    @abstractmethod
    async def get_appointment(self, appointment_id: str) -> AppointmentRecord | None:
        ...

    @abstractmethod
    async def list_appointments(
        self,
        instance_id: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        status: str | None = None,
    ) -> list[AppointmentRecord]:
        ...

    @abstractmethod
    async def add_appointment(self, values: dict[str, Any]) -> AppointmentRecord:
        ...

    @abstractmethod
    async def update_appointment(self, appointment_id: str, values: dict[str, Any]) -> AppointmentRecord:
        ...

    @abstractmethod
    async def delete_appointment(self, appointment_id: str) -> None:
        ...


class SqlAlchemyStore(SchedulingStore):
    """Store backed by a SQLAlchemy session.

    Session work runs in the threadpool so route handlers never block the
    event loop. Calls are serialized on a lock since a session is not safe
    for concurrent use; each request owns its session.
    """

    def __init__(self, db: Session):
        self.db = db
        self._lock = Lock()

    async def _run(self, func: Callable[..., Any], *args: Any) -> Any:
        return await run_in_threadpool(self._serialized, func, *args)

    def _serialized(self, func: Callable[..., Any], *args: Any) -> Any:
        with self._lock:
            return func(*args)

    async def get_service(self, service_id: str) -> ServiceRecord | None:
        return await self._run(self._get_service, service_id)

    async def get_calendar(self, calendar_id: str, active_only: bool = True) -> CalendarRecord | None:
        return await self._run(self._get_calendar, calendar_id, active_only)

    async def list_calendars(self, calendar_ids: list[str], active_only: bool = True) -> list[CalendarRecord]:
        if not calendar_ids:
            return []
        return await self._run(self._list_calendars, calendar_ids, active_only)

    async def list_instance_calendars(self, instance_id: str, active_only: bool = True) -> list[CalendarRecord]:
        return await self._run(self._list_instance_calendars, instance_id, active_only)

    async def get_instance(self, instance_id: str) -> InstanceRecord | None:
        return await self._run(self._get_instance, instance_id)

    async def get_appointment(self, appointment_id: str) -> AppointmentRecord | None:
        return await self._run(self._get_appointment, appointment_id)

    async def list_appointments(
        self,
        instance_id: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        status: str | None = None,
    ) -> list[AppointmentRecord]:
        return await self._run(self._list_appointments, instance_id, start, end, status)

    async def add_appointment(self, values: dict[str, Any]) -> AppointmentRecord:
        return await self._run(self._add_appointment, values)

    async def update_appointment(self, appointment_id: str, values: dict[str, Any]) -> AppointmentRecord:
        return await self._run(self._update_appointment, appointment_id, values)

    async def delete_appointment(self, appointment_id: str) -> None:
        await self._run(self._delete_appointment, appointment_id)

    def _get_service(self, service_id: str) -> ServiceRecord | None:
        service = self.db.query(Service).filter(Service.id == service_id).first()
        return ServiceRecord.model_validate(service) if service else None

    def _get_calendar(self, calendar_id: str, active_only: bool) -> CalendarRecord | None:
        query = self.db.query(Calendar).filter(Calendar.id == calendar_id)
        if active_only:
            query = query.filter(Calendar.is_active.is_(True))
        calendar = query.first()
        return CalendarRecord.model_validate(calendar) if calendar else None

    def _list_calendars(self, calendar_ids: list[str], active_only: bool) -> list[CalendarRecord]:
        query = self.db.query(Calendar).filter(Calendar.id.in_(calendar_ids))
        if active_only:
            query = query.filter(Calendar.is_active.is_(True))
        calendars = query.order_by(Calendar.priority.asc(), Calendar.name.asc()).all()
        return [CalendarRecord.model_validate(calendar) for calendar in calendars]

    def _list_instance_calendars(self, instance_id: str, active_only: bool) -> list[CalendarRecord]:
        query = self.db.query(Calendar).filter(Calendar.instance_id == instance_id)
        if active_only:
            query = query.filter(Calendar.is_active.is_(True))
        calendars = query.order_by(Calendar.priority.asc(), Calendar.name.asc()).all()
        return [CalendarRecord.model_validate(calendar) for calendar in calendars]

    def _get_instance(self, instance_id: str) -> InstanceRecord | None:
        instance = self.db.query(Instance).filter(Instance.id == instance_id).first()
        return InstanceRecord.model_validate(instance) if instance else None

    def _get_appointment(self, appointment_id: str) -> AppointmentRecord | None:
        appointment = self.db.query(Appointment).filter(Appointment.id == appointment_id).first()
        return AppointmentRecord.model_validate(appointment) if appointment else None

    def _list_appointments(
        self,
        instance_id: str | None,
        start: datetime | None,
        end: datetime | None,
        status: str | None,
    ) -> list[AppointmentRecord]:
        query = self.db.query(Appointment)
        if instance_id:
            query = query.filter(Appointment.instance_id == instance_id)
        if start:
            query = query.filter(Appointment.start_datetime >= start.astimezone(timezone.utc))
        if end:
            query = query.filter(Appointment.start_datetime <= end.astimezone(timezone.utc))
        if status:
            query = query.filter(Appointment.status == status)
        appointments = query.order_by(Appointment.start_datetime.asc()).all()
        return [AppointmentRecord.model_validate(appointment) for appointment in appointments]

    def _add_appointment(self, values: dict[str, Any]) -> AppointmentRecord:
        appointment = Appointment(**self._normalize(values))
        self.db.add(appointment)
        self._commit()
        self.db.refresh(appointment)
        return AppointmentRecord.model_validate(appointment)

    def _update_appointment(self, appointment_id: str, values: dict[str, Any]) -> AppointmentRecord:
        appointment = self.db.query(Appointment).filter(Appointment.id == appointment_id).first()
        if appointment is None:
            raise AppointmentNotFoundError(appointment_id)
        for key, value in self._normalize(values).items():
            setattr(appointment, key, value)
        self._commit()
        self.db.refresh(appointment)
        return AppointmentRecord.model_validate(appointment)

    def _delete_appointment(self, appointment_id: str) -> None:
        appointment = self.db.query(Appointment).filter(Appointment.id == appointment_id).first()
        if appointment is None:
            return
        self.db.delete(appointment)
        self._commit()

    def _commit(self) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise

    @staticmethod
    def _normalize(values: dict[str, Any]) -> dict[str, Any]:
        normalized = dict(values)
        for key in ('start_datetime', 'end_datetime'):
            if isinstance(normalized.get(key), datetime):
                normalized[key] = normalized[key].astimezone(timezone.utc)
        return normalized
