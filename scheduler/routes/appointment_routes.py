from datetime import datetime

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from scheduler.core.exceptions import SchedulingError
from scheduler.providers.base import CalendarProvider
from scheduler.routes.dependencies import (
    build_appointment_service,
    ensure_database_ready,
    get_calendar_provider,
    get_db,
    to_http_exception,
)
from scheduler.services.appointments import AppointmentCreate, AppointmentUpdate
from scheduler.services.stores import AppointmentRecord

router = APIRouter(tags=['appointments'])


@router.get('', response_model=list[AppointmentRecord])
async def list_appointments(
    instance_id: str | None = Query(default=None),
    start_date: datetime | None = Query(default=None),
    end_date: datetime | None = Query(default=None),
    appointment_status: str | None = Query(default=None, alias='status'),
    db: Session = Depends(get_db),
    provider: CalendarProvider = Depends(get_calendar_provider),
):
    ensure_database_ready()

    try:
        service = build_appointment_service(db, provider)
        return await service.list_appointments(
            instance_id=instance_id,
            start=start_date,
            end=end_date,
            status=appointment_status,
        )
    except (SchedulingError, SQLAlchemyError) as exc:
        raise to_http_exception(exc) from exc


@router.post('', response_model=AppointmentRecord, status_code=status.HTTP_201_CREATED)
async def create_appointment(
    data: AppointmentCreate,
    db: Session = Depends(get_db),
    provider: CalendarProvider = Depends(get_calendar_provider),
):
    ensure_database_ready()

    try:
        service = build_appointment_service(db, provider)
        return await service.create_appointment(data)
    except (SchedulingError, SQLAlchemyError) as exc:
        raise to_http_exception(exc) from exc


@router.put('/{appointment_id}', response_model=AppointmentRecord)
async def update_appointment(
    appointment_id: str,
    data: AppointmentUpdate,
    db: Session = Depends(get_db),
    provider: CalendarProvider = Depends(get_calendar_provider),
):
    ensure_database_ready()

    try:
        service = build_appointment_service(db, provider)
        return await service.update_appointment(appointment_id, data)
    except (SchedulingError, SQLAlchemyError) as exc:
        raise to_http_exception(exc) from exc


@router.post('/{appointment_id}/cancel', response_model=AppointmentRecord)
async def cancel_appointment(
    appointment_id: str,
    db: Session = Depends(get_db),
    provider: CalendarProvider = Depends(get_calendar_provider),
):
    ensure_database_ready()

    try:
        service = build_appointment_service(db, provider)
        return await service.cancel_appointment(appointment_id)
    except (SchedulingError, SQLAlchemyError) as exc:
        raise to_http_exception(exc) from exc


@router.delete('/{appointment_id}', status_code=status.HTTP_204_NO_CONTENT)
async def delete_appointment(
    appointment_id: str,
    db: Session = Depends(get_db),
    provider: CalendarProvider = Depends(get_calendar_provider),
):
    ensure_database_ready()

    try:
        service = build_appointment_service(db, provider)
        await service.delete_appointment(appointment_id)
    except (SchedulingError, SQLAlchemyError) as exc:
        raise to_http_exception(exc) from exc
