from fastapi import APIRouter, Depends
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from scheduler.core import config
from scheduler.core.business_hours import AvailabilitySlot
from scheduler.core.exceptions import SchedulingError
from scheduler.providers.base import CalendarProvider
from scheduler.routes.dependencies import (
    build_availability_service,
    build_suggestion_service,
    ensure_database_ready,
    get_calendar_provider,
    get_db,
    to_http_exception,
)
from scheduler.services.availability import AvailabilityVerdict, MultiCalendarVerdict
from scheduler.services.strategies import EARLIEST, PriorityConfig, TimeBlocksConfig

router = APIRouter(tags=['availability'])


def _normalize_id(value: str) -> str:
    normalized = value.strip()
    if not normalized:
        raise ValueError('Identifiers cannot be blank.')
    return normalized


def _normalize_ids(values: list[str]) -> list[str]:
    if not values:
        raise ValueError('At least one calendar is required.')
    return [_normalize_id(value) for value in values]


class CheckAvailabilityRequest(BaseModel):
    start_datetime: str
    service_id: str
    calendar_id: str

    @field_validator('service_id', 'calendar_id')
    @classmethod
    def validate_ids(cls, value: str) -> str:
        return _normalize_id(value)


class CheckCalendarsRequest(BaseModel):
    start_datetime: str
    service_id: str
    calendar_ids: list[str]

    @field_validator('service_id')
    @classmethod
    def validate_service_id(cls, value: str) -> str:
        return _normalize_id(value)

    @field_validator('calendar_ids')
    @classmethod
    def validate_calendar_ids(cls, value: list[str]) -> list[str]:
        return _normalize_ids(value)


class SuggestAvailabilityRequest(BaseModel):
    start_datetime: str
    end_datetime: str
    service_id: str
    calendar_ids: list[str]
    max_results: int = config.DEFAULT_MAX_RESULTS
    expand_timeframe: bool = False
    interval_minutes: int = config.DEFAULT_INTERVAL_MINUTES
    strategy: str = EARLIEST
    priority_config: PriorityConfig = PriorityConfig()
    time_blocks_config: TimeBlocksConfig | None = None

    @field_validator('service_id')
    @classmethod
    def validate_service_id(cls, value: str) -> str:
        return _normalize_id(value)

    @field_validator('calendar_ids')
    @classmethod
    def validate_calendar_ids(cls, value: list[str]) -> list[str]:
        return _normalize_ids(value)

    @field_validator('max_results', 'interval_minutes')
    @classmethod
    def validate_positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError('Value must be positive.')
        return value

    @field_validator('strategy')
    @classmethod
    def normalize_strategy(cls, value: str) -> str:
        return value.strip().lower()


@router.post('/check', response_model=AvailabilityVerdict)
async def check_availability(
    data: CheckAvailabilityRequest,
    db: Session = Depends(get_db),
    provider: CalendarProvider = Depends(get_calendar_provider),
):
    ensure_database_ready()

    service = build_availability_service(db, provider)
    return await service.check_availability(data.start_datetime, data.service_id, data.calendar_id)


@router.post('/check-calendars', response_model=MultiCalendarVerdict)
async def check_calendars_availability(
    data: CheckCalendarsRequest,
    db: Session = Depends(get_db),
    provider: CalendarProvider = Depends(get_calendar_provider),
):
    ensure_database_ready()

    try:
        service = build_availability_service(db, provider)
        return await service.check_calendars_availability(data.start_datetime, data.service_id, data.calendar_ids)
    except (SchedulingError, SQLAlchemyError) as exc:
        raise to_http_exception(exc) from exc


@router.post('/suggest', response_model=list[AvailabilitySlot])
async def suggest_availability(
    data: SuggestAvailabilityRequest,
    db: Session = Depends(get_db),
    provider: CalendarProvider = Depends(get_calendar_provider),
):
    ensure_database_ready()

    try:
        service = build_suggestion_service(db, provider)
        return await service.suggest_availability(
            data.start_datetime,
            data.end_datetime,
            data.service_id,
            data.calendar_ids,
            max_results=data.max_results,
            expand_timeframe=data.expand_timeframe,
            interval_minutes=data.interval_minutes,
            strategy=data.strategy,
            priority_config=data.priority_config,
            time_blocks_config=data.time_blocks_config,
        )
    except (SchedulingError, SQLAlchemyError) as exc:
        raise to_http_exception(exc) from exc
