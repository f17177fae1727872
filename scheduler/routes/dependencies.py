from fastapi import HTTPException, Request, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from scheduler.core.exceptions import (
    InvalidRequestError,
    NotFoundError,
    ProviderError,
    SchedulingError,
    SlotUnavailableError,
)
from scheduler.database import SessionLocal, ensure_scheduling_schema
from scheduler.providers.base import CalendarProvider
from scheduler.services.appointments import AppointmentService
from scheduler.services.availability import AvailabilityService
from scheduler.services.conflict_checker import ConflictChecker
from scheduler.services.stores import SqlAlchemyStore
from scheduler.services.suggestions import SuggestionService

DATABASE_UNAVAILABLE_DETAIL = 'Database unavailable. Verify DATABASE_URL and database credentials.'


def ensure_database_ready() -> None:
    try:
        ensure_scheduling_schema()
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_calendar_provider(request: Request) -> CalendarProvider:
    provider = getattr(request.app.state, 'calendar_provider', None)
    if provider is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail='Calendar provider is not configured.',
        )
    return provider


def build_availability_service(db: Session, provider: CalendarProvider) -> AvailabilityService:
    return AvailabilityService(SqlAlchemyStore(db), ConflictChecker(provider))


def build_suggestion_service(db: Session, provider: CalendarProvider) -> SuggestionService:
    return SuggestionService(SqlAlchemyStore(db), ConflictChecker(provider))


def build_appointment_service(db: Session, provider: CalendarProvider) -> AppointmentService:
    store = SqlAlchemyStore(db)
    return AppointmentService(store, provider, AvailabilityService(store, ConflictChecker(provider)))


def to_http_exception(exc: SchedulingError | SQLAlchemyError) -> HTTPException:
    if isinstance(exc, SlotUnavailableError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=exc.reason)
    if isinstance(exc, InvalidRequestError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, ProviderError):
        return HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f'Calendar provider unavailable: {exc}',
        )
    if isinstance(exc, SQLAlchemyError):
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        )
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
