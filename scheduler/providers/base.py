"""Abstract base for calendar providers."""

from abc import ABC, abstractmethod
from datetime import date, datetime

from pydantic import BaseModel, Field


class EventBoundary(BaseModel):
    """Start or end of a provider event: a timed instant or an all-day date."""

    date_time: datetime | None = None
    day: date | None = None
    time_zone: str | None = None

    @property
    def is_all_day(self) -> bool:
        return self.date_time is None and self.day is not None


class ProviderEvent(BaseModel):
    id: str | None = None
    summary: str | None = None
    status: str = 'confirmed'
    transparency: str = 'opaque'
    start: EventBoundary
    end: EventBoundary

    @property
    def is_cancelled(self) -> bool:
        return self.status == 'cancelled'

    @property
    def is_transparent(self) -> bool:
        return self.transparency == 'transparent'


class EventDraft(BaseModel):
    summary: str
    description: str | None = None
    start: datetime
    end: datetime
    time_zone: str
    attendees: list[str] = Field(default_factory=list)


class CalendarProvider(ABC):
    """Calendar backend used for conflict checks and appointment events.

    Implementations raise ``ProviderError`` for any failure.
    """

    @abstractmethod
    async def list_events(self, calendar_id: str, time_min: datetime, time_max: datetime) -> list[ProviderEvent]:
        """Events overlapping ``[time_min, time_max)``; bounds are UTC."""

    @abstractmethod
    async def create_event(self, calendar_id: str, draft: EventDraft) -> str:
        """Create an event and return its provider id."""

    @abstractmethod
    async def update_event(self, calendar_id: str, event_id: str, draft: EventDraft) -> None:
        ...

    @abstractmethod
    async def delete_event(self, calendar_id: str, event_id: str) -> None:
        ...
