"""Error types shared by the scheduling services."""

from datetime import datetime


class SchedulingError(Exception):
    """Base class for scheduling failures."""


class InvalidRequestError(SchedulingError, ValueError):
    """Malformed input rejected before any lookup."""


class NotFoundError(SchedulingError):
    """A referenced record is missing or inactive."""


class ServiceNotFoundError(NotFoundError):
    def __init__(self, service_id: str):
        super().__init__('Service not found')
        self.service_id = service_id


class CalendarNotFoundError(NotFoundError):
    def __init__(self, calendar_id: str | None = None):
        super().__init__('Calendar not found or inactive')
        self.calendar_id = calendar_id


class NoActiveCalendarsFoundError(NotFoundError):
    def __init__(self, calendar_ids: list[str] | None = None):
        super().__init__('No active calendars found')
        self.calendar_ids = list(calendar_ids or [])


class InstanceNotFoundError(NotFoundError):
    def __init__(self, instance_id: str):
        super().__init__('Instance not found')
        self.instance_id = instance_id


class AppointmentNotFoundError(NotFoundError):
    def __init__(self, appointment_id: str):
        super().__init__('Appointment not found')
        self.appointment_id = appointment_id


class ProviderError(SchedulingError):
    """The calendar provider could not answer.

    Callers treat the affected calendar as unavailable.
    """

    def __init__(
        self,
        message: str,
        calendar_id: str | None = None,
        window_start: datetime | None = None,
        window_end: datetime | None = None,
        status_code: int | None = None,
    ):
        super().__init__(message)
        self.calendar_id = calendar_id
        self.window_start = window_start
        self.window_end = window_end
        self.status_code = status_code


class SlotUnavailableError(SchedulingError):
    def __init__(self, reason: str, verdict=None):
        super().__init__(reason)
        self.reason = reason
        self.verdict = verdict
