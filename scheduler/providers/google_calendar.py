"""
Google Calendar provider
Lists events for conflict checks and writes appointment events through the
Calendar v3 REST API, refreshing the OAuth access token as needed.
"""
import logging
import time
import uuid
from datetime import datetime
from typing import Any
from urllib.parse import quote

import httpx

from scheduler.core import config
from scheduler.core.exceptions import ProviderError
from scheduler.core.timeutils import resolve_timezone, to_utc
from scheduler.providers.base import CalendarProvider, EventBoundary, EventDraft, ProviderEvent

logger = logging.getLogger(__name__)

PAGE_SIZE = 250
TOKEN_EXPIRY_MARGIN_SECONDS = 60


def _rfc3339(value: datetime) -> str:
    return to_utc(value).isoformat().replace('+00:00', 'Z')


def _parse_boundary(payload: dict[str, Any] | None, calendar_time_zone: str | None) -> EventBoundary:
    payload = payload or {}
    return EventBoundary(
        date_time=payload.get('dateTime'),
        day=payload.get('date'),
        time_zone=payload.get('timeZone') or calendar_time_zone,
    )


def parse_event(item: dict[str, Any], calendar_time_zone: str | None = None) -> ProviderEvent:
    return ProviderEvent(
        id=item.get('id'),
        summary=item.get('summary'),
        status=item.get('status') or 'confirmed',
        transparency=item.get('transparency') or 'opaque',
        start=_parse_boundary(item.get('start'), calendar_time_zone),
        end=_parse_boundary(item.get('end'), calendar_time_zone),
    )


class GoogleCalendarClient(CalendarProvider):
    def __init__(
        self,
        client_id: str,
        client_secret: str,
        refresh_token: str,
        api_base: str = config.GOOGLE_CALENDAR_API,
        token_url: str = config.GOOGLE_TOKEN_URL,
        timeout: float = config.PROVIDER_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.refresh_token = refresh_token
        self.api_base = api_base.rstrip('/')
        self.token_url = token_url
        self.timeout = timeout
        self._transport = transport
        self._access_token: str | None = None
        self._token_expires_at = 0.0

    @classmethod
    def from_config(cls) -> 'GoogleCalendarClient':
        return cls(
            client_id=config.GOOGLE_CLIENT_ID,
            client_secret=config.GOOGLE_CLIENT_SECRET,
            refresh_token=config.GOOGLE_REFRESH_TOKEN,
        )

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    async def get_access_token(self) -> str:
        """Return a valid access token, refreshing it when it is about to expire."""
        if self._access_token and time.monotonic() < self._token_expires_at:
            return self._access_token

        logger.info("Refreshing Google Calendar access token")
        try:
            async with self._client() as client:
                response = await client.post(
                    self.token_url,
                    data={
                        "client_id": self.client_id,
                        "client_secret": self.client_secret,
                        "refresh_token": self.refresh_token,
                        "grant_type": "refresh_token",
                    },
                )
        except httpx.HTTPError as exc:
            raise ProviderError(f"Token refresh failed: {exc}") from exc

        if response.status_code != 200:
            raise ProviderError(f"Token refresh failed with status {response.status_code}: {response.text}")

        tokens = response.json()
        access_token = tokens.get("access_token")
        if not access_token:
            raise ProviderError("No access token in refresh response")

        expires_in = int(tokens.get("expires_in", 3600))
        self._access_token = access_token
        self._token_expires_at = time.monotonic() + max(0, expires_in - TOKEN_EXPIRY_MARGIN_SECONDS)
        return access_token

    async def _request(
        self,
        method: str,
        path: str,
        calendar_id: str,
        *,
        window: tuple[datetime, datetime] | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        window_start, window_end = window or (None, None)
        access_token = await self.get_access_token()
        try:
            async with self._client() as client:
                response = await client.request(
                    method,
                    f"{self.api_base}{path}",
                    headers={"Authorization": f"Bearer {access_token}"},
                    **kwargs,
                )
        except httpx.HTTPError as exc:
            raise ProviderError(
                f"{method} {path} failed: {exc}",
                calendar_id=calendar_id,
                window_start=window_start,
                window_end=window_end,
            ) from exc

        if response.status_code >= 400:
            raise ProviderError(
                f"{method} {path} returned {response.status_code}: {response.text}",
                calendar_id=calendar_id,
                window_start=window_start,
                window_end=window_end,
                status_code=response.status_code,
            )
        return response

    async def list_events(self, calendar_id: str, time_min: datetime, time_max: datetime) -> list[ProviderEvent]:
        path = f"/calendars/{quote(calendar_id, safe='')}/events"
        params: dict[str, Any] = {
            "timeMin": _rfc3339(time_min),
            "timeMax": _rfc3339(time_max),
            "singleEvents": "true",
            "orderBy": "startTime",
            "maxResults": PAGE_SIZE,
        }

        events: list[ProviderEvent] = []
        while True:
            response = await self._request("GET", path, calendar_id, window=(time_min, time_max), params=params)
            payload = response.json()
            calendar_time_zone = payload.get("timeZone")
            for item in payload.get("items") or []:
                try:
                    events.append(parse_event(item, calendar_time_zone))
                except ValueError as exc:
                    raise ProviderError(
                        f"Malformed event {item.get('id')!r}: {exc}",
                        calendar_id=calendar_id,
                        window_start=time_min,
                        window_end=time_max,
                    ) from exc

            page_token = payload.get("nextPageToken")
            if not page_token:
                return events
            params = {**params, "pageToken": page_token}

    def _event_body(self, draft: EventDraft) -> dict[str, Any]:
        zone = resolve_timezone(draft.time_zone)
        body: dict[str, Any] = {
            "summary": draft.summary,
            "description": draft.description or "",
            "start": {"dateTime": draft.start.astimezone(zone).isoformat(), "timeZone": draft.time_zone},
            "end": {"dateTime": draft.end.astimezone(zone).isoformat(), "timeZone": draft.time_zone},
        }
        if draft.attendees:
            body["attendees"] = [{"email": email} for email in draft.attendees]
        return body

    async def create_event(self, calendar_id: str, draft: EventDraft) -> str:
        body = self._event_body(draft)
        body.update(
            {
                "conferenceData": {
                    "createRequest": {
                        "requestId": f"meet-{uuid.uuid4().hex}",
                        "conferenceSolutionKey": {"type": "hangoutsMeet"},
                    }
                },
                "guestsCanModify": False,
                "guestsCanInviteOthers": False,
                "guestsCanSeeOtherGuests": True,
            }
        )
        response = await self._request(
            "POST",
            f"/calendars/{quote(calendar_id, safe='')}/events",
            calendar_id,
            window=(draft.start, draft.end),
            params={"conferenceDataVersion": 1, "sendUpdates": "all"},
            json=body,
        )
        event_id = response.json().get("id")
        if not event_id:
            raise ProviderError("Created event has no id", calendar_id=calendar_id)
        logger.info("Google Calendar event created: %s", event_id)
        return event_id

    async def update_event(self, calendar_id: str, event_id: str, draft: EventDraft) -> None:
        await self._request(
            "PATCH",
            f"/calendars/{quote(calendar_id, safe='')}/events/{quote(event_id, safe='')}",
            calendar_id,
            window=(draft.start, draft.end),
            params={"conferenceDataVersion": 1, "sendUpdates": "all"},
            json=self._event_body(draft),
        )
        logger.info("Google Calendar event updated: %s", event_id)

    async def delete_event(self, calendar_id: str, event_id: str) -> None:
        try:
            await self._request(
                "DELETE",
                f"/calendars/{quote(calendar_id, safe='')}/events/{quote(event_id, safe='')}",
                calendar_id,
                params={"sendUpdates": "all"},
            )
        except ProviderError as exc:
            if exc.status_code in (404, 410):
                logger.info("Google Calendar event %s already gone", event_id)
                return
            raise
        logger.info("Google Calendar event deleted: %s", event_id)
