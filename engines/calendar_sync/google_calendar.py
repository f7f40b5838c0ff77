"""Google Calendar client."""

import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx

from config.constants import (
    DEFAULT_EVENT_DURATION_MINUTES,
    FALLBACK_COLOR_ID,
    PRIORITY_COLOR_IDS,
    PRIVATE_APP_ID_KEY,
    PRIVATE_PRIORITY_KEY,
    UNTITLED_EVENT_TITLE,
)
from core.schedule.exceptions import RemoteError
from core.schedule.models import Priority, ScheduleRecord
from engines.calendar_sync.base import RemoteCalendarClient, RemoteEventView
from utils.http_client import AsyncRetryableHttpClient
from utils.time_utils import (
    combine_local,
    current_iso_timestamp,
    parse_iso_datetime,
    resolve_timezone,
    split_local,
)


logger = logging.getLogger('schedulesync.calendar_sync.google')

PROVIDER_NAME = 'google'

# Google caps maxResults per page at 2500
MAX_PAGE_SIZE = 2500


def build_event_payload(
    record: ScheduleRecord,
    tz=None,
    time_zone_name: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Convert a schedule record to a Google Calendar event body.

    Args:
        record: Local record
        tz: tzinfo used to interpret the local date/time; process-local if None
        time_zone_name: IANA name sent as ``timeZone`` when known

    Returns:
        Google event format
    """
    start_dt = combine_local(record.date, record.time, tz)
    end_dt = start_dt + timedelta(minutes=DEFAULT_EVENT_DURATION_MINUTES)

    def _format_google_datetime(dt_value):
        payload = {'dateTime': dt_value.isoformat()}
        if time_zone_name:
            payload['timeZone'] = time_zone_name
        return payload

    priority = record.priority.value
    return {
        'summary': record.title,
        'description': record.description or '',
        'start': _format_google_datetime(start_dt),
        'end': _format_google_datetime(end_dt),
        'colorId': PRIORITY_COLOR_IDS.get(priority, FALLBACK_COLOR_ID),
        'extendedProperties': {
            'private': {
                PRIVATE_PRIORITY_KEY: priority,
                PRIVATE_APP_ID_KEY: record.id,
            }
        },
    }


def parse_event_item(item: Dict[str, Any], tz=None) -> Optional[RemoteEventView]:
    """
    Convert a Google Calendar event to a RemoteEventView.

    Returns None for cancelled or unparseable events.
    """
    remote_id = item.get('id')
    if not remote_id:
        return None

    status_value = item.get('status')
    if isinstance(status_value, str) and status_value.lower() == 'cancelled':
        return None

    start = item.get('start') or {}
    try:
        if start.get('dateTime'):
            date_value, time_value = split_local(parse_iso_datetime(start['dateTime']), tz)
        elif start.get('date'):
            # all-day events start at midnight locally
            date_value, time_value = start['date'], '00:00'
        else:
            return None
    except ValueError as e:
        logger.warning("Skipping Google event %s with bad start: %s", remote_id, e)
        return None

    private = (item.get('extendedProperties') or {}).get('private') or {}
    title = (item.get('summary') or '').strip() or UNTITLED_EVENT_TITLE

    return RemoteEventView(
        remote_id=remote_id,
        title=title,
        date=date_value,
        time=time_value,
        description=item.get('description') or '',
        priority=Priority.parse(private.get(PRIVATE_PRIORITY_KEY)),
        app_id=private.get(PRIVATE_APP_ID_KEY) or None,
        created_at=item.get('created'),
    )


class GoogleCalendarClient(RemoteCalendarClient):
    """
    Google Calendar client writing to a dedicated calendar.

    Authentication is token based: the access token comes from ``sign_in``
    or the token store. The OAuth consent flow itself happens elsewhere.
    """

    API_BASE_URL = "https://www.googleapis.com/calendar/v3"

    def __init__(
        self,
        token_store=None,
        calendar_name: str = "Schedule App Calendar",
        calendar_description: str = "",
        calendar_color: Optional[str] = None,
        time_zone: Optional[str] = None,
        max_results: int = 1000,
        http_client: Optional[AsyncRetryableHttpClient] = None,
        http_client_config: Optional[Dict[str, Any]] = None,
    ):
        """
        Args:
            token_store: Optional TokenStore used to persist the access token
            calendar_name: Summary of the dedicated calendar
            calendar_description: Description used when creating it
            calendar_color: Hex background color applied on creation
            time_zone: IANA zone override; process-local zone when None
            max_results: Upper bound on events returned by list_events
            http_client: Injected HTTP client (tests)
            http_client_config: Arguments for a new AsyncRetryableHttpClient
        """
        if http_client and http_client_config:
            raise ValueError("Provide either http_client or http_client_config, not both")

        super().__init__(logger=logger)

        self.token_store = token_store
        self.calendar_name = calendar_name
        self.calendar_description = calendar_description
        self.calendar_color = calendar_color
        self.time_zone = time_zone
        self.max_results = max_results
        self.calendar_id: Optional[str] = None
        self._access_token: Optional[str] = None
        self._tz = resolve_timezone(time_zone) if time_zone else None

        self._owns_http_client = http_client is None
        self.http_client = http_client or AsyncRetryableHttpClient(**(http_client_config or {}))

        self.logger.info("GoogleCalendarClient initialized")

    def get_name(self) -> str:
        return PROVIDER_NAME

    async def close(self) -> None:
        """Close the underlying HTTP client if this instance owns it."""
        if self._owns_http_client:
            await self.http_client.close()

    async def sign_in(
        self, access_token: Optional[str] = None, expires_in: Optional[int] = None
    ) -> bool:
        """
        Connect using ``access_token`` or the stored token.

        Returns:
            False when no token is available

        Raises:
            RemoteError: If the dedicated calendar cannot be resolved
        """
        token = access_token
        if not token and self.token_store is not None:
            token = self.token_store.get_access_token(PROVIDER_NAME)

        if not token:
            self.logger.warning("No Google access token available; staying offline")
            return False

        self._access_token = token
        try:
            self.calendar_id = await self._ensure_calendar()
        except RemoteError as e:
            self._access_token = None
            self.calendar_id = None
            if e.status_code == 401 and self.token_store is not None:
                self.token_store.delete_token(PROVIDER_NAME)
            self.logger.error("Google sign-in failed: %s", e)
            raise

        if access_token and self.token_store is not None:
            self.token_store.store_token(PROVIDER_NAME, access_token, expires_in=expires_in)

        self._set_connected(True)
        return True

    async def sign_out(self) -> None:
        self._access_token = None
        self.calendar_id = None
        if self.token_store is not None:
            self.token_store.delete_token(PROVIDER_NAME)
        self._set_connected(False)

    async def create_event(self, record: ScheduleRecord) -> str:
        data = await self._request_json('POST', self._events_path(), json=self._payload(record))
        remote_id = data.get('id')
        if not remote_id:
            raise RemoteError("Google Calendar response is missing the event id")

        self.logger.info("Created Google event %s for schedule %s", remote_id, record.id)
        return remote_id

    async def update_event(self, remote_id: str, record: ScheduleRecord) -> str:
        if not remote_id:
            raise ValueError("Missing remote event identifier")

        data = await self._request_json(
            'PUT', self._events_path(remote_id), json=self._payload(record)
        )
        self.logger.info("Updated Google event %s", remote_id)
        return data.get('id') or remote_id

    async def delete_event(self, remote_id: str) -> None:
        if not remote_id:
            raise ValueError("Missing remote event identifier")

        try:
            await self._request('DELETE', self._events_path(remote_id))
        except RemoteError as e:
            if e.is_not_found:
                self.logger.warning("Google event %s already removed", remote_id)
                return
            raise
        self.logger.info("Deleted Google event %s", remote_id)

    async def list_events(self) -> List[RemoteEventView]:
        events: List[RemoteEventView] = []
        page_token = None

        while True:
            params = {
                'timeMin': current_iso_timestamp(),
                'singleEvents': 'true',
                'orderBy': 'startTime',
                'showDeleted': 'false',
                'maxResults': min(self.max_results, MAX_PAGE_SIZE),
            }
            if page_token:
                params['pageToken'] = page_token

            data = await self._request_json('GET', self._events_path(), params=params)

            for item in data.get('items', []):
                view = parse_event_item(item, self._tz)
                if view is not None:
                    events.append(view)

            page_token = data.get('nextPageToken')
            if not page_token or len(events) >= self.max_results:
                break

        self.logger.info("Fetched %s events from Google", len(events))
        return events[:self.max_results]

    def _payload(self, record: ScheduleRecord) -> Dict[str, Any]:
        return build_event_payload(record, self._tz, self._time_zone_name())

    def _time_zone_name(self) -> Optional[str]:
        if self.time_zone:
            return getattr(self._tz, 'key', None)
        return None

    def _events_path(self, remote_id: Optional[str] = None) -> str:
        if not self.calendar_id:
            raise RemoteError("Google calendar is not selected; sign in first")

        path = f"/calendars/{quote(self.calendar_id, safe='')}/events"
        if remote_id:
            path = f"{path}/{quote(remote_id, safe='')}"
        return path

    async def _ensure_calendar(self) -> str:
        """Return the id of the dedicated calendar, creating it if needed."""
        page_token = None
        while True:
            params = {'pageToken': page_token} if page_token else None
            data = await self._request_json('GET', '/users/me/calendarList', params=params)

            for entry in data.get('items', []):
                if entry.get('summary') == self.calendar_name and entry.get('id'):
                    self.logger.info("Using existing calendar '%s'", self.calendar_name)
                    return entry['id']

            page_token = data.get('nextPageToken')
            if not page_token:
                break

        body = {
            'summary': self.calendar_name,
            'description': self.calendar_description,
        }
        time_zone_name = self._time_zone_name()
        if time_zone_name:
            body['timeZone'] = time_zone_name

        calendar = await self._request_json('POST', '/calendars', json=body)
        calendar_id = calendar.get('id')
        if not calendar_id:
            raise RemoteError("Google Calendar response is missing the calendar id")

        self.logger.info("Created calendar '%s'", self.calendar_name)

        if self.calendar_color:
            try:
                await self._request(
                    'PATCH',
                    f"/users/me/calendarList/{quote(calendar_id, safe='')}",
                    params={'colorRgbFormat': 'true'},
                    json={
                        'backgroundColor': self.calendar_color,
                        'foregroundColor': '#ffffff',
                    },
                )
            except RemoteError as e:
                # the calendar is usable without its color
                self.logger.warning("Could not set calendar color: %s", e)

        return calendar_id

    async def _request_json(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        response = await self._request(method, path, **kwargs)
        try:
            data = response.json()
        except ValueError as e:
            raise RemoteError(
                f"Google Calendar {method} {path} returned a non-JSON body"
            ) from e

        if not isinstance(data, dict):
            raise RemoteError(
                f"Google Calendar {method} {path} returned {type(data).__name__}, "
                f"expected an object"
            )
        return data

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        if not self._access_token:
            raise RemoteError("Not signed in to Google Calendar")

        headers = {'Authorization': f'Bearer {self._access_token}'}
        try:
            return await self.http_client.request(
                method, f"{self.API_BASE_URL}{path}", headers=headers, **kwargs
            )
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            if status == 401:
                self._access_token = None
                self._set_connected(False)
            raise RemoteError(
                f"Google Calendar {method} {path} failed with HTTP {status}",
                status_code=status,
            ) from e
        except httpx.HTTPError as e:
            raise RemoteError(
                f"Google Calendar {method} {path} failed: {type(e).__name__}"
            ) from e
