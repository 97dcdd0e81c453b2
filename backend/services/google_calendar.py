"""
Lesson sources: Google Calendar events and locally stored lessons.

Both variants answer the same ``LessonSource`` contract. Transport and
configuration failures are logged and degrade to an empty result or a
skipped write; they never reach the caller.
"""
import logging
from datetime import date, datetime, time, tzinfo
from typing import Any, Protocol
from urllib.parse import quote

import httpx
from pydantic import BaseModel, Field, ValidationError

from backend.auth.google_oauth import GoogleSession
from backend.core import config
from backend.models.lesson import Lesson
from backend.services.storage import EntityStore, find_by_id

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = {'summary', 'description', 'start', 'end', 'confirmed'}


class NormalizationError(ValueError):
    """Raised when a calendar event cannot be turned into a Lesson."""


class CalendarNotConfigured(RuntimeError):
    """Raised before any request when calendar id or session is missing."""


class EventTime(BaseModel):
    date_time: str | None = Field(default=None, alias='dateTime')
    date: str | None = None

    class Config:
        populate_by_name = True


class ExtendedProperties(BaseModel):
    private: dict[str, str] = Field(default_factory=dict)


class RawCalendarEvent(BaseModel):
    id: str = ''
    start: EventTime | None = None
    end: EventTime | None = None
    extended_properties: ExtendedProperties = Field(default_factory=ExtendedProperties, alias='extendedProperties')

    class Config:
        populate_by_name = True


def parse_event_time(value: EventTime | None, tz: tzinfo) -> datetime | None:
    if value is None:
        return None
    if value.date_time:
        parsed = datetime.fromisoformat(value.date_time)
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=tz)
    if value.date:
        return datetime.combine(date.fromisoformat(value.date), time.min, tzinfo=tz)
    return None


def normalize_event(raw: dict[str, Any], tz: tzinfo) -> Lesson:
    """Map a Google Calendar event onto a Lesson.

    Missing metadata defaults to empty ids and an unconfirmed lesson; only
    an unusable time range is an error.
    """
    try:
        event = RawCalendarEvent.model_validate(raw)
        start = parse_event_time(event.start, tz)
        end = parse_event_time(event.end, tz)
    except (ValidationError, ValueError) as exc:
        raise NormalizationError(f'Malformed calendar event {raw.get("id", "")!r}: {exc}') from exc

    if start is None or end is None:
        raise NormalizationError(f'Calendar event {event.id!r} has no start or end')

    props = event.extended_properties.private
    try:
        return Lesson(
            id=event.id,
            student_id=props.get('studentId', ''),
            instructor_id=props.get('instructorId', ''),
            start=start,
            end=end,
            confirmed=props.get('confirmed') == 'true',
        )
    except ValidationError as exc:
        raise NormalizationError(f'Calendar event {event.id!r} has an invalid time range') from exc


def lesson_metadata(lesson: Lesson) -> dict[str, str]:
    return {
        'studentId': lesson.student_id,
        'instructorId': lesson.instructor_id,
        'confirmed': 'true' if lesson.confirmed else 'false',
    }


class GoogleCalendarClient:
    """Thin async wrapper over the Calendar v3 events endpoints."""

    def __init__(
        self,
        http: httpx.AsyncClient,
        session: GoogleSession | None,
        calendar_id: str | None = None,
        api_url: str | None = None,
    ) -> None:
        self.http = http
        self.session = session
        self.calendar_id = config.GOOGLE_CALENDAR_ID if calendar_id is None else calendar_id
        self.api_url = (api_url or config.GOOGLE_CALENDAR_API_URL).rstrip('/')

    def _events_url(self, event_id: str | None = None) -> str:
        if not self.calendar_id:
            raise CalendarNotConfigured('GOOGLE_CALENDAR_ID is not set')
        if self.session is None:
            raise CalendarNotConfigured('No Google session, connect the calendar first')
        url = f'{self.api_url}/calendars/{quote(self.calendar_id, safe="")}/events'
        if event_id is not None:
            url = f'{url}/{quote(event_id, safe="")}'
        return url

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        response = await self.http.request(method, url, headers=self.session.authorization_header, **kwargs)
        response.raise_for_status()
        return response

    async def list_events(self, time_min: datetime, time_max: datetime) -> list[dict]:
        url = self._events_url()
        params = {
            'timeMin': time_min.isoformat(),
            'timeMax': time_max.isoformat(),
            'singleEvents': 'true',
            'orderBy': 'startTime',
        }
        items: list[dict] = []
        while True:
            response = await self._request('GET', url, params=params)
            payload = response.json()
            items.extend(payload.get('items') or [])
            page_token = payload.get('nextPageToken')
            if not page_token:
                return items
            params = {**params, 'pageToken': page_token}

    async def insert_event(self, body: dict) -> dict:
        response = await self._request('POST', self._events_url(), json=body)
        return response.json()

    async def get_event(self, event_id: str) -> dict:
        response = await self._request('GET', self._events_url(event_id))
        return response.json()

    async def patch_event(self, event_id: str, body: dict) -> dict:
        response = await self._request('PATCH', self._events_url(event_id), json=body)
        return response.json()

    async def delete_event(self, event_id: str) -> None:
        await self._request('DELETE', self._events_url(event_id))


class LessonSource(Protocol):
    async def list_range(self, start: datetime, end: datetime) -> list[Lesson]: ...

    async def get_lesson(self, event_id: str) -> Lesson | None: ...

    async def create_from_lesson(self, lesson: Lesson, summary: str, description: str) -> None: ...

    async def update_event(self, event_id: str, fields: dict[str, Any]) -> None: ...

    async def delete_event(self, event_id: str) -> None: ...


def _check_fields(fields: dict[str, Any]) -> None:
    unknown = set(fields) - UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f'Unsupported lesson fields: {", ".join(sorted(unknown))}')


class CalendarLessonSource:
    def __init__(self, client: GoogleCalendarClient, tz: tzinfo) -> None:
        self.client = client
        self.tz = tz

    async def list_range(self, start: datetime, end: datetime) -> list[Lesson]:
        try:
            events = await self.client.list_events(start, end)
        except CalendarNotConfigured as exc:
            logger.warning('Skipping calendar fetch: %s', exc)
            return []
        except httpx.HTTPError as exc:
            logger.warning('Calendar fetch failed: %s', exc)
            return []

        lessons: list[Lesson] = []
        for raw in events:
            try:
                lessons.append(normalize_event(raw, self.tz))
            except NormalizationError as exc:
                logger.warning('Skipping calendar event: %s', exc)
        return lessons

    async def get_lesson(self, event_id: str) -> Lesson | None:
        try:
            return normalize_event(await self.client.get_event(event_id), self.tz)
        except CalendarNotConfigured as exc:
            logger.warning('Skipping calendar lookup: %s', exc)
        except httpx.HTTPError as exc:
            logger.warning('Calendar lookup of %s failed: %s', event_id, exc)
        except NormalizationError as exc:
            logger.warning('Calendar event %s is not a lesson: %s', event_id, exc)
        return None

    async def create_from_lesson(self, lesson: Lesson, summary: str, description: str) -> None:
        body = {
            'summary': summary,
            'description': description,
            'start': {'dateTime': lesson.start.isoformat()},
            'end': {'dateTime': lesson.end.isoformat()},
            'extendedProperties': {'private': lesson_metadata(lesson)},
        }
        try:
            await self.client.insert_event(body)
        except CalendarNotConfigured as exc:
            logger.warning('Skipping calendar insert: %s', exc)
        except httpx.HTTPError as exc:
            logger.warning('Calendar insert failed: %s', exc)

    async def update_event(self, event_id: str, fields: dict[str, Any]) -> None:
        _check_fields(fields)
        body: dict[str, Any] = {}
        for key in ('summary', 'description'):
            if key in fields:
                body[key] = fields[key]
        for key in ('start', 'end'):
            if key in fields:
                body[key] = {'dateTime': fields[key].isoformat()}

        try:
            if 'confirmed' in fields:
                existing = await self.client.get_event(event_id)
                previous = RawCalendarEvent.model_validate(existing).extended_properties.private
                body['extendedProperties'] = {
                    'private': {**previous, 'confirmed': 'true' if fields['confirmed'] else 'false'},
                }
            await self.client.patch_event(event_id, body)
        except CalendarNotConfigured as exc:
            logger.warning('Skipping calendar update: %s', exc)
        except (httpx.HTTPError, ValidationError) as exc:
            logger.warning('Calendar update of %s failed: %s', event_id, exc)

    async def delete_event(self, event_id: str) -> None:
        try:
            await self.client.delete_event(event_id)
        except CalendarNotConfigured as exc:
            logger.warning('Skipping calendar delete: %s', exc)
        except httpx.HTTPError as exc:
            logger.warning('Calendar delete of %s failed: %s', event_id, exc)


class LocalLessonSource:
    """Lessons kept in the entity store, for installations without calendar sync."""

    def __init__(self, store: EntityStore) -> None:
        self.store = store

    async def list_range(self, start: datetime, end: datetime) -> list[Lesson]:
        return [lesson for lesson in self.store.get_lessons() if lesson.start < end and lesson.end > start]

    async def get_lesson(self, event_id: str) -> Lesson | None:
        return find_by_id(self.store.get_lessons(), event_id)

    async def create_from_lesson(self, lesson: Lesson, summary: str, description: str) -> None:
        del summary, description
        lessons = self.store.get_lessons()
        lessons.append(lesson)
        self.store.save_lessons(lessons)

    async def update_event(self, event_id: str, fields: dict[str, Any]) -> None:
        _check_fields(fields)
        changes = {key: fields[key] for key in ('start', 'end', 'confirmed') if key in fields}
        lessons = self.store.get_lessons()
        updated = [
            Lesson.model_validate({**lesson.model_dump(), **changes}) if lesson.id == event_id else lesson
            for lesson in lessons
        ]
        self.store.save_lessons(updated)

    async def delete_event(self, event_id: str) -> None:
        lessons = self.store.get_lessons()
        self.store.save_lessons([lesson for lesson in lessons if lesson.id != event_id])
