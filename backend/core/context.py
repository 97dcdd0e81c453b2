from dataclasses import dataclass, field
from datetime import tzinfo
from zoneinfo import ZoneInfo

import httpx

from backend.auth.google_oauth import GoogleSession
from backend.core import config
from backend.services.google_calendar import CalendarLessonSource, GoogleCalendarClient, LessonSource, LocalLessonSource
from backend.services.layout import GridSpec
from backend.services.notification import NotificationService
from backend.services.storage import EntityStore


@dataclass
class AppContext:
    """Everything a request needs, built once per process at startup."""

    store: EntityStore
    http: httpx.AsyncClient
    tz: tzinfo = field(default_factory=lambda: ZoneInfo(config.APP_TIMEZONE))
    calendar_sync: bool = config.CALENDAR_SYNC_ENABLED
    grid: GridSpec = field(default_factory=GridSpec)

    @property
    def notifier(self) -> NotificationService:
        return NotificationService(self.http, self.tz)

    def lesson_source(self, session: GoogleSession | None) -> LessonSource:
        if not self.calendar_sync:
            return LocalLessonSource(self.store)
        return CalendarLessonSource(GoogleCalendarClient(self.http, session), self.tz)

    async def aclose(self) -> None:
        await self.http.aclose()


def build_http_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=config.HTTP_TIMEOUT_SECONDS)
