"""
Twilio notification service
Sends lesson confirmations by SMS or WhatsApp
"""
import logging
from datetime import tzinfo

import httpx

from backend.core import config
from backend.models.instructor import Instructor
from backend.models.lesson import Lesson
from backend.models.settings import AppSettings
from backend.models.student import Student

logger = logging.getLogger(__name__)

WHATSAPP_PREFIX = 'whatsapp:'


def build_confirmation_message(lesson: Lesson, student: Student, instructor: Instructor, tz: tzinfo) -> str:
    local_start = lesson.start.astimezone(tz)
    return (
        f'Hello {student.first_name}, your next lesson is on {local_start:%d/%m/%Y} '
        f'at {local_start:%H:%M} with {instructor.first_name} {instructor.last_name}.'
    )


def resolve_credentials(settings: AppSettings) -> tuple[str, str, str]:
    """Stored settings first, environment as a fallback."""
    return (
        settings.twilio_account_sid or config.TWILIO_ACCOUNT_SID,
        settings.twilio_auth_token or config.TWILIO_AUTH_TOKEN,
        settings.twilio_phone_number or config.TWILIO_PHONE_NUMBER,
    )


def address_for(number: str, settings: AppSettings) -> str:
    prefix = WHATSAPP_PREFIX if settings.notification_method == 'WHATSAPP' else ''
    return f'{prefix}{number}'


class NotificationService:
    def __init__(self, http: httpx.AsyncClient, tz: tzinfo, api_url: str | None = None) -> None:
        self.http = http
        self.tz = tz
        self.api_url = (api_url or config.TWILIO_API_URL).rstrip('/')

    async def send_confirmation(
        self,
        lesson: Lesson,
        student: Student,
        instructor: Instructor,
        settings: AppSettings,
    ) -> bool:
        account_sid, auth_token, phone_number = resolve_credentials(settings)
        if not account_sid or not auth_token or not phone_number:
            logger.warning('Twilio credentials missing, confirmation for lesson %s not sent', lesson.id)
            return False

        if not student.phone:
            logger.warning('Student %s has no phone number, confirmation not sent', student.id)
            return False

        data = {
            'To': address_for(student.phone, settings),
            'From': address_for(phone_number, settings),
            'Body': build_confirmation_message(lesson, student, instructor, self.tz),
        }

        try:
            response = await self.http.post(
                f'{self.api_url}/Accounts/{account_sid}/Messages.json',
                auth=(account_sid, auth_token),
                data=data,
            )
        except httpx.HTTPError as exc:
            logger.error('Twilio request failed: %s', exc)
            return False

        if response.status_code not in (200, 201):
            logger.error('Twilio API error %s: %s', response.status_code, response.text)
            return False

        logger.info('Confirmation sent for lesson %s via %s', lesson.id, settings.notification_method)
        return True
