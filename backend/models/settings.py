"""Application settings model definitions."""

from typing import Literal

from backend.models.camel import CamelModel

NotificationMethod = Literal['SMS', 'WHATSAPP']


class AppSettings(CamelModel):
    """Notification provider credentials, one record per installation."""

    twilio_account_sid: str = ''
    twilio_auth_token: str = ''
    twilio_phone_number: str = ''
    notification_method: NotificationMethod = 'SMS'
