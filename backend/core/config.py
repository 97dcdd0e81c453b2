import os

from dotenv import load_dotenv


load_dotenv()


def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_list(value: str | None, default: list[str]) -> list[str]:
    if not value:
        return default
    return [item.strip() for item in value.split(",") if item.strip()]

APP_ENV = os.getenv("APP_ENV", "development")

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./autoplanning.db")
APP_TIMEZONE = os.getenv("APP_TIMEZONE", "Europe/Paris")
CORS_ORIGINS = _get_list(os.getenv("CORS_ORIGINS"), ["http://localhost:3000", "http://localhost:5173"])

CALENDAR_SYNC_ENABLED = _get_bool(os.getenv("CALENDAR_SYNC_ENABLED"), default=True)
HTTP_TIMEOUT_SECONDS = float(os.getenv("HTTP_TIMEOUT_SECONDS", "10"))

GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID", "")
GOOGLE_CLIENT_SECRET = os.getenv("GOOGLE_CLIENT_SECRET", "")
GOOGLE_REDIRECT_URI = os.getenv("GOOGLE_REDIRECT_URI", "http://localhost:8000/auth/google/callback")
GOOGLE_CALENDAR_ID = os.getenv("GOOGLE_CALENDAR_ID", "")
GOOGLE_CALENDAR_API_URL = os.getenv("GOOGLE_CALENDAR_API_URL", "https://www.googleapis.com/calendar/v3")
GOOGLE_AUTH_URL = os.getenv("GOOGLE_AUTH_URL", "https://accounts.google.com/o/oauth2/v2/auth")
GOOGLE_TOKEN_URL = os.getenv("GOOGLE_TOKEN_URL", "https://oauth2.googleapis.com/token")
GOOGLE_CALENDAR_SCOPE = "https://www.googleapis.com/auth/calendar"

SESSION_SECRET_KEY = os.getenv("SESSION_SECRET_KEY", "change-me")
SESSION_ALGORITHM = os.getenv("SESSION_ALGORITHM", "HS256")
SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "google_tokens")
SESSION_MAX_AGE_DAYS = int(os.getenv("SESSION_MAX_AGE_DAYS", "365"))

FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")

TWILIO_ACCOUNT_SID = os.getenv("TWILIO_ACCOUNT_SID", "")
TWILIO_AUTH_TOKEN = os.getenv("TWILIO_AUTH_TOKEN", "")
TWILIO_PHONE_NUMBER = os.getenv("TWILIO_PHONE_NUMBER", "")
TWILIO_API_URL = os.getenv("TWILIO_API_URL", "https://api.twilio.com/2010-04-01")


def google_oauth_configured() -> bool:
    return bool(GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET)


def twilio_configured() -> bool:
    return bool(TWILIO_ACCOUNT_SID and TWILIO_AUTH_TOKEN)


def validate_runtime_config() -> None:
    if APP_ENV.lower() == "production" and SESSION_SECRET_KEY == "change-me":
        raise RuntimeError("SESSION_SECRET_KEY must be set in production.")
