from datetime import datetime, timedelta, timezone

import jwt

from backend.core import config


def create_session_token(tokens: dict, expires_days: int | None = None) -> str:
    expire_days = expires_days or config.SESSION_MAX_AGE_DAYS
    expire = datetime.now(timezone.utc) + timedelta(days=expire_days)
    payload = {"google": tokens, "exp": expire, "iat": datetime.now(timezone.utc)}
    return jwt.encode(payload, config.SESSION_SECRET_KEY, algorithm=config.SESSION_ALGORITHM)


def decode_session_token(token: str) -> dict:
    payload = jwt.decode(token, config.SESSION_SECRET_KEY, algorithms=[config.SESSION_ALGORITHM])
    return payload.get("google") or {}
