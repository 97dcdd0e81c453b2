"""Google OAuth code flow for calendar access.

Tokens never live in process memory between requests: they travel in a
signed session cookie and are decoded into a ``GoogleSession`` per request.
"""
import logging
import time
from dataclasses import asdict, dataclass
from urllib.parse import urlencode

import httpx

from backend.core import config

logger = logging.getLogger(__name__)

EXPIRY_MARGIN_SECONDS = 300


@dataclass
class GoogleSession:
    access_token: str
    refresh_token: str = ''
    expires_at: float = 0.0
    token_type: str = 'Bearer'

    @classmethod
    def from_token_response(cls, payload: dict, previous: 'GoogleSession | None' = None) -> 'GoogleSession':
        expires_in = float(payload.get('expires_in', 3600))
        refresh_token = payload.get('refresh_token') or (previous.refresh_token if previous else '')
        return cls(
            access_token=payload['access_token'],
            refresh_token=refresh_token,
            expires_at=time.time() + expires_in,
            token_type=payload.get('token_type', 'Bearer'),
        )

    @classmethod
    def from_dict(cls, data: dict) -> 'GoogleSession | None':
        if not data.get('access_token'):
            return None
        return cls(
            access_token=data['access_token'],
            refresh_token=data.get('refresh_token', ''),
            expires_at=float(data.get('expires_at', 0)),
            token_type=data.get('token_type', 'Bearer'),
        )

    def to_dict(self) -> dict:
        return asdict(self)

    def is_expired(self, now: float | None = None) -> bool:
        current = time.time() if now is None else now
        return self.expires_at <= current + EXPIRY_MARGIN_SECONDS

    @property
    def authorization_header(self) -> dict[str, str]:
        return {'Authorization': f'Bearer {self.access_token}'}


def build_authorization_url(state: str | None = None) -> str:
    params = {
        'client_id': config.GOOGLE_CLIENT_ID,
        'redirect_uri': config.GOOGLE_REDIRECT_URI,
        'response_type': 'code',
        'scope': config.GOOGLE_CALENDAR_SCOPE,
        'access_type': 'offline',
        'prompt': 'consent',
    }
    if state:
        params['state'] = state
    return f'{config.GOOGLE_AUTH_URL}?{urlencode(params)}'


async def exchange_code(http: httpx.AsyncClient, code: str) -> GoogleSession | None:
    try:
        response = await http.post(
            config.GOOGLE_TOKEN_URL,
            data={
                'code': code,
                'client_id': config.GOOGLE_CLIENT_ID,
                'client_secret': config.GOOGLE_CLIENT_SECRET,
                'redirect_uri': config.GOOGLE_REDIRECT_URI,
                'grant_type': 'authorization_code',
            },
        )
    except httpx.HTTPError as exc:
        logger.warning('Google token exchange failed: %s', exc)
        return None

    if response.status_code != 200:
        logger.warning('Google token exchange rejected: %s %s', response.status_code, response.text)
        return None

    payload = response.json()
    if not payload.get('access_token'):
        logger.warning('Google token exchange returned no access token')
        return None
    return GoogleSession.from_token_response(payload)


async def refresh_session(http: httpx.AsyncClient, session: GoogleSession) -> GoogleSession | None:
    if not session.refresh_token:
        return None

    try:
        response = await http.post(
            config.GOOGLE_TOKEN_URL,
            data={
                'client_id': config.GOOGLE_CLIENT_ID,
                'client_secret': config.GOOGLE_CLIENT_SECRET,
                'refresh_token': session.refresh_token,
                'grant_type': 'refresh_token',
            },
        )
    except httpx.HTTPError as exc:
        logger.warning('Google token refresh failed: %s', exc)
        return None

    if response.status_code != 200:
        logger.warning('Google token refresh rejected: %s %s', response.status_code, response.text)
        return None

    payload = response.json()
    if not payload.get('access_token'):
        return None
    return GoogleSession.from_token_response(payload, previous=session)
