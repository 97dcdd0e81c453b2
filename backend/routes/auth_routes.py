import secrets
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import RedirectResponse

from backend.auth import google_oauth
from backend.auth.dependencies import get_context, read_session_cookie, set_session_cookie
from backend.core import config
from backend.core.context import AppContext

router = APIRouter(tags=['auth'])

STATE_COOKIE_NAME = 'google_oauth_state'


@router.get('/google')
def google_login():
    if not config.google_oauth_configured():
        raise HTTPException(status_code=500, detail='Google OAuth is not configured.')

    state = secrets.token_urlsafe(16)
    response = RedirectResponse(url=google_oauth.build_authorization_url(state))
    response.set_cookie(STATE_COOKIE_NAME, state, max_age=600, httponly=True, samesite='lax')
    return response


@router.get('/google/callback')
async def google_callback(
    request: Request,
    code: str | None = Query(default=None),
    state: str | None = Query(default=None),
    error: str | None = Query(default=None),
    context: AppContext = Depends(get_context),
):
    if error:
        return RedirectResponse(url=f'{config.FRONTEND_URL}?{urlencode({"google": "error", "reason": error})}')
    if not code:
        raise HTTPException(status_code=400, detail='Missing authorization code.')

    expected_state = request.cookies.get(STATE_COOKIE_NAME)
    if expected_state and state != expected_state:
        raise HTTPException(status_code=400, detail='OAuth state mismatch.')

    session = await google_oauth.exchange_code(context.http, code)
    if session is None:
        raise HTTPException(status_code=502, detail='Google token exchange failed.')

    response = RedirectResponse(url=f'{config.FRONTEND_URL}?google=connected')
    set_session_cookie(response, session)
    response.delete_cookie(STATE_COOKIE_NAME)
    return response


@router.get('/google/status')
def google_status(request: Request):
    return {
        'oauth_configured': config.google_oauth_configured(),
        'authenticated': read_session_cookie(request) is not None,
        'calendar_id': config.GOOGLE_CALENDAR_ID or None,
    }


@router.post('/google/logout')
def google_logout():
    response = RedirectResponse(url=config.FRONTEND_URL, status_code=303)
    response.delete_cookie(config.SESSION_COOKIE_NAME, path='/')
    return response
