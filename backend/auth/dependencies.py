import logging

import jwt
from fastapi import Depends, Request, Response

from backend.auth import google_oauth, jwt_handler
from backend.auth.google_oauth import GoogleSession
from backend.core import config
from backend.core.context import AppContext
from backend.services.booking import BookingWorkflow
from backend.services.google_calendar import LessonSource

logger = logging.getLogger(__name__)


def get_context(request: Request) -> AppContext:
    return request.app.state.context


def set_session_cookie(response: Response, session: GoogleSession) -> None:
    response.set_cookie(
        key=config.SESSION_COOKIE_NAME,
        value=jwt_handler.create_session_token(session.to_dict()),
        max_age=config.SESSION_MAX_AGE_DAYS * 24 * 3600,
        httponly=True,
        secure=config.APP_ENV.lower() == "production",
        samesite="lax",
        path="/",
    )


def read_session_cookie(request: Request) -> GoogleSession | None:
    token = request.cookies.get(config.SESSION_COOKIE_NAME)
    if not token:
        return None
    try:
        return GoogleSession.from_dict(jwt_handler.decode_session_token(token))
    except jwt.PyJWTError:
        logger.warning("Ignoring invalid Google session cookie")
        return None


async def get_google_session(
    request: Request,
    response: Response,
    context: AppContext = Depends(get_context),
) -> GoogleSession | None:
    session = read_session_cookie(request)
    if session is None or not session.is_expired():
        return session

    refreshed = await google_oauth.refresh_session(context.http, session)
    if refreshed is None:
        return session
    set_session_cookie(response, refreshed)
    return refreshed


def get_lesson_source(
    context: AppContext = Depends(get_context),
    session: GoogleSession | None = Depends(get_google_session),
) -> LessonSource:
    return context.lesson_source(session)


def get_workflow(
    context: AppContext = Depends(get_context),
    source: LessonSource = Depends(get_lesson_source),
) -> BookingWorkflow:
    return BookingWorkflow(context.store, source, context.notifier, context.tz)
