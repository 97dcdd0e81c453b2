import logging
from datetime import datetime, timezone

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from backend.auth.dependencies import read_session_cookie
from backend.core import config
from backend.core.context import AppContext, build_http_client
from backend.database import Base, SessionLocal, engine, ensure_collection_schema
from backend.models import collection
from backend.routes import (
    auth_routes,
    dashboard_routes,
    instructor_routes,
    planning_routes,
    settings_routes,
    student_routes,
)
from backend.services.storage import EntityStore, SqlKeyValueStore, seed_defaults

app = FastAPI(title='Driving School Planner')

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)

logger = logging.getLogger(__name__)


@app.on_event('startup')
def initialize_application() -> None:
    config.validate_runtime_config()
    store = EntityStore(SqlKeyValueStore(SessionLocal))
    app.state.context = AppContext(store=store, http=build_http_client())

    try:
        Base.metadata.create_all(bind=engine, tables=[collection.StoredCollection.__table__])
        ensure_collection_schema()
        seed_defaults(store)
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL.')


@app.on_event('shutdown')
async def close_application() -> None:
    context: AppContext | None = getattr(app.state, 'context', None)
    if context is not None:
        await context.aclose()


@app.get('/')
def root():
    return {'status': 'Driving School Planner API Running'}


def health_payload(request: Request) -> dict:
    return {
        'status': 'ok',
        'timestamp': datetime.now(timezone.utc).isoformat(),
        'services': {
            'twilio': {
                'configured': config.twilio_configured(),
            },
            'google': {
                'oauth_configured': config.google_oauth_configured(),
                'authenticated': read_session_cookie(request) is not None,
                'calendar_id': config.GOOGLE_CALENDAR_ID or None,
                'sync_enabled': config.CALENDAR_SYNC_ENABLED,
            },
        },
    }


@app.get('/health')
def health(payload: dict = Depends(health_payload)):
    all_good = payload['services']['twilio']['configured'] and payload['services']['google']['oauth_configured']
    return JSONResponse(status_code=200 if all_good else 503, content=payload)


app.include_router(auth_routes.router, prefix='/auth')
app.include_router(student_routes.router, prefix='/students')
app.include_router(instructor_routes.router, prefix='/instructors')
app.include_router(settings_routes.router, prefix='/settings')
app.include_router(dashboard_routes.router, prefix='/dashboard')
app.include_router(planning_routes.router, prefix='/planning')
