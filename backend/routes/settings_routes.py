from fastapi import APIRouter, Depends

from backend.auth.dependencies import get_context
from backend.core.context import AppContext
from backend.models.settings import AppSettings
from backend.routes.student_routes import save_or_503

router = APIRouter(tags=['settings'])


@router.get('', response_model=AppSettings)
def get_settings(context: AppContext = Depends(get_context)):
    return context.store.get_settings()


@router.put('', response_model=AppSettings)
def update_settings(data: AppSettings, context: AppContext = Depends(get_context)):
    save_or_503(context.store.save_settings, data)
    return data
