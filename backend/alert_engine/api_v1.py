"""API v1 router: all JSON endpoints under /api/v1 prefix."""

from fastapi import APIRouter

from .ledger.routes import router as history_router
from .providers.routes import router as providers_router
from .schedules.routes import router as schedules_router
from .sms_templates.routes import router as templates_router

api_v1_router = APIRouter(prefix="/api/v1", tags=["api-v1"])

api_v1_router.include_router(schedules_router)
api_v1_router.include_router(templates_router)
api_v1_router.include_router(providers_router)
api_v1_router.include_router(history_router)
