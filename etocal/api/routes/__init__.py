"""API Routes.

Aggregates all API routers.
"""

from fastapi import APIRouter

from etocal.api.routes.accuracy import router as accuracy_router
from etocal.api.routes.health import router as health_router

router = APIRouter()

router.include_router(health_router, tags=["Health"])
router.include_router(accuracy_router)

__all__ = ["router"]
