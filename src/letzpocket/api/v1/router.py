"""API v1 main router.

Aggregates all v1 API routers into a single router for inclusion in the app.
"""

from fastapi import APIRouter

from letzpocket.api.v1.admin import router as admin_router
from letzpocket.api.v1.analytics import router as analytics_router
from letzpocket.api.v1.quota import router as quota_router

router = APIRouter()

# Include sub-routers
router.include_router(analytics_router, prefix="/analytics", tags=["Analytics"])
router.include_router(quota_router, prefix="/quota", tags=["Quota"])
router.include_router(admin_router, prefix="/admin", tags=["Admin"])
