"""API routes for the SiteBeacon collector."""

from fastapi import APIRouter

from sitebeacon.collector.routes.admin import router as admin_router
from sitebeacon.collector.routes.stats import router as stats_router
from sitebeacon.collector.routes.track import router as track_router

router = APIRouter()
router.include_router(track_router)
router.include_router(stats_router)
router.include_router(admin_router, prefix="/admin")
