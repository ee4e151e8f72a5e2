"""Admin read routes: summaries and single-record lookup."""

from uuid import UUID

from fastapi import APIRouter, HTTPException

from sitebeacon.collector.auth import AdminAccess
from sitebeacon.collector.config import settings
from sitebeacon.collector.database import Pool
from sitebeacon.collector.models import VisitRecord
from sitebeacon.collector.services import stats as stats_service
from sitebeacon.collector.services import visits as visit_service

router = APIRouter(tags=["stats"], dependencies=[AdminAccess])


@router.get("/stats")
async def get_stats(pool: Pool) -> dict:
    """Summary across all sites."""
    return await stats_service.global_summary(pool, recent_limit=settings.recent_limit)


# Registered before /stats/{site} so "conversations" is not taken as a site
@router.get("/stats/conversations")
async def get_conversation_stats(pool: Pool) -> dict:
    """Summary of visits with an attached conversation."""
    return await stats_service.conversation_summary(pool, recent_limit=settings.recent_limit)


@router.get("/stats/{site}")
async def get_site_stats(site: str, pool: Pool) -> dict:
    """Summary of one site."""
    return await stats_service.site_summary(pool, site)


@router.get("/visit/{visit_id}")
async def get_visit(visit_id: str, pool: Pool) -> VisitRecord:
    """Get one record by ID, address redacted."""
    try:
        record_id = UUID(visit_id)
    except ValueError as e:
        raise HTTPException(404, "Visit not found") from e

    async with pool.connection() as conn:
        record = await visit_service.get_visit(conn, record_id)
        if record is None:
            raise HTTPException(404, "Visit not found")
        return record.redacted()
