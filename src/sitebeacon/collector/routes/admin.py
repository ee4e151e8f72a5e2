"""Admin export routes."""

from typing import Annotated

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse, Response

from sitebeacon.collector.auth import AdminAccess
from sitebeacon.collector.database import Pool
from sitebeacon.collector.models import ExportFormat, ExportType
from sitebeacon.collector.services import export as export_service

router = APIRouter(tags=["admin"], dependencies=[AdminAccess])


@router.get("/export")
async def export(
    pool: Pool,
    format: Annotated[ExportFormat, Query(description="json or csv")] = "json",
    type: Annotated[ExportType, Query(description="all, visits or events")] = "all",
) -> Response:
    """Dump stored records, newest first, as a downloadable file."""
    async with pool.connection() as conn:
        records = await export_service.list_records(conn, type)

    if format == "csv":
        return Response(
            export_service.to_csv(records),
            media_type="text/csv",
            headers={"Content-Disposition": "attachment; filename=analytics.csv"},
        )
    return JSONResponse(
        export_service.to_json(records),
        headers={"Content-Disposition": "attachment; filename=analytics.json"},
    )
