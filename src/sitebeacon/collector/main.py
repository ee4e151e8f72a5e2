"""SiteBeacon Collector - FastAPI application."""

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager, suppress

import psycopg
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from psycopg_pool import AsyncConnectionPool

from sitebeacon import __version__
from sitebeacon.collector.config import DEFAULT_ADMIN_KEY, settings
from sitebeacon.collector.database import Pool, ensure_schema
from sitebeacon.collector.errors import setup_error_handlers
from sitebeacon.collector.geo import CountryResolver
from sitebeacon.collector.ratelimit import prune_rate_limits
from sitebeacon.collector.routes import router
from sitebeacon.collector.services import stats as stats_service
from sitebeacon.collector.services import visits as visit_service

SERVICE_NAME = "SiteBeacon Collector"

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


async def prune_rate_limits_periodically(pool: AsyncConnectionPool) -> None:
    """Delete expired rate limit counters on a fixed interval until cancelled."""
    while True:
        await asyncio.sleep(settings.rate_limit_prune_interval_seconds)
        try:
            async with pool.connection() as conn:
                await prune_rate_limits(conn, settings.track_rate_window_seconds)
        except psycopg.Error:
            logger.exception("Rate limit cleanup failed")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage server lifecycle."""
    app.state.started_at = time.monotonic()
    app.state.pool = AsyncConnectionPool(
        settings.database_url,
        open=False,
        min_size=1,
        max_size=10,
    )
    await app.state.pool.open(wait=True, timeout=10)
    async with app.state.pool.connection() as conn:
        await ensure_schema(conn)
        total = await visit_service.count_records(conn)
    logger.info("Database pool initialized, %d records stored", total)

    app.state.geoip = CountryResolver.from_path(settings.geoip_db_path)

    if settings.admin_key == DEFAULT_ADMIN_KEY:
        logger.warning("ADMIN_KEY is not set, stats are protected by the default key")

    pruner = asyncio.create_task(prune_rate_limits_periodically(app.state.pool))

    yield

    # Cleanup
    pruner.cancel()
    with suppress(asyncio.CancelledError):
        await pruner
    app.state.geoip.close()
    await app.state.pool.close()
    logger.info("Server shutdown complete")


app = FastAPI(
    title=SERVICE_NAME,
    description="Visit and event analytics collector",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

setup_error_handlers(app)

app.include_router(router)


@app.get("/")
async def index(pool: Pool) -> JSONResponse:
    """Service status with headline counts."""
    uptime = time.monotonic() - getattr(app.state, "started_at", time.monotonic())
    try:
        async with pool.connection() as conn:
            total_records = await visit_service.count_records(conn)
            row = await conn.execute(
                f"SELECT count(*), count(DISTINCT ip) FROM visits WHERE {stats_service.VISIT_FILTER}"
            )
            result = await row.fetchone()
            assert result is not None
            total_visits, unique_ips = result
    except psycopg.Error:
        logger.exception("Status check failed")
        return JSONResponse(
            {"service": SERVICE_NAME, "status": "error", "error": "Database unavailable"},
            status_code=500,
        )

    return JSONResponse(
        {
            "service": SERVICE_NAME,
            "status": "running",
            "version": __version__,
            "database": "PostgreSQL",
            "uptime": round(uptime, 3),
            "stats": {
                "total_records": total_records,
                "total_visits": total_visits,
                "unique_ips": unique_ips,
            },
        }
    )


@app.get("/health")
async def health() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "ok"}


def run() -> None:
    """Console entry point."""
    uvicorn.run(
        "sitebeacon.collector.main:app",
        host="0.0.0.0",  # noqa: S104
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
