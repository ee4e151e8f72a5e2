"""Public beacon routes - called by client sites and the tracker SDK."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Header, HTTPException, Request

from sitebeacon.collector.config import settings
from sitebeacon.collector.database import Pool
from sitebeacon.collector.geo import GeoIP
from sitebeacon.collector.models import SaveMessagesRequest, TrackRequest, TrackResult
from sitebeacon.collector.ratelimit import check_rate_limit
from sitebeacon.collector.services import visits as visit_service

router = APIRouter(tags=["track"])


def client_address(request: Request, trust_proxy: bool = False) -> str:
    """Originating address of the request.

    Forwarding headers are only honoured when the collector sits behind a
    trusted proxy.
    """
    if trust_proxy:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded and forwarded.split(",")[0].strip():
            return forwarded.split(",")[0].strip()
        real_ip = request.headers.get("x-real-ip")
        if real_ip:
            return real_ip.strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


@router.post("/track")
async def track(
    data: TrackRequest,
    request: Request,
    pool: Pool,
    geoip: GeoIP,
    user_agent: Annotated[str | None, Header()] = None,
) -> TrackResult:
    """Record a visit or event.

    Same-day repeat visits from one address to one site return the stored
    visit with ``unique`` set to false.
    """
    ip = client_address(request, settings.trust_proxy)

    async with pool.connection() as conn:
        limit = await check_rate_limit(
            conn,
            ip,
            settings.track_rate_limit,
            settings.track_rate_window_seconds,
        )
    if not limit.allowed:
        raise HTTPException(
            429,
            "Too many requests",
            headers={"Retry-After": str(limit.retry_after)},
        )

    beacon = visit_service.build_beacon(data, ip, user_agent, geoip.country(ip))
    async with pool.connection() as conn:
        return await visit_service.track(conn, beacon)


@router.post("/save_messages")
async def save_messages(
    data: SaveMessagesRequest,
    pool: Pool,
) -> dict:
    """Attach a conversation transcript to a tracked visit, replacing any earlier one."""
    if not data.session_id or data.messages is None:
        raise HTTPException(400, "session_id and messages are required")

    try:
        visit_id = UUID(data.session_id)
    except ValueError as e:
        raise HTTPException(404, "Session not found") from e

    async with pool.connection() as conn:
        saved = await visit_service.save_messages(
            conn, visit_id, data.messages, data.metadata or {}
        )
        if saved is None:
            raise HTTPException(404, "Session not found")
        return {"status": "ok", "session_id": str(visit_id), "messages_saved": saved}
