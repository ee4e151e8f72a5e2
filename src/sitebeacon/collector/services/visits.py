"""Visit service: ingestion, deduplication and conversation attachment."""

import logging
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from psycopg import AsyncConnection
from psycopg.types.json import Jsonb

from sitebeacon.collector.models import (
    VISIT,
    Beacon,
    TrackRequest,
    TrackResult,
    VisitRecord,
    redact_ip,
)

logger = logging.getLogger(__name__)

RECORD_COLUMNS = """
    id, ip, timestamp, date, site, page, referrer, user_agent, event,
    metadata, messages, conversation_metadata, conversation_updated_at
"""


def build_beacon(
    data: TrackRequest,
    ip: str,
    user_agent: str | None,
    country: str,
) -> Beacon:
    """Apply defaults to a track call and merge the derived country."""
    metadata = dict(data.metadata or {})
    metadata.setdefault("country", country)
    return Beacon(
        ip=ip or "unknown",
        site=data.site or "unknown",
        page=data.page or "/",
        referrer=data.referrer or "direct",
        user_agent=user_agent,
        event=data.event or VISIT,
        metadata=metadata,
    )


def utc_day(now: datetime | None = None) -> str:
    """UTC calendar day as ``YYYY-MM-DD``."""
    return (now or datetime.now(UTC)).astimezone(UTC).date().isoformat()


async def record_visit(
    conn: AsyncConnection,
    beacon: Beacon,
    timestamp: datetime,
) -> tuple[UUID, bool]:
    """Insert a plain visit, or return the one already stored for this day.

    The unique index on (ip, date, site) arbitrates concurrent callers; the
    no-op update makes the conflicting row come back through RETURNING, and
    ``xmax = 0`` holds only for a freshly inserted row.

    Returns:
        The record id and whether it was created by this call.
    """
    row = await conn.execute(
        """
        INSERT INTO visits (
            ip, timestamp, date, site, page, referrer, user_agent, event, metadata
        )
        VALUES (%s, %s, %s, %s, %s, %s, %s, 'visit', %s)
        ON CONFLICT (ip, date, site) WHERE event = 'visit'
        DO UPDATE SET ip = visits.ip
        RETURNING id, (xmax = 0) AS inserted
        """,
        (
            beacon.ip,
            timestamp,
            utc_day(timestamp),
            beacon.site,
            beacon.page,
            beacon.referrer,
            beacon.user_agent,
            Jsonb(beacon.metadata),
        ),
    )
    result = await row.fetchone()
    assert result is not None
    return result[0], result[1]


async def record_event(
    conn: AsyncConnection,
    beacon: Beacon,
    timestamp: datetime,
) -> UUID:
    """Insert a discrete event. Events are never deduplicated."""
    row = await conn.execute(
        """
        INSERT INTO visits (ip, timestamp, site, page, referrer, user_agent, event, metadata)
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
        RETURNING id
        """,
        (
            beacon.ip,
            timestamp,
            beacon.site,
            beacon.page,
            beacon.referrer,
            beacon.user_agent,
            beacon.event,
            Jsonb(beacon.metadata),
        ),
    )
    result = await row.fetchone()
    assert result is not None
    return result[0]


async def track(
    conn: AsyncConnection,
    beacon: Beacon,
    now: datetime | None = None,
) -> TrackResult:
    """Store a beacon and report whether it created a new record."""
    timestamp = now or datetime.now(UTC)
    if beacon.is_visit:
        visit_id, created = await record_visit(conn, beacon, timestamp)
        if created:
            logger.info(
                "New visit: %s -> %s%s (%s)",
                redact_ip(beacon.ip),
                beacon.site,
                beacon.page,
                beacon.metadata.get("deviceType") or "unknown",
            )
    else:
        visit_id = await record_event(conn, beacon, timestamp)
        created = True
        logger.info(
            "Event: %s -> %s %s (%s)",
            beacon.event,
            beacon.site,
            _event_hint(beacon.metadata),
            redact_ip(beacon.ip),
        )

    return TrackResult(
        unique=created,
        total=await count_records(conn),
        session_id=visit_id,
    )


def _event_hint(metadata: dict[str, Any]) -> str:
    """Short description of an event for the log line."""
    element = metadata.get("element")
    if isinstance(element, dict) and element.get("text"):
        return str(element["text"])
    for key in ("type", "depth"):
        if metadata.get(key):
            return str(metadata[key])
    return ""


async def count_records(conn: AsyncConnection) -> int:
    """Count every stored record, visits and events alike."""
    row = await conn.execute("SELECT count(*) FROM visits")
    result = await row.fetchone()
    assert result is not None
    return result[0]


async def get_visit(
    conn: AsyncConnection,
    visit_id: UUID,
) -> VisitRecord | None:
    """Get a record by ID."""
    row = await conn.execute(
        f"SELECT {RECORD_COLUMNS} FROM visits WHERE id = %s",
        (visit_id,),
    )
    result = await row.fetchone()
    if result is None:
        return None
    return row_to_record(result)


async def save_messages(
    conn: AsyncConnection,
    visit_id: UUID,
    messages: list[dict[str, Any]],
    metadata: dict[str, Any],
) -> int | None:
    """Replace the conversation attached to a record.

    Returns:
        Number of messages stored, or None if no record has this id.
    """
    row = await conn.execute(
        """
        UPDATE visits
        SET messages = %s,
            conversation_metadata = %s,
            conversation_updated_at = %s
        WHERE id = %s
        RETURNING id
        """,
        (
            Jsonb(messages),
            Jsonb(metadata),
            datetime.now(UTC),
            visit_id,
        ),
    )
    result = await row.fetchone()
    if result is None:
        return None
    logger.info("Saved %d messages for %s", len(messages), visit_id)
    return len(messages)


def row_to_record(row: tuple) -> VisitRecord:
    """Convert a database row to a VisitRecord model."""
    return VisitRecord(
        id=row[0],
        ip=row[1],
        timestamp=row[2],
        date=row[3],
        site=row[4],
        page=row[5],
        referrer=row[6],
        user_agent=row[7],
        event=row[8],
        metadata=row[9] or {},
        messages=row[10],
        conversation_metadata=row[11],
        conversation_updated_at=row[12],
    )
