"""Aggregation queries behind the stats endpoints.

Every summary is a set of independent read queries. They are fanned out with
``asyncio.gather``, each on its own pooled connection, and assembled into
plain dicts once they all return.
"""

import asyncio
from datetime import UTC, datetime, timedelta
from typing import Any

from psycopg_pool import AsyncConnectionPool

from sitebeacon.collector.models import (
    RecentConversation,
    RecentEvent,
    RecentVisit,
    redact_ip,
)
from sitebeacon.collector.services.visits import utc_day

VISIT_FILTER = "event = 'visit'"
EVENT_FILTER = "event <> 'visit'"
CONVERSION_FILTER = "event = 'conversion'"
SESSION_STARTED = "session_started"

# Rows whose messages column holds a non-empty array
HAS_MESSAGES = (
    "CASE WHEN jsonb_typeof(messages) = 'array' "
    "THEN jsonb_array_length(messages) ELSE 0 END > 0"
)

# Group expressions; never built from request input
DEVICE = "metadata->>'deviceType'"
COUNTRY = "metadata->>'country'"
TIMEZONE = "metadata->>'timezone'"
CONVERSION_TYPE = "metadata->>'type'"
SCENARIO = "conversation_metadata->>'scenario'"
VOICE = "conversation_metadata->>'voice'"


def format_rate(numerator: int, denominator: int) -> str:
    """Percentage as ``"X.XX%"``; ``"0%"`` when there is nothing to divide by."""
    if denominator <= 0:
        return "0%"
    rate = min(numerator / denominator * 100, 100.0)
    return f"{rate:.2f}%"


def sort_counts(counts: dict[str, int]) -> dict[str, int]:
    """Order a breakdown by count descending, then key."""
    return dict(sorted(counts.items(), key=lambda item: (-item[1], item[0])))


def day_before(days: int, now: datetime | None = None) -> str:
    """UTC calendar day ``days`` before now, as ``YYYY-MM-DD``."""
    return utc_day((now or datetime.now(UTC)) - timedelta(days=days))


def _visit_filter(site: str | None) -> tuple[str, tuple]:
    if site is None:
        return VISIT_FILTER, ()
    return f"{VISIT_FILTER} AND site = %s", (site,)


def _conversion_filter(site: str | None) -> tuple[str, tuple]:
    if site is None:
        return CONVERSION_FILTER, ()
    return f"{CONVERSION_FILTER} AND site = %s", (site,)


async def _fetchall(
    pool: AsyncConnectionPool[Any],
    query: str,
    params: tuple = (),
) -> list[tuple]:
    async with pool.connection() as conn:
        row = await conn.execute(query, params)
        return await row.fetchall()


async def _fetchone(
    pool: AsyncConnectionPool[Any],
    query: str,
    params: tuple = (),
) -> tuple:
    async with pool.connection() as conn:
        row = await conn.execute(query, params)
        result = await row.fetchone()
        assert result is not None
        return result


async def _count(
    pool: AsyncConnectionPool[Any],
    where: str,
    params: tuple = (),
) -> int:
    result = await _fetchone(pool, f"SELECT count(*) FROM visits WHERE {where}", params)
    return result[0]


async def _count_distinct_ips(
    pool: AsyncConnectionPool[Any],
    where: str,
    params: tuple = (),
) -> int:
    result = await _fetchone(
        pool, f"SELECT count(DISTINCT ip) FROM visits WHERE {where}", params
    )
    return result[0]


async def _group_counts(
    pool: AsyncConnectionPool[Any],
    expr: str,
    where: str,
    params: tuple = (),
    default: str = "unknown",
) -> dict[str, int]:
    """Count rows per value of ``expr``; missing and empty values fold into ``default``."""
    rows = await _fetchall(
        pool,
        f"SELECT {expr} AS key, count(*) FROM visits WHERE {where} GROUP BY 1",
        params,
    )
    counts: dict[str, int] = {}
    for key, count in rows:
        label = key or default
        counts[label] = counts.get(label, 0) + count
    return sort_counts(counts)


async def _date_counts(
    pool: AsyncConnectionPool[Any],
    where: str,
    params: tuple = (),
    limit: int | None = None,
) -> dict[str, int]:
    """Visits per calendar day, most recent first. A None limit keeps every day."""
    rows = await _fetchall(
        pool,
        f"""
        SELECT date, count(*) FROM visits
        WHERE {where} AND date IS NOT NULL
        GROUP BY date
        ORDER BY date DESC
        LIMIT %s
        """,
        (*params, limit),
    )
    return {date: count for date, count in rows}


async def _recent_visits(
    pool: AsyncConnectionPool[Any],
    limit: int,
) -> list[RecentVisit]:
    rows = await _fetchall(
        pool,
        f"""
        SELECT timestamp, ip, site, page, {DEVICE}, referrer
        FROM visits
        WHERE {VISIT_FILTER}
        ORDER BY timestamp DESC
        LIMIT %s
        """,
        (limit,),
    )
    return [
        RecentVisit(
            time=r[0],
            ip=redact_ip(r[1]),
            site=r[2],
            page=r[3],
            device=r[4] or "unknown",
            referrer=r[5],
        )
        for r in rows
    ]


async def _recent_events(
    pool: AsyncConnectionPool[Any],
    limit: int,
) -> list[RecentEvent]:
    rows = await _fetchall(
        pool,
        f"""
        SELECT timestamp, ip, event, site, page, metadata
        FROM visits
        WHERE {EVENT_FILTER}
        ORDER BY timestamp DESC
        LIMIT %s
        """,
        (limit,),
    )
    return [
        RecentEvent(
            time=r[0],
            ip=redact_ip(r[1]),
            event=r[2],
            site=r[3],
            page=r[4],
            metadata=r[5] or {},
        )
        for r in rows
    ]


async def _site_visit_summary(
    pool: AsyncConnectionPool[Any],
    site: str | None,
    now: datetime | None,
) -> dict[str, Any]:
    """Counters shared by the global and per-site summaries."""
    where, params = _visit_filter(site)
    conv_where, conv_params = _conversion_filter(site)

    (
        total_visits,
        unique_ips,
        today,
        last_7_days,
        last_30_days,
        conversions,
    ) = await asyncio.gather(
        _count(pool, where, params),
        _count_distinct_ips(pool, where, params),
        _count(pool, f"{where} AND date = %s", (*params, utc_day(now))),
        _count(pool, f"{where} AND date >= %s", (*params, day_before(7, now))),
        _count(pool, f"{where} AND date >= %s", (*params, day_before(30, now))),
        _count(
            pool,
            f"{conv_where} AND {CONVERSION_TYPE} = %s",
            (*conv_params, SESSION_STARTED),
        ),
    )

    return {
        "total_visits": total_visits,
        "unique_ips": unique_ips,
        "today": today,
        "last_7_days": last_7_days,
        "last_30_days": last_30_days,
        "conversions": conversions,
        "conversion_rate": format_rate(conversions, total_visits),
    }


async def global_summary(
    pool: AsyncConnectionPool[Any],
    recent_limit: int = 20,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Summary across every site, with breakdowns and recent activity."""
    where, params = _visit_filter(None)

    (
        summary,
        by_site,
        by_date,
        by_device,
        by_country,
        by_timezone,
        conversions,
        recent_visits,
        recent_events,
    ) = await asyncio.gather(
        _site_visit_summary(pool, None, now),
        _group_counts(pool, "site", where, params),
        _date_counts(pool, where, params, limit=30),
        _group_counts(pool, DEVICE, where, params),
        _group_counts(pool, COUNTRY, where, params, default="Unknown"),
        _group_counts(pool, TIMEZONE, where, params, default="Unknown"),
        _group_counts(pool, CONVERSION_TYPE, CONVERSION_FILTER),
        _recent_visits(pool, recent_limit),
        _recent_events(pool, recent_limit),
    )

    return {
        "summary": summary,
        "by_site": by_site,
        "by_date": by_date,
        "by_device": by_device,
        "by_country": by_country,
        "by_timezone": by_timezone,
        "conversions": conversions,
        "recent_visits": [v.model_dump(mode="json") for v in recent_visits],
        "recent_events": [e.model_dump(mode="json") for e in recent_events],
    }


async def site_summary(
    pool: AsyncConnectionPool[Any],
    site: str,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Summary of one site, broken down by page."""
    where, params = _visit_filter(site)
    conv_where, conv_params = _conversion_filter(site)

    (
        summary,
        by_page,
        by_date,
        by_device,
        by_country,
        by_timezone,
        conversions,
    ) = await asyncio.gather(
        _site_visit_summary(pool, site, now),
        _group_counts(pool, "page", where, params),
        _date_counts(pool, where, params),
        _group_counts(pool, DEVICE, where, params),
        _group_counts(pool, COUNTRY, where, params, default="Unknown"),
        _group_counts(pool, TIMEZONE, where, params, default="Unknown"),
        _group_counts(pool, CONVERSION_TYPE, conv_where, conv_params),
    )

    return {
        "site": site,
        "summary": summary,
        "by_page": by_page,
        "by_date": by_date,
        "by_device": by_device,
        "by_country": by_country,
        "by_timezone": by_timezone,
        "conversions": conversions,
    }


async def conversation_summary(
    pool: AsyncConnectionPool[Any],
    recent_limit: int = 20,
) -> dict[str, Any]:
    """Summary of visits that carry a conversation transcript."""
    (
        totals,
        total_visits,
        by_scenario,
        by_voice,
        recent_rows,
    ) = await asyncio.gather(
        _fetchone(
            pool,
            f"""
            SELECT
                count(*),
                avg(jsonb_array_length(messages)),
                avg(
                    CASE WHEN jsonb_typeof(conversation_metadata->'duration') = 'number'
                    THEN (conversation_metadata->>'duration')::float
                    END
                )
            FROM visits
            WHERE {HAS_MESSAGES}
            """,
        ),
        _count(pool, VISIT_FILTER),
        _group_counts(pool, SCENARIO, HAS_MESSAGES),
        _group_counts(pool, VOICE, HAS_MESSAGES),
        _fetchall(
            pool,
            f"""
            SELECT
                id, ip, site,
                COALESCE(conversation_updated_at, timestamp) AS updated_at,
                jsonb_array_length(messages),
                conversation_metadata
            FROM visits
            WHERE {HAS_MESSAGES}
            ORDER BY updated_at DESC
            LIMIT %s
            """,
            (recent_limit,),
        ),
    )

    total_conversations, avg_messages, avg_duration = totals
    recent = [
        RecentConversation(
            session_id=r[0],
            ip=redact_ip(r[1]),
            site=r[2],
            updated_at=r[3],
            message_count=r[4],
            metadata=r[5] or {},
        )
        for r in recent_rows
    ]

    return {
        "summary": {
            "total_conversations": total_conversations,
            "total_visits": total_visits,
            "conversion_rate": format_rate(total_conversations, total_visits),
            "avg_messages": round(float(avg_messages or 0), 2),
            "avg_duration": round(float(avg_duration or 0), 2),
        },
        "by_scenario": by_scenario,
        "by_voice": by_voice,
        "recent_conversations": [c.model_dump(mode="json") for c in recent],
    }
