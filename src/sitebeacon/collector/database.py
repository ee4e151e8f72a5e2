"""Database connection pool management and schema bootstrap."""

from typing import Annotated, Any

from fastapi import Depends, Request
from psycopg import AsyncConnection
from psycopg_pool import AsyncConnectionPool

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS visits (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        ip TEXT NOT NULL,
        timestamp TIMESTAMPTZ NOT NULL DEFAULT now(),
        date TEXT,
        site TEXT NOT NULL,
        page TEXT NOT NULL,
        referrer TEXT NOT NULL,
        user_agent TEXT,
        event TEXT NOT NULL DEFAULT 'visit',
        metadata JSONB NOT NULL DEFAULT '{}'::jsonb,
        messages JSONB,
        conversation_metadata JSONB,
        conversation_updated_at TIMESTAMPTZ
    )
    """,
    # One plain visit per address, day and site; events are never deduplicated
    """
    CREATE UNIQUE INDEX IF NOT EXISTS visits_daily_unique
        ON visits (ip, date, site)
        WHERE event = 'visit'
    """,
    "CREATE INDEX IF NOT EXISTS visits_timestamp_idx ON visits (timestamp DESC)",
    "CREATE INDEX IF NOT EXISTS visits_site_idx ON visits (site)",
    "CREATE INDEX IF NOT EXISTS visits_event_idx ON visits (event)",
    """
    CREATE TABLE IF NOT EXISTS rate_limits (
        identifier TEXT PRIMARY KEY,
        window_start BIGINT NOT NULL,
        count INTEGER NOT NULL
    )
    """,
)


async def ensure_schema(conn: AsyncConnection) -> None:
    """Create tables and indexes if they do not exist yet."""
    for statement in SCHEMA:
        await conn.execute(statement)
    await conn.commit()


def get_pool(request: Request) -> AsyncConnectionPool[Any]:
    """Get the connection pool from app state."""
    return request.app.state.pool


Pool = Annotated[AsyncConnectionPool[Any], Depends(get_pool)]
