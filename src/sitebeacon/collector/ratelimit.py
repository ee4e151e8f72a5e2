"""Fixed-window rate limiting for public endpoints."""

import logging
import time
from typing import NamedTuple

from psycopg import AsyncConnection

from sitebeacon.collector.models import redact_ip

logger = logging.getLogger(__name__)


class RateLimitResult(NamedTuple):
    """Result of a rate limit check."""

    allowed: bool
    requests_remaining: int
    retry_after: int | None  # Seconds until the window resets


async def check_rate_limit(
    conn: AsyncConnection,
    identifier: str,
    limit: int,
    window_seconds: int,
    now: float | None = None,
) -> RateLimitResult:
    """Count a request against ``identifier`` and decide whether to allow it.

    Each identifier keeps a single counter row in the store. The counter
    resets when a request arrives in a later window than the stored one, so
    no cleanup job is needed and every collector process shares the same
    counts.

    Args:
        conn: Database connection.
        identifier: Usually the client address.
        limit: Max requests allowed per window.
        window_seconds: Window length.
        now: Current epoch time; defaults to ``time.time()``.

    Returns:
        RateLimitResult with allowed status and remaining requests.
    """
    current_time = int(now if now is not None else time.time())
    window_start = current_time - (current_time % window_seconds)

    row = await conn.execute(
        """
        INSERT INTO rate_limits (identifier, window_start, count)
        VALUES (%s, %s, 1)
        ON CONFLICT (identifier) DO UPDATE
        SET count = CASE
                WHEN rate_limits.window_start = EXCLUDED.window_start
                THEN rate_limits.count + 1
                ELSE 1
            END,
            window_start = EXCLUDED.window_start
        RETURNING count
        """,
        (identifier, window_start),
    )
    result = await row.fetchone()
    assert result is not None
    count = result[0]

    if count > limit:
        logger.warning(
            "Rate limit exceeded for %s (%d/%d)",
            redact_ip(identifier),
            count,
            limit,
        )
        return RateLimitResult(
            allowed=False,
            requests_remaining=0,
            retry_after=window_start + window_seconds - current_time,
        )

    return RateLimitResult(
        allowed=True,
        requests_remaining=limit - count,
        retry_after=None,
    )


async def prune_rate_limits(
    conn: AsyncConnection,
    window_seconds: int,
    now: float | None = None,
) -> int:
    """Delete counters whose window has ended.

    A deleted counter is indistinguishable from an expired one, so this only
    bounds the table size.

    Returns:
        Number of counters removed.
    """
    current_time = int(now if now is not None else time.time())
    window_start = current_time - (current_time % window_seconds)

    cur = await conn.execute(
        "DELETE FROM rate_limits WHERE window_start < %s",
        (window_start,),
    )
    if cur.rowcount:
        logger.info("Pruned %d expired rate limit counters", cur.rowcount)
    return cur.rowcount
