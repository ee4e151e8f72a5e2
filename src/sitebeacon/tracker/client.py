"""SiteBeacon tracking client for sending beacons from server-side code."""

import asyncio
import logging
import random
from typing import Any
from urllib.parse import quote
from uuid import UUID

import httpx

from sitebeacon.tracker.schema import TrackRequest, TrackResult

_TRANSIENT_STATUS_CODES = {429, 500, 502, 503, 504}


class Client:
    """
    Async client for a SiteBeacon collector.

    Usage:
        from sitebeacon.tracker import Client

        async with Client(endpoint="https://beacon.example.com") as client:
            result = await client.track(site="shop", page="/pricing")

            await client.track(
                site="shop",
                event="conversion",
                metadata={"type": "session_started"},
            )

            await client.save_messages(
                session_id=result.session_id if result else None,
                messages=[{"role": "user", "content": "Hi"}],
                metadata={"scenario": "support", "duration": 42},
            )

    Reading statistics needs the collector's admin key:

        async with Client(endpoint, admin_key="secret") as client:
            stats = await client.get_stats()
    """

    def __init__(
        self,
        endpoint: str,
        admin_key: str | None = None,
        timeout: float = 30.0,
        fail_silently: bool = True,
        max_retries: int = 3,
        logger: logging.Logger | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            endpoint: Base URL of the collector.
            admin_key: Admin secret, sent as ``x-admin-key``; only needed for
                the statistics calls.
            timeout: Request timeout in seconds.
            fail_silently: If True, catch errors and log warnings instead of raising.
            max_retries: Number of retries for transient HTTP errors.
            logger: Logger instance; defaults to ``logging.getLogger("sitebeacon.tracker")``.
        """
        self.endpoint = endpoint.rstrip("/")
        self.admin_key = admin_key
        self.fail_silently = fail_silently
        self.max_retries = max_retries
        self.logger = logger or logging.getLogger("sitebeacon.tracker")
        headers = {"x-admin-key": admin_key} if admin_key else {}
        self.client = httpx.AsyncClient(timeout=timeout, headers=headers)

    async def _request(
        self,
        method: str,
        url: str,
        json: dict | None = None,
    ) -> httpx.Response | None:
        """Send an HTTP request with retry and optional silent failure.

        Retries on transient status codes (429, 500, 502, 503, 504) and
        connection/timeout errors using exponential backoff with jitter.

        Returns:
            The HTTP response, or None if ``fail_silently`` is True and the
            request failed after all retries.
        """
        last_exc: Exception | None = None

        for attempt in range(self.max_retries + 1):
            try:
                response = await self.client.request(method, url, json=json)
                if response.status_code in _TRANSIENT_STATUS_CODES and attempt < self.max_retries:
                    wait = (2**attempt) + random.uniform(0, 1)  # noqa: S311
                    self.logger.warning(
                        "Transient HTTP %s from %s (attempt %d/%d), retrying in %.1fs",
                        response.status_code,
                        url,
                        attempt + 1,
                        self.max_retries + 1,
                        wait,
                    )
                    await asyncio.sleep(wait)
                    continue
                response.raise_for_status()
                return response
            except httpx.HTTPStatusError as exc:
                last_exc = exc
                break
            except (httpx.ConnectError, httpx.TimeoutException) as exc:
                last_exc = exc
                if attempt < self.max_retries:
                    wait = (2**attempt) + random.uniform(0, 1)  # noqa: S311
                    self.logger.warning(
                        "%s for %s (attempt %d/%d), retrying in %.1fs",
                        type(exc).__name__,
                        url,
                        attempt + 1,
                        self.max_retries + 1,
                        wait,
                    )
                    await asyncio.sleep(wait)
                    continue
                break

        if self.fail_silently:
            self.logger.warning("Request to %s failed: %s", url, last_exc)
            return None
        raise last_exc  # type: ignore[misc]

    async def track(
        self,
        site: str | None = None,
        page: str | None = None,
        referrer: str | None = None,
        event: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> TrackResult | None:
        """Send a visit or event beacon.

        Args:
            site: Site identifier.
            page: Page path.
            referrer: Referring URL.
            event: Event kind; omit for a plain visit.
            metadata: Additional attributes stored with the record.

        Returns:
            The collector's answer, or None on silent failure.
        """
        beacon = TrackRequest(
            site=site,
            page=page,
            referrer=referrer,
            event=event,
            metadata=metadata,
        )
        response = await self._request(
            "POST",
            f"{self.endpoint}/track",
            json=beacon.model_dump(exclude_none=True),
        )
        if response is None:
            return None
        return TrackResult.model_validate(response.json())

    async def save_messages(
        self,
        session_id: UUID | None,
        messages: list[dict[str, Any]],
        metadata: dict[str, Any] | None = None,
    ) -> int | None:
        """Attach a conversation transcript to a tracked visit.

        Replaces any transcript previously stored for the same visit.

        Returns:
            Number of messages stored, or None when skipped or on silent failure.
        """
        if session_id is None:
            self.logger.warning("save_messages skipped: session_id is None")
            return None
        response = await self._request(
            "POST",
            f"{self.endpoint}/save_messages",
            json={
                "session_id": str(session_id),
                "messages": messages,
                "metadata": metadata or {},
            },
        )
        if response is None:
            return None
        return response.json()["messages_saved"]

    async def get_stats(self, site: str | None = None) -> dict | None:
        """Fetch the global summary, or the summary of one site."""
        url = f"{self.endpoint}/stats"
        if site is not None:
            url = f"{url}/{quote(site, safe='')}"
        response = await self._request("GET", url)
        if response is None:
            return None
        return response.json()

    async def get_conversation_stats(self) -> dict | None:
        """Fetch the conversation summary."""
        response = await self._request("GET", f"{self.endpoint}/stats/conversations")
        if response is None:
            return None
        return response.json()

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()

    async def __aenter__(self) -> "Client":
        """Context manager entry."""
        return self

    async def __aexit__(self, *args: object) -> None:
        """Context manager exit."""
        await self.close()
