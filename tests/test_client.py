"""Tests for the SiteBeacon tracking client."""

import logging
from unittest.mock import AsyncMock, patch
from uuid import uuid4

import httpx
import pytest

from sitebeacon.tracker import Client, TrackResult


@pytest.fixture
def client():
    """Create a test client with fail_silently=False."""
    return Client(
        endpoint="https://beacon.example.com",
        fail_silently=False,
        max_retries=0,
    )


@pytest.fixture
def silent_client():
    """Create a test client with fail_silently=True (default)."""
    return Client(endpoint="https://beacon.example.com")


@pytest.fixture
def mock_response():
    """Create a mock HTTP response factory."""

    def _make_response(json_data: dict, status_code: int = 200):
        return httpx.Response(
            status_code=status_code,
            json=json_data,
            request=httpx.Request("POST", "https://beacon.example.com"),
        )

    return _make_response


def _track_payload(unique: bool = True, session_id=None) -> dict:
    return {
        "tracked": True,
        "unique": unique,
        "total": 12,
        "sessionIdentifier": str(session_id or uuid4()),
    }


class TestClientInit:
    """Tests for client initialisation."""

    def test_strips_trailing_slash(self):
        """Endpoint trailing slash is stripped."""
        c = Client(endpoint="https://beacon.example.com/")
        assert c.endpoint == "https://beacon.example.com"

    def test_defaults(self):
        """Default resilience settings are sensible."""
        c = Client(endpoint="https://example.com")
        assert c.fail_silently is True
        assert c.max_retries == 3
        assert c.logger.name == "sitebeacon.tracker"
        assert "x-admin-key" not in c.client.headers

    def test_admin_key_header(self):
        """The admin key is sent as x-admin-key."""
        c = Client(endpoint="https://example.com", admin_key="secret")
        assert c.client.headers["x-admin-key"] == "secret"

    def test_custom_logger(self):
        """Custom logger is used when provided."""
        custom = logging.getLogger("custom")
        c = Client(endpoint="https://example.com", logger=custom)
        assert c.logger is custom


class TestTracking:
    """Tests for beacons and conversation attachment through the client."""

    @pytest.mark.asyncio
    async def test_track_visit(self, client, mock_response):
        """GIVEN a visit WHEN tracked SHOULD return the collector's answer."""
        session_id = uuid4()
        with patch.object(
            client.client,
            "request",
            new_callable=AsyncMock,
            return_value=mock_response(_track_payload(session_id=session_id)),
        ) as mock_req:
            result = await client.track(site="shop", page="/pricing")

            assert isinstance(result, TrackResult)
            assert result.unique is True
            assert result.session_id == session_id
            method, url = mock_req.call_args[0]
            assert (method, url) == ("POST", "https://beacon.example.com/track")
            assert mock_req.call_args.kwargs["json"] == {"site": "shop", "page": "/pricing"}

    @pytest.mark.asyncio
    async def test_track_event(self, client, mock_response):
        """GIVEN an event WHEN tracked SHOULD send the event kind and metadata."""
        with patch.object(
            client.client,
            "request",
            new_callable=AsyncMock,
            return_value=mock_response(_track_payload()),
        ) as mock_req:
            await client.track(
                site="shop",
                event="conversion",
                metadata={"type": "session_started"},
            )

            assert mock_req.call_args.kwargs["json"] == {
                "site": "shop",
                "event": "conversion",
                "metadata": {"type": "session_started"},
            }

    @pytest.mark.asyncio
    async def test_repeat_visit_not_unique(self, client, mock_response):
        """GIVEN a deduplicated visit SHOULD surface unique=False."""
        with patch.object(
            client.client,
            "request",
            new_callable=AsyncMock,
            return_value=mock_response(_track_payload(unique=False)),
        ):
            result = await client.track(site="shop")
            assert result.unique is False

    @pytest.mark.asyncio
    async def test_save_messages(self, client, mock_response):
        """GIVEN a session WHEN saving messages SHOULD return the stored count."""
        session_id = uuid4()
        with patch.object(
            client.client,
            "request",
            new_callable=AsyncMock,
            return_value=mock_response(
                {"status": "ok", "session_id": str(session_id), "messages_saved": 2}
            ),
        ) as mock_req:
            saved = await client.save_messages(
                session_id=session_id,
                messages=[{"role": "user", "content": "Hi"}, {"role": "assistant"}],
                metadata={"scenario": "support"},
            )

            assert saved == 2
            body = mock_req.call_args.kwargs["json"]
            assert body["session_id"] == str(session_id)
            assert body["metadata"] == {"scenario": "support"}

    @pytest.mark.asyncio
    async def test_get_stats(self, mock_response):
        """GIVEN a site WHEN fetching stats SHOULD call the per-site route."""
        c = Client(
            endpoint="https://beacon.example.com",
            admin_key="secret",
            fail_silently=False,
            max_retries=0,
        )
        with patch.object(
            c.client,
            "request",
            new_callable=AsyncMock,
            return_value=mock_response({"site": "shop", "summary": {"total_visits": 3}}),
        ) as mock_req:
            stats = await c.get_stats(site="shop")

            assert stats["summary"]["total_visits"] == 3
            assert mock_req.call_args[0] == ("GET", "https://beacon.example.com/stats/shop")

    @pytest.mark.asyncio
    async def test_get_stats_encodes_site(self, client, mock_response):
        """GIVEN a site with path characters SHOULD keep it in one path segment."""
        with patch.object(
            client.client,
            "request",
            new_callable=AsyncMock,
            return_value=mock_response({"site": "a/b?x", "summary": {}}),
        ) as mock_req:
            await client.get_stats(site="a/b?x")

            assert mock_req.call_args[0][1] == "https://beacon.example.com/stats/a%2Fb%3Fx"

    @pytest.mark.asyncio
    async def test_get_conversation_stats(self, client, mock_response):
        with patch.object(
            client.client,
            "request",
            new_callable=AsyncMock,
            return_value=mock_response({"summary": {"total_conversations": 1}}),
        ) as mock_req:
            stats = await client.get_conversation_stats()

            assert stats["summary"]["total_conversations"] == 1
            assert mock_req.call_args[0][1].endswith("/stats/conversations")

    @pytest.mark.asyncio
    async def test_context_manager(self, mock_response):
        """Client works as async context manager."""
        session_id = uuid4()
        async with Client(
            endpoint="https://beacon.example.com",
            fail_silently=False,
            max_retries=0,
        ) as c:
            with patch.object(
                c.client,
                "request",
                new_callable=AsyncMock,
                return_value=mock_response(_track_payload(session_id=session_id)),
            ):
                result = await c.track(site="test")
                assert result.session_id == session_id


class TestErrorHandling:
    """Tests for resilience: retries, silent failure, error propagation."""

    @pytest.mark.asyncio
    async def test_http_error_raised_when_not_silent(self, mock_response):
        """GIVEN fail_silently=False WHEN HTTP 401 SHOULD raise."""
        c = Client(
            endpoint="https://beacon.example.com",
            fail_silently=False,
            max_retries=0,
        )
        with patch.object(
            c.client,
            "request",
            new_callable=AsyncMock,
            return_value=mock_response({"error": "Unauthorized"}, 401),
        ):
            with pytest.raises(httpx.HTTPStatusError):
                await c.get_stats()

    @pytest.mark.asyncio
    async def test_silent_failure_returns_none(self, mock_response):
        """GIVEN fail_silently=True WHEN HTTP 500 SHOULD return None."""
        c = Client(
            endpoint="https://beacon.example.com",
            fail_silently=True,
            max_retries=0,
        )
        with patch.object(
            c.client,
            "request",
            new_callable=AsyncMock,
            return_value=mock_response({"error": "Internal server error"}, 500),
        ):
            result = await c.track(site="test")
            assert result is None

    @pytest.mark.asyncio
    async def test_retry_on_429_then_succeeds(self, mock_response):
        """GIVEN a rate-limited beacon WHEN retried SHOULD succeed on second attempt."""
        session_id = uuid4()
        c = Client(
            endpoint="https://beacon.example.com",
            fail_silently=False,
            max_retries=2,
        )
        with (
            patch.object(
                c.client,
                "request",
                new_callable=AsyncMock,
                side_effect=[
                    mock_response({"error": "Too many requests"}, 429),
                    mock_response(_track_payload(session_id=session_id)),
                ],
            ),
            patch("sitebeacon.tracker.client.asyncio.sleep", new_callable=AsyncMock),
        ):
            result = await c.track(site="test")
            assert result.session_id == session_id

    @pytest.mark.asyncio
    async def test_no_retry_on_404(self, mock_response):
        """GIVEN an unknown session SHOULD not retry."""
        c = Client(
            endpoint="https://beacon.example.com",
            fail_silently=False,
            max_retries=3,
        )
        with patch.object(
            c.client,
            "request",
            new_callable=AsyncMock,
            return_value=mock_response({"error": "Session not found"}, 404),
        ) as mock_req:
            with pytest.raises(httpx.HTTPStatusError):
                await c.save_messages(session_id=uuid4(), messages=[])
            assert mock_req.call_count == 1

    @pytest.mark.asyncio
    async def test_retry_on_connect_error(self, mock_response):
        """GIVEN a connection failure WHEN retried SHOULD succeed."""
        c = Client(
            endpoint="https://beacon.example.com",
            fail_silently=False,
            max_retries=1,
        )
        with (
            patch.object(
                c.client,
                "request",
                new_callable=AsyncMock,
                side_effect=[
                    httpx.ConnectError("refused"),
                    mock_response(_track_payload()),
                ],
            ),
            patch("sitebeacon.tracker.client.asyncio.sleep", new_callable=AsyncMock),
        ):
            result = await c.track(site="test")
            assert result is not None

    @pytest.mark.asyncio
    async def test_retry_exhaustion_raises(self, mock_response):
        """GIVEN persistent 503 WHEN retries exhausted SHOULD raise."""
        c = Client(
            endpoint="https://beacon.example.com",
            fail_silently=False,
            max_retries=2,
        )
        with (
            patch.object(
                c.client,
                "request",
                new_callable=AsyncMock,
                return_value=mock_response({}, 503),
            ) as mock_req,
            patch("sitebeacon.tracker.client.asyncio.sleep", new_callable=AsyncMock),
        ):
            with pytest.raises(httpx.HTTPStatusError):
                await c.track(site="test")
            assert mock_req.call_count == 3  # 1 initial + 2 retries

    @pytest.mark.asyncio
    async def test_retry_exhaustion_silent_returns_none(self, mock_response):
        """GIVEN persistent 503 and fail_silently=True SHOULD return None."""
        c = Client(
            endpoint="https://beacon.example.com",
            fail_silently=True,
            max_retries=2,
        )
        with (
            patch.object(
                c.client,
                "request",
                new_callable=AsyncMock,
                return_value=mock_response({}, 503),
            ),
            patch("sitebeacon.tracker.client.asyncio.sleep", new_callable=AsyncMock),
        ):
            result = await c.track(site="test")
            assert result is None


class TestNoneSessionShortCircuit:
    """Tests for the None session_id short-circuit after a silent track failure."""

    @pytest.mark.asyncio
    async def test_save_messages_none_session(self, silent_client):
        """GIVEN session_id is None SHOULD skip HTTP call."""
        with patch.object(silent_client.client, "request", new_callable=AsyncMock) as mock_req:
            result = await silent_client.save_messages(session_id=None, messages=[])
            assert result is None
            mock_req.assert_not_called()

    @pytest.mark.asyncio
    async def test_none_session_logs_warning(self):
        """GIVEN session_id is None SHOULD log a warning."""
        custom_logger = logging.getLogger("test.none_session")
        c = Client(endpoint="https://beacon.example.com", logger=custom_logger)
        with patch.object(custom_logger, "warning") as mock_warn:
            await c.save_messages(session_id=None, messages=[{"role": "user"}])
            mock_warn.assert_called_once()
            assert "session_id is None" in mock_warn.call_args[0][0]
