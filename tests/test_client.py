"""Tests for the Spotify API client and its rate limiter."""

import asyncio
from unittest.mock import AsyncMock

import aiohttp
import pytest

from trackstream.api.client import SpotifyAPIClient, SpotifyRequestError
from trackstream.api.rate_limiter import AdaptiveRateLimiter
from trackstream.exceptions import AuthenticationError, CatalogLookupError
from trackstream.utils.circuit_breaker import CircuitState

from .conftest import FakeHTTPResponse, FakeHTTPSession


def _client(*responses):
    client = SpotifyAPIClient("id", "secret")
    client._session = FakeHTTPSession(*responses)
    client.authenticator._request_token = AsyncMock(
        return_value={"access_token": "tok", "expires_in": 3600}
    )
    client._rate_limiter = AsyncMock()
    return client


class TestApiCall:
    @pytest.mark.asyncio
    async def test_authenticated_get(self):
        client = _client(FakeHTTPResponse(payload={"id": "t1", "name": "One"}))

        assert await client.get_track("t1") == {"id": "t1", "name": "One"}

        method, url, kwargs = client._session.requests[0]
        assert (method, url) == ("GET", SpotifyAPIClient.BASE_URL + "tracks/t1")
        assert kwargs["headers"] == {"Authorization": "Bearer tok"}
        client._rate_limiter.acquire.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_ids_stay_in_their_path_segment(self):
        client = _client(FakeHTTPResponse(payload={}))

        await client.get_track("../artists/X?market=ZZ")
        await client.get_artist_albums("a/b")

        urls = [url for _, url, _ in client._session.requests]
        assert urls == [
            SpotifyAPIClient.BASE_URL + "tracks/..%2Fartists%2FX%3Fmarket%3DZZ",
            SpotifyAPIClient.BASE_URL + "artists/a%2Fb/albums",
        ]

    @pytest.mark.asyncio
    async def test_search_parameters(self):
        client = _client(FakeHTTPResponse(payload={"tracks": {"items": []}}))

        await client.search_tracks("song one", limit=5)

        _, url, kwargs = client._session.requests[0]
        assert url.endswith("/search")
        assert kwargs["params"] == {"q": "song one", "type": "track", "limit": 5}

    @pytest.mark.asyncio
    async def test_unauthorized_drops_token(self):
        client = _client(
            FakeHTTPResponse(
                401, payload={"error": {"status": 401, "message": "The access token expired"}}
            )
        )

        with pytest.raises(CatalogLookupError, match="access token expired"):
            await client.get_track("t1")
        assert client.authenticator.access_token is None

    @pytest.mark.asyncio
    async def test_rate_limited_honours_retry_after(self):
        client = _client(FakeHTTPResponse(429, headers={"Retry-After": "7"}))

        with pytest.raises(CatalogLookupError, match="rate limit"):
            await client.get_track("t1")
        client._rate_limiter.on_429.assert_awaited_once_with(7.0)

    @pytest.mark.asyncio
    async def test_client_errors_do_not_open_circuit(self):
        client = _client(
            FakeHTTPResponse(404, payload={"error": {"message": "invalid id"}})
        )

        for _ in range(6):
            with pytest.raises(SpotifyRequestError) as excinfo:
                await client.get_track("nope")
            assert excinfo.value.status == 404

        assert client._circuit_breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_server_errors_open_circuit(self):
        client = _client(FakeHTTPResponse(502, text="<html>Bad Gateway</html>"))

        for _ in range(5):
            with pytest.raises(CatalogLookupError, match="Spotify API error 502"):
                await client.get_track("t1")

        assert client._circuit_breaker.state == CircuitState.OPEN
        with pytest.raises(CatalogLookupError, match="unavailable"):
            await client.get_track("t1")
        assert len(client._session.requests) == 5

    @pytest.mark.asyncio
    async def test_transport_failure(self):
        client = _client(aiohttp.ClientConnectionError("connection reset"))

        with pytest.raises(CatalogLookupError, match="Spotify request failed"):
            await client.get_track("t1")

    @pytest.mark.asyncio
    async def test_unreadable_body(self):
        client = _client(FakeHTTPResponse(text="{broken"))

        with pytest.raises(CatalogLookupError, match="unreadable"):
            await client.get_track("t1")


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_survives_authentication_failure(self):
        client = _client(FakeHTTPResponse(payload={}))
        client.authenticator._request_token.side_effect = AuthenticationError("down")

        await client.start()

        task = client.authenticator._refresh_task
        assert task is not None and not task.done()
        with pytest.raises(CatalogLookupError):
            await client.get_track("t1")

        await client.close()
        assert task.done()
        assert client._session.closed


class TestAdaptiveRateLimiter:
    @pytest.fixture
    def sleeps(self, monkeypatch):
        recorded = []

        async def fake_sleep(delay):
            recorded.append(delay)

        monkeypatch.setattr(asyncio, "sleep", fake_sleep)
        return recorded

    @pytest.mark.asyncio
    async def test_spaces_out_calls(self, sleeps):
        limiter = AdaptiveRateLimiter(initial_calls_per_second=5.0)

        await limiter.acquire()
        await limiter.acquire()

        assert len(sleeps) == 1
        assert 0.15 < sleeps[0] <= 0.2

    @pytest.mark.asyncio
    async def test_429_halves_rate_and_blocks_for_retry_after(self, sleeps):
        limiter = AdaptiveRateLimiter(initial_calls_per_second=4.0)

        await limiter.on_429(retry_after=2.0)
        await limiter.acquire()

        assert limiter.rate == 2.0
        assert 1.9 < sleeps[0] <= 2.0

    @pytest.mark.asyncio
    async def test_rate_never_drops_below_one(self, sleeps):
        limiter = AdaptiveRateLimiter(initial_calls_per_second=1.5)

        await limiter.on_429()
        await limiter.on_429()

        assert limiter.rate == 1.0
