"""
Async client for the Spotify Web API with rate limiting and circuit breaker protection.
"""

import asyncio
import logging
import time
from typing import Any, Dict, Optional
from urllib.parse import quote

import aiohttp

from trackstream.exceptions import AuthenticationError, CatalogLookupError
from trackstream.utils.circuit_breaker import CircuitBreaker, CircuitBreakerError

from .auth import ClientCredentialsAuthenticator
from .rate_limiter import AdaptiveRateLimiter

log = logging.getLogger(__name__)


class SpotifyRequestError(CatalogLookupError):
    """A 4xx answer from Spotify: the request was bad, the service is fine."""

    def __init__(self, message: str, status: int):
        super().__init__(message)
        self.status = status


class SpotifyAPIClient:
    """
    Async client for the subset of the Spotify Web API the server needs.

    Features:
    - Client credentials authentication with background token refresh
    - Circuit breaker for API resilience
    - Adaptive rate limiting honouring Retry-After
    - Connection pooling
    """

    BASE_URL = "https://api.spotify.com/v1/"

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        market: str = "US",
        max_connections: int = 16,
    ):
        """
        Initializes the API client.

        Args:
            client_id: Spotify application client id.
            client_secret: Spotify application client secret.
            market: Default market for endpoints that require one.
            max_connections: Size of the HTTP connection pool.
        """
        self.market = market
        self.max_connections = max_connections

        self._session: Optional[aiohttp.ClientSession] = None
        self._rate_limiter = AdaptiveRateLimiter()
        self._authenticator = ClientCredentialsAuthenticator(
            self, client_id, client_secret
        )
        self._circuit_breaker = CircuitBreaker(
            name="Spotify API",
            failure_threshold=5,
            recovery_timeout=30,
            success_threshold=2,
            ignored_exceptions=(SpotifyRequestError,),
        )

    @property
    def authenticator(self) -> ClientCredentialsAuthenticator:
        """Provides access to the authentication helper."""
        return self._authenticator

    async def get_session(self) -> aiohttp.ClientSession:
        """Ensures an active aiohttp session is available."""
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(
                limit=self.max_connections,
                ttl_dns_cache=300,
                enable_cleanup_closed=True,
            )
            self._session = aiohttp.ClientSession(
                connector=connector,
                headers={"Accept-Encoding": "gzip, deflate"},
                timeout=aiohttp.ClientTimeout(total=30, connect=10, sock_read=20),
            )
        return self._session

    async def start(self) -> None:
        """Fetches the first token and starts refreshing it in the background."""
        try:
            await self._authenticator.refresh()
        except AuthenticationError as e:
            log.error(
                f"[red]Could not authenticate with Spotify at startup: {e}. "
                "Catalog requests will fail until a retry succeeds.[/red]"
            )
            await self._authenticator.start_refresh_task(failures=1)
            return
        await self._authenticator.start_refresh_task()

    async def close(self) -> None:
        """Stops the token refresher and closes the aiohttp session."""
        await self._authenticator.stop_refresh_task()
        if self._session and not self._session.closed:
            await self._session.close()

    @staticmethod
    async def _error_message(r: aiohttp.ClientResponse) -> str:
        try:
            payload = await r.json(content_type=None)
        except (aiohttp.ContentTypeError, ValueError):
            return r.reason or f"HTTP {r.status}"
        error = payload.get("error") if isinstance(payload, dict) else None
        if isinstance(error, dict):
            return error.get("message") or r.reason or f"HTTP {r.status}"
        return str(error or r.reason or f"HTTP {r.status}")

    async def api_call(self, endpoint: str, **params: Any) -> Dict[str, Any]:
        """
        Makes an authenticated GET request with rate limiting and circuit breaker.

        Raises:
            CatalogLookupError: For any transport, authentication or API failure.
        """
        token = await self._authenticator.ensure_token()
        session = await self.get_session()

        try:
            async with self._circuit_breaker:
                await self._rate_limiter.acquire()
                start_time = time.monotonic()
                async with session.get(
                    self.BASE_URL + endpoint,
                    params=params,
                    headers={"Authorization": f"Bearer {token}"},
                ) as r:
                    duration_ms = (time.monotonic() - start_time) * 1000
                    log.debug(f"GET {endpoint} -> {r.status} ({duration_ms:.0f} ms)")

                    if r.status == 429:
                        retry_after = r.headers.get("Retry-After")
                        await self._rate_limiter.on_429(
                            float(retry_after) if retry_after else None
                        )
                        raise CatalogLookupError(
                            "Spotify rate limit exceeded, try again later."
                        )
                    if r.status == 401:
                        self._authenticator.invalidate()
                        raise CatalogLookupError(
                            f"Spotify rejected the access token: "
                            f"{await self._error_message(r)}"
                        )
                    if 400 <= r.status < 500:
                        raise SpotifyRequestError(await self._error_message(r), r.status)
                    if r.status >= 500:
                        raise CatalogLookupError(
                            f"Spotify API error {r.status}: "
                            f"{await self._error_message(r)}"
                        )
                    return await r.json()

        except CircuitBreakerError as e:
            raise CatalogLookupError(str(e)) from e
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            log.debug(f"API call to {endpoint} failed: {e}")
            raise CatalogLookupError(f"Spotify request failed: {e}") from e
        except ValueError as e:
            raise CatalogLookupError(f"Spotify returned an unreadable response: {e}") from e

    @staticmethod
    def _segment(value: str) -> str:
        """Quotes a caller-supplied id so it stays a single path segment."""
        return quote(value, safe="")

    # Public API Methods
    async def get_track(self, track_id: str) -> Dict[str, Any]:
        return await self.api_call(f"tracks/{self._segment(track_id)}")

    async def get_artist(self, artist_id: str) -> Dict[str, Any]:
        return await self.api_call(f"artists/{self._segment(artist_id)}")

    async def get_artist_top_tracks(
        self, artist_id: str, market: Optional[str] = None
    ) -> Dict[str, Any]:
        return await self.api_call(
            f"artists/{self._segment(artist_id)}/top-tracks",
            market=market or self.market,
        )

    async def get_artist_albums(self, artist_id: str, limit: int = 20) -> Dict[str, Any]:
        return await self.api_call(
            f"artists/{self._segment(artist_id)}/albums", limit=limit
        )

    async def search_tracks(self, query: str, limit: int = 5) -> Dict[str, Any]:
        return await self.api_call("search", q=query, type="track", limit=limit)
