"""
Handles authentication with the Spotify Web API using the client credentials
grant, including background refresh of the access token before it expires.
"""

import asyncio
import logging
import time
from typing import TYPE_CHECKING, Any, Awaitable, Callable

import aiohttp

from trackstream.exceptions import AuthenticationError

if TYPE_CHECKING:
    from .client import SpotifyAPIClient

log = logging.getLogger(__name__)


class ClientCredentialsAuthenticator:
    """
    Owns the single process-wide Spotify access token.
    """

    TOKEN_URL = "https://accounts.spotify.com/api/token"  # noqa: S105
    REFRESH_MARGIN_SECONDS = 60
    BACKOFF_BASE_SECONDS = 1.0
    BACKOFF_MAX_SECONDS = 300.0

    def __init__(
        self,
        api_client: "SpotifyAPIClient",
        client_id: str,
        client_secret: str,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Initializes the authenticator.

        Args:
            api_client: The client whose HTTP session is used for token requests.
            client_id: Spotify application client id.
            client_secret: Spotify application client secret.
            clock: Monotonic time source, replaceable in tests.
            sleep: Coroutine used to wait between refreshes, replaceable in tests.
        """
        self._api_client = api_client
        self._client_id = client_id
        self._client_secret = client_secret
        self._clock = clock
        self._sleep = sleep

        self.access_token: str | None = None
        self.expires_at: float = 0.0
        self._refresh_lock = asyncio.Lock()
        self._refresh_task: asyncio.Task | None = None

    def has_valid_token(self) -> bool:
        return bool(self.access_token) and self._clock() < self.expires_at

    def seconds_until_refresh(self) -> float:
        """Time left before the token should be replaced, never negative."""
        return max(0.0, self.expires_at - self.REFRESH_MARGIN_SECONDS - self._clock())

    @classmethod
    def backoff_delay(cls, attempt: int) -> float:
        """Exponential backoff for the n-th consecutive failed refresh (1-based)."""
        return min(
            cls.BACKOFF_MAX_SECONDS, cls.BACKOFF_BASE_SECONDS * (2 ** (attempt - 1))
        )

    async def _request_token(self) -> dict[str, Any]:
        session = await self._api_client.get_session()
        auth = aiohttp.BasicAuth(self._client_id, self._client_secret)
        async with session.post(
            self.TOKEN_URL, data={"grant_type": "client_credentials"}, auth=auth
        ) as r:
            if r.status in (400, 401):
                try:
                    payload = await r.json(content_type=None)
                except ValueError:
                    payload = None
                reason = r.reason or f"HTTP {r.status}"
                if isinstance(payload, dict):
                    reason = (
                        payload.get("error_description") or payload.get("error") or reason
                    )
                raise AuthenticationError(
                    f"Spotify rejected the client credentials: {reason}"
                )
            r.raise_for_status()
            return await r.json(content_type=None)

    async def refresh(self) -> None:
        """
        Requests a new access token.

        Raises:
            AuthenticationError: If the token endpoint fails or answers without a token.
        """
        async with self._refresh_lock:
            await self._refresh_unlocked()

    async def _refresh_unlocked(self) -> None:
        try:
            payload = await self._request_token()
        except AuthenticationError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise AuthenticationError(f"Failed to retrieve an access token: {e}") from e
        except ValueError as e:
            raise AuthenticationError(f"Token response was not valid JSON: {e}") from e

        if not isinstance(payload, dict) or not payload.get("access_token"):
            raise AuthenticationError("Token response did not contain a token.")

        try:
            expires_in = int(payload.get("expires_in", 3600))
        except (TypeError, ValueError) as e:
            raise AuthenticationError(
                f"Token response had an invalid expiry: {payload.get('expires_in')!r}"
            ) from e

        self.access_token = payload["access_token"]
        self.expires_at = self._clock() + expires_in
        log.info("Spotify access token retrieved and set.")

    async def ensure_token(self) -> str:
        """Returns a valid access token, refreshing first if none is held."""
        if not self.has_valid_token():
            async with self._refresh_lock:
                # Another request may have refreshed while we waited.
                if not self.has_valid_token():
                    await self._refresh_unlocked()
        return self.access_token

    def invalidate(self) -> None:
        """Forgets the current token, e.g. after Spotify answered 401."""
        self.access_token = None
        self.expires_at = 0.0

    async def start_refresh_task(self, failures: int = 0) -> None:
        """
        Starts the background task that keeps the token fresh.

        Args:
            failures: Consecutive failed refreshes so far; a non-zero value
                makes the first retry wait the matching backoff delay.
        """
        if self._refresh_task is None or self._refresh_task.done():
            self._refresh_task = asyncio.create_task(self._refresh_loop(failures))
            log.debug("Started token refresh task.")

    async def stop_refresh_task(self) -> None:
        if self._refresh_task and not self._refresh_task.done():
            self._refresh_task.cancel()
            try:
                await self._refresh_task
            except asyncio.CancelledError:
                pass
            log.debug("Stopped token refresh task.")

    async def _refresh_loop(self, failures: int = 0) -> None:
        """
        Refreshes shortly before expiry. After a failure, retries with exponential
        backoff until a refresh succeeds; catalog calls in between fail fast.
        """
        delay = self.backoff_delay(failures) if failures else self.seconds_until_refresh()
        while True:
            try:
                await self._sleep(delay)
                await self.refresh()
                failures = 0
                delay = self.seconds_until_refresh()
            except asyncio.CancelledError:
                log.debug("Token refresh task cancelled.")
                break
            except AuthenticationError as e:
                failures += 1
                delay = self.backoff_delay(failures)
                log.error(
                    f"[red]Token refresh failed (attempt {failures}): {e}. "
                    f"Retrying in {delay:.0f}s.[/red]"
                )
            except Exception as e:
                failures += 1
                delay = self.backoff_delay(failures)
                log.error(
                    f"[red]Unexpected error refreshing token (attempt {failures}): "
                    f"{e}. Retrying in {delay:.0f}s.[/red]"
                )
                log.debug("Full traceback:", exc_info=True)
