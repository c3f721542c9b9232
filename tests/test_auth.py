"""Tests for the client credentials token lifecycle."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from trackstream.api.auth import ClientCredentialsAuthenticator
from trackstream.exceptions import AuthenticationError

from .conftest import FakeHTTPResponse, FakeHTTPSession


class FakeClock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


def _authenticator(clock=None, sleep=None):
    kwargs = {"clock": clock or FakeClock()}
    if sleep is not None:
        kwargs["sleep"] = sleep
    auth = ClientCredentialsAuthenticator(None, "id", "secret", **kwargs)
    auth._request_token = AsyncMock(
        return_value={"access_token": "token-1", "expires_in": 3600}
    )
    return auth


class TestBackoff:
    @pytest.mark.parametrize(
        "attempt,expected",
        [(1, 1.0), (2, 2.0), (3, 4.0), (9, 256.0), (10, 300.0), (50, 300.0)],
    )
    def test_delay_doubles_up_to_cap(self, attempt, expected):
        assert ClientCredentialsAuthenticator.backoff_delay(attempt) == expected


class TestTokens:
    @pytest.mark.asyncio
    async def test_refresh_sets_expiry(self):
        clock = FakeClock(100.0)
        auth = _authenticator(clock)

        await auth.refresh()

        assert auth.access_token == "token-1"
        assert auth.expires_at == 3700.0
        assert auth.has_valid_token()
        assert auth.seconds_until_refresh() == 3540.0

    @pytest.mark.asyncio
    async def test_ensure_token_refreshes_once_for_concurrent_callers(self):
        auth = _authenticator()

        tokens = await asyncio.gather(*(auth.ensure_token() for _ in range(5)))

        assert tokens == ["token-1"] * 5
        auth._request_token.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_expired_token_is_replaced(self):
        clock = FakeClock()
        auth = _authenticator(clock)
        await auth.ensure_token()

        clock.now = 3601
        auth._request_token.return_value = {"access_token": "token-2"}

        assert await auth.ensure_token() == "token-2"

    @pytest.mark.asyncio
    async def test_response_without_token(self):
        auth = _authenticator()
        auth._request_token.return_value = {"token_type": "bearer"}

        with pytest.raises(AuthenticationError):
            await auth.refresh()
        assert not auth.has_valid_token()

    @pytest.mark.asyncio
    async def test_invalidate(self):
        auth = _authenticator()
        await auth.refresh()
        auth.invalidate()
        assert not auth.has_valid_token()


class TestRefreshLoop:
    @pytest.mark.asyncio
    async def test_retries_with_backoff_then_schedules_before_expiry(self):
        delays = []

        async def fake_sleep(delay):
            delays.append(delay)
            if len(delays) == 4:
                raise asyncio.CancelledError

        auth = _authenticator(sleep=fake_sleep)
        auth._request_token.side_effect = [
            AuthenticationError("down"),
            AuthenticationError("still down"),
            {"access_token": "token-1", "expires_in": 3600},
        ]

        await auth._refresh_loop()

        assert delays == [0.0, 1.0, 2.0, 3540.0]
        assert auth.access_token == "token-1"

    @pytest.mark.asyncio
    async def test_stop_cancels_task(self):
        auth = ClientCredentialsAuthenticator(None, "id", "secret")
        auth._request_token = AsyncMock(
            return_value={"access_token": "t", "expires_in": 3600}
        )
        await auth.refresh()
        await auth.start_refresh_task()

        await auth.stop_refresh_task()

        assert auth._refresh_task.done()

    @pytest.mark.asyncio
    async def test_loop_survives_unexpected_errors(self):
        delays = []

        async def fake_sleep(delay):
            delays.append(delay)
            if len(delays) == 3:
                raise asyncio.CancelledError

        auth = _authenticator(sleep=fake_sleep)
        auth._request_token.side_effect = [
            RuntimeError("boom"),
            {"access_token": "token-1", "expires_in": 3600},
        ]

        await auth._refresh_loop()

        assert delays == [0.0, 1.0, 3540.0]

    @pytest.mark.asyncio
    async def test_task_started_after_failure_begins_with_backoff(self):
        delays = []

        async def fake_sleep(delay):
            delays.append(delay)
            raise asyncio.CancelledError

        auth = _authenticator(sleep=fake_sleep)
        await auth.start_refresh_task(failures=1)
        await auth._refresh_task

        assert delays == [1.0]


def _session_authenticator(*responses, sleep=None):
    session = FakeHTTPSession(*responses)
    api_client = MagicMock()
    api_client.get_session = AsyncMock(return_value=session)
    kwargs = {"clock": FakeClock()}
    if sleep is not None:
        kwargs["sleep"] = sleep
    return ClientCredentialsAuthenticator(api_client, "id", "secret", **kwargs), session


class TestTokenEndpoint:
    @pytest.mark.asyncio
    async def test_posts_client_credentials_grant(self):
        auth, session = _session_authenticator(
            FakeHTTPResponse(payload={"access_token": "abc", "expires_in": 3600})
        )

        await auth.refresh()

        method, url, kwargs = session.requests[0]
        assert (method, url) == ("POST", ClientCredentialsAuthenticator.TOKEN_URL)
        assert kwargs["data"] == {"grant_type": "client_credentials"}
        assert auth.access_token == "abc"

    @pytest.mark.asyncio
    async def test_rejection_reports_spotify_reason(self):
        auth, _ = _session_authenticator(
            FakeHTTPResponse(
                400,
                payload={"error": "invalid_client", "error_description": "Bad secret"},
            )
        )
        with pytest.raises(AuthenticationError, match="Bad secret"):
            await auth.refresh()

    @pytest.mark.asyncio
    async def test_non_json_rejection(self):
        auth, _ = _session_authenticator(
            FakeHTTPResponse(401, text="<html>Unauthorized</html>", reason="Unauthorized")
        )
        with pytest.raises(AuthenticationError, match="Unauthorized"):
            await auth.refresh()

    @pytest.mark.parametrize(
        "response",
        [
            FakeHTTPResponse(text="not json"),
            FakeHTTPResponse(payload=["access_token"]),
            FakeHTTPResponse(payload={"access_token": "abc", "expires_in": "soon"}),
        ],
    )
    @pytest.mark.asyncio
    async def test_unusable_success_body(self, response):
        auth, _ = _session_authenticator(response)
        with pytest.raises(AuthenticationError):
            await auth.refresh()
        assert not auth.has_valid_token()

    @pytest.mark.asyncio
    async def test_server_error(self):
        auth, _ = _session_authenticator(FakeHTTPResponse(503))
        with pytest.raises(AuthenticationError, match="HTTP 503"):
            await auth.refresh()

    @pytest.mark.asyncio
    async def test_refresh_loop_keeps_retrying_after_html_error_page(self):
        delays = []

        async def fake_sleep(delay):
            delays.append(delay)
            if len(delays) == 3:
                raise asyncio.CancelledError

        auth, session = _session_authenticator(
            FakeHTTPResponse(401, text="<html>Unauthorized</html>", reason="Unauthorized"),
            sleep=fake_sleep,
        )

        await auth._refresh_loop()

        assert delays == [0.0, 1.0, 2.0]
        assert len(session.requests) == 2
