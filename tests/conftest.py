"""
Shared fakes and fixtures for the trackstream tests.

The fakes stand in for Spotify, the YouTube search and the yt-dlp download so
the pipeline can be exercised end to end against a real on-disk cache.
"""

import asyncio
import json
from pathlib import Path

import aiohttp
import pytest

from trackstream.core.range_responder import RangeResponder
from trackstream.core.source_resolver import SourceResolver
from trackstream.core.track_fetcher import TrackFetcher
from trackstream.exceptions import CatalogLookupError, DownloadError
from trackstream.models.stats import CacheStats
from trackstream.storage.cache import AudioCache

AUDIO = bytes(range(256)) * 40  # 10240 bytes


class FakeCatalogClient:
    """Knows a fixed set of tracks; anything else is an invalid id."""

    def __init__(self, tracks=None):
        self.tracks = tracks if tracks is not None else {
            "track-1": {"name": "Song One", "artists": [{"name": "Artist A"}]},
            "track-2": {"name": "Song Two", "artists": [{"name": "Artist B"}]},
        }
        self.calls = []

    async def get_track(self, track_id):
        self.calls.append(track_id)
        await asyncio.sleep(0)
        if track_id not in self.tracks:
            raise CatalogLookupError("invalid id")
        return self.tracks[track_id]


class FakeAudioResolver:
    """Maps search queries to video ids."""

    def __init__(self, results=None):
        self.results = results if results is not None else {
            "Song One Artist A": "vid-one",
            "Song Two Artist B": "vid-two",
        }
        self.queries = []

    async def search(self, query, limit=1):
        self.queries.append(query)
        await asyncio.sleep(0)
        if query not in self.results:
            return []
        return [{"id": self.results[query], "title": query}]


class FakeDownloader:
    """Writes a payload where yt-dlp would, after an optional delay."""

    def __init__(self, payload=AUDIO, delay=0.0, error=None):
        self.payload = payload
        self.delay = delay
        self.error = error
        self.calls = []

    async def download(self, query, destination: Path) -> Path:
        self.calls.append(query)
        await asyncio.sleep(self.delay)
        if self.error:
            raise DownloadError(self.error)
        output = destination.with_name(f"{destination.name}.mp3")
        output.write_bytes(self.payload)
        return output


class FakeHTTPResponse:
    """Just enough of aiohttp.ClientResponse for the Spotify client and auth."""

    def __init__(self, status=200, payload=None, text=None, headers=None, reason="OK"):
        self.status = status
        self.reason = reason
        self.headers = headers or {}
        self._payload = payload
        self._text = text

    async def json(self, content_type="application/json"):
        if self._text is not None:
            return json.loads(self._text)
        return self._payload

    def raise_for_status(self):
        if self.status >= 400:
            raise aiohttp.ClientConnectionError(f"HTTP {self.status}")

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False


class FakeHTTPSession:
    """Replays responses in order, repeating the last one; records requests."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []
        self.closed = False

    def _next(self, method, url, kwargs):
        self.requests.append((method, url, kwargs))
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return response

    def get(self, url, **kwargs):
        return self._next("GET", url, kwargs)

    def post(self, url, **kwargs):
        return self._next("POST", url, kwargs)

    async def close(self):
        self.closed = True


@pytest.fixture
def catalog_client():
    return FakeCatalogClient()


@pytest.fixture
def audio_resolver():
    return FakeAudioResolver()


@pytest.fixture
def downloader():
    return FakeDownloader()


@pytest.fixture
def audio_cache(tmp_path):
    return AudioCache(tmp_path / "spotifydl-cache", stats=CacheStats())


@pytest.fixture
def fetcher(catalog_client, audio_resolver, downloader, audio_cache):
    resolver = SourceResolver(catalog_client, audio_resolver)
    return TrackFetcher(resolver, audio_cache, downloader, verify_downloads=False)


@pytest.fixture
def responder(fetcher):
    return RangeResponder(fetcher)
