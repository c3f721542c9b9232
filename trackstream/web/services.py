"""
Wires the long-lived components of the server together from a ServerConfig.
"""

import logging
from dataclasses import dataclass

from trackstream.api.client import SpotifyAPIClient
from trackstream.core.catalog import CatalogService
from trackstream.core.range_responder import RangeResponder
from trackstream.core.source_resolver import Resolution, SourceResolver
from trackstream.core.track_fetcher import TrackFetcher
from trackstream.media.resolver import YouTubeResolver
from trackstream.models.config import ServerConfig
from trackstream.models.stats import CacheStats
from trackstream.storage.cache import AudioCache
from trackstream.storage.eviction import build_eviction_policy
from trackstream.storage.resolution_cache import ResolutionCache

log = logging.getLogger(__name__)


@dataclass
class StreamServices:
    """Everything a request handler needs, created once per process."""

    client: SpotifyAPIClient
    catalog: CatalogService
    cache: AudioCache
    fetcher: TrackFetcher
    responder: RangeResponder

    async def start(self) -> None:
        await self.client.start()
        await self.cache.start_background_cleanup()

    async def stop(self) -> None:
        await self.cache.stop_background_cleanup()
        await self.client.close()


def build_services(config: ServerConfig) -> StreamServices:
    client = SpotifyAPIClient(config.client_id, config.client_secret, config.market)

    policy = build_eviction_policy(config.cache_max_bytes, config.cache_max_age_days)
    cache = AudioCache(config.cache_path, eviction_policy=policy, stats=CacheStats())
    log.info(f"Audio cache at '{cache.cache_dir}' (eviction: {policy.describe()}).")

    resolution_cache = (
        ResolutionCache[Resolution](ttl_seconds=config.resolution_ttl_seconds)
        if config.resolution_ttl_seconds > 0
        else None
    )
    resolver = SourceResolver(client, YouTubeResolver(), cache=resolution_cache)
    fetcher = TrackFetcher(
        resolver,
        cache,
        YouTubeResolver(download_timeout=config.download_timeout_seconds),
        max_concurrent_downloads=config.max_concurrent_downloads,
        verify_downloads=config.verify_downloads,
    )
    return StreamServices(
        client=client,
        catalog=CatalogService(client, config.market),
        cache=cache,
        fetcher=fetcher,
        responder=RangeResponder(fetcher),
    )
