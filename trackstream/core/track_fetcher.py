"""
Orchestrates getting the full audio for a catalog track: resolve the source,
serve it from the disk cache, or download and cache it on a miss.
"""

import asyncio
import logging
from pathlib import Path

import aiofiles
import aiofiles.os

from trackstream.exceptions import DownloadError
from trackstream.media.integrity import FileIntegrityChecker
from trackstream.storage.cache import AudioCache
from trackstream.utils.single_flight import SingleFlight

from .source_resolver import Resolution, SourceResolver

log = logging.getLogger(__name__)


class TrackFetcher:
    """
    Returns complete audio blobs, downloading each source at most once even
    when many requests for it arrive together.
    """

    def __init__(
        self,
        resolver: SourceResolver,
        cache: AudioCache,
        downloader,
        max_concurrent_downloads: int = 4,
        verify_downloads: bool = True,
    ):
        """
        Args:
            resolver: Maps catalog ids to sources.
            cache: The on-disk audio cache.
            downloader: Provides `download(query, destination) -> Path`.
            max_concurrent_downloads: Process-wide cap on simultaneous downloads.
            verify_downloads: Check downloaded files with mutagen before caching.
        """
        self.resolver = resolver
        self.cache = cache
        self.downloader = downloader
        self.verify_downloads = verify_downloads
        self._download_semaphore = asyncio.Semaphore(max_concurrent_downloads)
        self._resolutions = SingleFlight("resolve")
        self._loads = SingleFlight("load")

    async def fetch(self, catalog_id: str) -> bytes:
        """
        Returns the full audio for a catalog track.

        Raises:
            CatalogLookupError, ResolutionError: If the source cannot be resolved.
            DownloadError: If the audio is not cached and cannot be downloaded.
        """
        resolution = await self._resolutions.run(
            catalog_id, lambda: self.resolver.resolve(catalog_id)
        )
        key = self.cache.key_for(resolution.source_id)

        if self._loads.in_flight(key):
            self.cache.stats.joined_in_flight += 1
        return await self._loads.run(key, lambda: self._load(key, resolution))

    async def _load(self, key: str, resolution: Resolution) -> bytes:
        blob = await self.cache.lookup(key)
        if blob is not None:
            log.debug(f"Cache hit for '{key}'.")
            return blob

        log.info(f"Cache miss for '{key}', downloading '{resolution.query}'.")
        blob = await self._download(key, resolution)
        await self.cache.write(key, blob)
        self.cache.stats.downloads += 1
        return blob

    async def _download(self, key: str, resolution: Resolution) -> bytes:
        async with self._download_semaphore:
            await aiofiles.os.makedirs(self.cache.cache_dir, exist_ok=True)
            staging = self.cache.staging_path(key)
            try:
                path = await self.downloader.download(resolution.query, staging)
                if self.verify_downloads:
                    await FileIntegrityChecker.verify_mp3(path)
                async with aiofiles.open(path, "rb") as f:
                    return await f.read()
            except DownloadError:
                self.cache.stats.download_failures += 1
                raise
            except OSError as e:
                self.cache.stats.download_failures += 1
                raise DownloadError(f"Error downloading track: {e}") from e
            finally:
                await asyncio.to_thread(self._remove_staging, staging)

    @staticmethod
    def _remove_staging(staging: Path) -> None:
        """Deletes the download scratch file and any intermediates yt-dlp left."""
        for leftover in staging.parent.glob(f"{staging.name}*"):
            try:
                leftover.unlink()
            except OSError as e:
                log.warning(f"Could not remove temporary file {leftover.name}: {e}")
