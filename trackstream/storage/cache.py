"""
A file-based cache of complete audio blobs, keyed by resolved source identifier.
Eviction is delegated to a pluggable policy; the default keeps everything.
"""

import asyncio
import logging
import os
import time
import uuid
from contextlib import suppress
from pathlib import Path

import aiofiles
import aiofiles.os

from trackstream.exceptions import CacheEntryNotFoundError
from trackstream.models.config import AUDIO_FORMAT
from trackstream.models.stats import CacheStats

from .eviction import CacheEntry, EvictionPolicy, NoEviction

log = logging.getLogger(__name__)


class AudioCache:
    """
    Maps cache keys to audio files under a single root directory.
    """

    CLEANUP_INTERVAL_SECONDS = 3600
    STALE_PARTIAL_SECONDS = 6 * 3600

    def __init__(
        self,
        cache_dir_path: Path,
        eviction_policy: EvictionPolicy | None = None,
        stats: CacheStats | None = None,
    ):
        """
        Initializes the audio cache. The directory is created lazily on first write.

        Args:
            cache_dir_path: The directory where audio files will be stored.
            eviction_policy: Strategy deciding which files to delete after writes.
            stats: Optional counters updated on lookups, writes and evictions.
        """
        self.cache_dir = Path(cache_dir_path)
        self.eviction_policy = eviction_policy or NoEviction()
        self.stats = stats or CacheStats()
        self._evict_lock = asyncio.Lock()
        self._cleanup_task: asyncio.Task | None = None

    @staticmethod
    def key_for(source_id: str) -> str:
        """Derives the cache key (and on-disk filename) for a source identifier."""
        return f"{source_id}.{AUDIO_FORMAT}"

    def path_for(self, key: str) -> Path:
        """Resolves a key to its path, refusing keys that could leave the cache root."""
        if (
            not key
            or key.startswith(".")
            or "/" in key
            or "\\" in key
            or "\x00" in key
        ):
            raise ValueError(f"Invalid cache key: {key!r}")
        return self.cache_dir / key

    async def exists(self, key: str) -> bool:
        return await aiofiles.os.path.isfile(self.path_for(key))

    async def lookup(self, key: str) -> bytes | None:
        """Returns the blob under key, or None on a miss. Counts the hit or miss."""
        try:
            blob = await self.read(key)
        except CacheEntryNotFoundError:
            self.stats.record_lookup(False)
            return None
        self.stats.record_lookup(True)
        return blob

    async def read(self, key: str) -> bytes:
        """
        Returns the full contents of the blob stored under key.

        Raises:
            CacheEntryNotFoundError: If no blob exists for key.
        """
        path = self.path_for(key)
        try:
            async with aiofiles.open(path, "rb") as f:
                blob = await f.read()
        except FileNotFoundError as e:
            raise CacheEntryNotFoundError(f"No cached audio for '{key}'.") from e

        await asyncio.to_thread(self._touch, path)
        return blob

    async def write(self, key: str, blob: bytes) -> None:
        """
        Persists blob under key, replacing any existing file atomically.
        """
        path = self.path_for(key)
        await aiofiles.os.makedirs(self.cache_dir, exist_ok=True)

        tmp_path = self.cache_dir / f".{key}.{uuid.uuid4().hex}.part"
        try:
            async with aiofiles.open(tmp_path, "wb") as f:
                await f.write(blob)
            await aiofiles.os.replace(tmp_path, path)
        except BaseException:
            with suppress(OSError):
                await aiofiles.os.remove(tmp_path)
            raise

        self.stats.bytes_written += len(blob)
        log.debug(f"Cached '{key}' ({len(blob)} bytes).")
        await self.enforce_policy(protected={key})

    async def delete(self, key: str) -> bool:
        try:
            await aiofiles.os.remove(self.path_for(key))
            return True
        except FileNotFoundError:
            return False

    def staging_path(self, key: str) -> Path:
        """A unique scratch location next to the cache for a download in progress."""
        stem = self.path_for(key).stem
        return self.cache_dir / f".{stem}.{uuid.uuid4().hex}.download"

    def entries(self) -> list[CacheEntry]:
        """Lists every complete blob in the cache. Blocking; use from a thread."""
        if not self.cache_dir.is_dir():
            return []
        found = []
        for path in self.cache_dir.glob(f"*.{AUDIO_FORMAT}"):
            if path.name.startswith("."):
                continue
            try:
                st = path.stat()
            except OSError:
                continue
            found.append(
                CacheEntry(
                    key=path.name,
                    path=path,
                    size=st.st_size,
                    last_used=max(st.st_atime, st.st_mtime),
                )
            )
        return found

    def total_size(self) -> int:
        return sum(e.size for e in self.entries())

    async def enforce_policy(self, protected: set[str] | None = None) -> int:
        """Runs the eviction policy once and deletes the entries it selects."""
        if isinstance(self.eviction_policy, NoEviction):
            return 0
        async with self._evict_lock:
            return await asyncio.to_thread(self._evict, protected or set())

    def _evict(self, protected: set[str]) -> int:
        victims = self.eviction_policy.select(self.entries(), protected)
        removed = 0
        for entry in victims:
            try:
                entry.path.unlink()
                removed += 1
            except FileNotFoundError:
                continue
            except OSError as e:
                log.warning(f"Failed to evict cached file {entry.key}: {e}")
        if removed:
            self.stats.evictions += removed
            log.debug(
                f"Cache eviction ({self.eviction_policy.describe()}): "
                f"removed {removed} entries."
            )
        return removed

    @staticmethod
    def _touch(path: Path) -> None:
        """Bumps the access time so LRU eviction sees the entry as recently used."""
        with suppress(OSError):
            st = path.stat()
            os.utime(path, (time.time(), st.st_mtime))

    def remove_stale_partials(self, older_than: float | None = None) -> int:
        """
        Deletes scratch files (interrupted writes and downloads) not modified
        for older_than seconds. Blocking; use from a thread.
        """
        if older_than is None:
            older_than = self.STALE_PARTIAL_SECONDS
        if not self.cache_dir.is_dir():
            return 0
        cutoff = time.time() - older_than
        removed = 0
        for path in self.cache_dir.glob(".*"):
            if not (path.name.endswith(".part") or ".download" in path.name):
                continue
            try:
                if path.stat().st_mtime <= cutoff:
                    path.unlink()
                    removed += 1
            except FileNotFoundError:
                continue
            except OSError as e:
                log.warning(f"Failed to remove stale file {path.name}: {e}")
        if removed:
            log.info(f"Removed {removed} stale partial file(s) from the cache.")
        return removed

    async def start_background_cleanup(self):
        """Starts the periodic background eviction and scratch-file sweep."""
        if self._cleanup_task is None or self._cleanup_task.done():
            self._cleanup_task = asyncio.create_task(self._cleanup_loop())
            log.debug("Started cache background cleanup task.")

    async def _cleanup_loop(self):
        """Runs the eviction policy and the stale-file sweep periodically."""
        while True:
            try:
                await self.enforce_policy()
                await asyncio.to_thread(self.remove_stale_partials)
                await asyncio.sleep(self.CLEANUP_INTERVAL_SECONDS)
            except asyncio.CancelledError:
                log.debug("Cache cleanup task cancelled.")
                break
            except Exception as e:
                log.warning(f"Error in cache cleanup loop: {e}")
                await asyncio.sleep(self.CLEANUP_INTERVAL_SECONDS)

    async def stop_background_cleanup(self):
        """Stops the background cleanup task gracefully."""
        if self._cleanup_task and not self._cleanup_task.done():
            self._cleanup_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._cleanup_task
            log.debug("Stopped cache background cleanup task.")

    def clear(self) -> int:
        """Removes all cached audio and leftover partial files. Returns the count."""
        log.info("Clearing all cached audio...")
        if not self.cache_dir.is_dir():
            return 0
        removed = 0
        for path in self.cache_dir.iterdir():
            if not path.is_file():
                continue
            try:
                path.unlink()
                if not path.name.startswith("."):
                    removed += 1
            except OSError as e:
                log.error(f"Failed to remove {path.name}: {e}")
        return removed
