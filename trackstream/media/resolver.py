"""
Finds and downloads audio from YouTube using yt-dlp.

yt-dlp is synchronous, so every call runs in a worker thread to keep the
event loop free while a search or download is in progress.
"""

import asyncio
import logging
import threading
from pathlib import Path
from typing import Any, Optional

from yt_dlp import YoutubeDL
from yt_dlp.utils import DownloadCancelled, YoutubeDLError

from trackstream.exceptions import DownloadError, ResolutionError
from trackstream.models.config import AUDIO_FORMAT

log = logging.getLogger(__name__)


class YouTubeResolver:
    """Searches YouTube for a track and extracts its audio as MP3."""

    def __init__(
        self,
        download_timeout: float = 300,
        cookiefile: Optional[str] = None,
        socket_timeout: int = 15,
    ):
        self.download_timeout = download_timeout
        self.cookiefile = cookiefile
        self.socket_timeout = socket_timeout

    def _base_options(self) -> dict[str, Any]:
        opts: dict[str, Any] = {
            "quiet": True,
            "no_warnings": True,
            "noplaylist": True,
            "nocheckcertificate": True,
            "socket_timeout": self.socket_timeout,
        }
        if self.cookiefile:
            opts["cookiefile"] = self.cookiefile
        return opts

    def _search_options(self) -> dict[str, Any]:
        return {
            **self._base_options(),
            "skip_download": True,
            "extract_flat": "in_playlist",
        }

    def _download_options(self, destination: Path) -> dict[str, Any]:
        return {
            **self._base_options(),
            "format": "bestaudio/best",
            "outtmpl": f"{destination}.%(ext)s",
            "retries": 3,
            "fragment_retries": 3,
            "postprocessors": [
                {
                    "key": "FFmpegExtractAudio",
                    "preferredcodec": AUDIO_FORMAT,
                    "preferredquality": "0",
                }
            ],
        }

    @staticmethod
    def _cancel_hook(cancelled: threading.Event):
        """A progress hook that aborts yt-dlp once cancelled is set."""

        def hook(status: dict[str, Any]) -> None:
            if cancelled.is_set():
                raise DownloadCancelled("download abandoned after timeout")

        return hook

    @staticmethod
    def _extract(target: str, opts: dict[str, Any], download: bool) -> dict[str, Any]:
        with YoutubeDL(opts) as ydl:
            return ydl.extract_info(target, download=download)

    async def search(self, query: str, limit: int = 1) -> list[dict[str, Any]]:
        """
        Returns up to limit search results, best match first.

        Raises:
            ResolutionError: If yt-dlp fails.
        """
        target = f"ytsearch{limit}:{query}"
        try:
            result = await asyncio.to_thread(
                self._extract, target, self._search_options(), False
            )
        except YoutubeDLError as e:
            raise ResolutionError(f"Search for '{query}' failed: {e}") from e

        entries = [e for e in (result or {}).get("entries") or [] if e and e.get("id")]
        log.debug(f"Search '{query}' returned {len(entries)} result(s).")
        return entries

    async def download(self, query: str, destination: Path) -> Path:
        """
        Downloads the best match for query and converts it to MP3.

        A worker thread cannot be killed, so on timeout the download is told to
        abort at its next progress update and this call returns only once the
        thread has exited. Nothing is written to destination afterwards.

        Args:
            query: The search string the source was resolved with.
            destination: Output path without extension.

        Returns:
            Path of the produced MP3 file.

        Raises:
            DownloadError: If yt-dlp fails, times out, or produces no file.
        """
        target = f"ytsearch1:{query}"
        output = destination.with_name(f"{destination.name}.{AUDIO_FORMAT}")
        cancelled = threading.Event()
        hook = self._cancel_hook(cancelled)
        opts = {
            **self._download_options(destination),
            "progress_hooks": [hook],
            "postprocessor_hooks": [hook],
        }
        log.info(f"Downloading audio for '{query}'...")

        worker = asyncio.ensure_future(
            asyncio.to_thread(self._extract, target, opts, True)
        )
        try:
            await asyncio.wait_for(asyncio.shield(worker), timeout=self.download_timeout)
        except asyncio.TimeoutError as e:
            raise DownloadError(
                f"Error downloading track: timed out after {self.download_timeout:g}s"
            ) from e
        except YoutubeDLError as e:
            raise DownloadError(f"Error downloading track: {e}") from e
        finally:
            if not worker.done():
                cancelled.set()
                log.warning(f"Waiting for abandoned download of '{query}' to stop.")
                await asyncio.wait({worker})
            if not worker.cancelled():
                worker.exception()

        if not output.is_file():
            raise DownloadError(
                f"Error downloading track: no audio was produced for '{query}'"
            )
        return output
