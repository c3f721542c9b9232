"""
Validates that a freshly downloaded file is playable MP3 before it is cached.
"""

import asyncio
import logging
from pathlib import Path

from mutagen import MutagenError
from mutagen.mp3 import MP3, HeaderNotFoundError

from trackstream.exceptions import DownloadError

log = logging.getLogger(__name__)


class FileIntegrityChecker:
    """Checks downloaded audio with mutagen."""

    MIN_DURATION_SECONDS = 1.0

    @classmethod
    def check_mp3(cls, filepath: Path) -> bool:
        """
        Returns True if mutagen can parse the file as MP3 and it has a usable
        duration.
        """
        try:
            audio = MP3(filepath)
        except HeaderNotFoundError:
            log.warning(f"Integrity check failed for '{filepath.name}': no MP3 header.")
            return False
        except (MutagenError, OSError) as e:
            log.debug(f"Integrity check for '{filepath.name}' raised: {e}")
            return False

        length = audio.info.length if audio.info else 0
        if length < cls.MIN_DURATION_SECONDS:
            log.warning(
                f"Integrity check failed for '{filepath.name}': "
                f"duration {length:.2f}s is too short."
            )
            return False
        return True

    @classmethod
    async def verify_mp3(cls, filepath: Path) -> None:
        """
        Raises:
            DownloadError: If the file is not playable MP3.
        """
        if not await asyncio.to_thread(cls.check_mp3, filepath):
            raise DownloadError(
                "Error downloading track: the downloaded file is not valid MP3 audio"
            )
