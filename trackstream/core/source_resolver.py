"""
Maps a Spotify track id to the YouTube video whose audio will be served for it.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from trackstream.exceptions import CatalogLookupError, ResolutionError
from trackstream.storage.resolution_cache import ResolutionCache

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Resolution:
    """A resolved source and the search string that found it."""

    source_id: str
    query: str


class SourceResolver:
    """
    Combines a catalog metadata lookup with an audio search.
    """

    def __init__(
        self,
        catalog_client,
        audio_resolver,
        cache: Optional[ResolutionCache[Resolution]] = None,
    ):
        """
        Args:
            catalog_client: Provides `get_track(track_id)` (the Spotify client).
            audio_resolver: Provides `search(query, limit)` (the YouTube resolver).
            cache: Optional memo of recent resolutions; None resolves every time.
        """
        self.catalog_client = catalog_client
        self.audio_resolver = audio_resolver
        self.cache = cache

    @staticmethod
    def build_query(catalog_id: str, track: Dict[str, Any]) -> str:
        """Builds the "{title} {primary artist}" search string for a track."""
        title = (track.get("name") or "").strip()
        if not title:
            raise CatalogLookupError(f"Track '{catalog_id}' has no title.")
        artists = track.get("artists") or []
        artist = (artists[0].get("name") or "").strip() if artists else ""
        return f"{title} {artist}".strip()

    async def resolve(self, catalog_id: str) -> Resolution:
        """
        Resolves a catalog track id to a downloadable source.

        Raises:
            CatalogLookupError: If the track cannot be looked up.
            ResolutionError: If the search yields no match or fails.
        """
        if self.cache is not None and (cached := self.cache.get(catalog_id)):
            log.debug(f"Resolution for '{catalog_id}' served from memory.")
            return cached

        track = await self.catalog_client.get_track(catalog_id)
        query = self.build_query(catalog_id, track)

        results = await self.audio_resolver.search(query, limit=1)
        if not results:
            raise ResolutionError(f"No audio source found for '{query}'.")

        resolution = Resolution(source_id=str(results[0]["id"]), query=query)
        log.debug(f"Resolved '{catalog_id}' -> '{resolution.source_id}' ({query}).")

        if self.cache is not None:
            self.cache.set(catalog_id, resolution)
        return resolution
