"""
Thin read-only queries over the Spotify catalog, shaped for the web client.
"""

import logging
from typing import Any, Dict, List, Optional

from trackstream.exceptions import CatalogLookupError

log = logging.getLogger(__name__)

SEARCH_LIMIT = 5


def _first_image_url(track: Dict[str, Any]) -> Optional[str]:
    images = (track.get("album") or {}).get("images") or []
    return images[0].get("url") if images else None


def _primary_artist_name(track: Dict[str, Any]) -> Optional[str]:
    artists = track.get("artists") or []
    return artists[0].get("name") if artists else None


class CatalogService:
    """Pass-through catalog operations. No state, no caching, no retries."""

    def __init__(self, client, market: str = "US"):
        """
        Args:
            client: The SpotifyAPIClient.
            market: Market used for top-track lookups.
        """
        self.client = client
        self.market = market

    async def search(self, query: str) -> List[Dict[str, Any]]:
        """Top matching tracks as {name, songId, image, author}."""
        response = await self.client.search_tracks(query, limit=SEARCH_LIMIT)
        try:
            items = response["tracks"]["items"]
            return [
                {
                    "name": track["name"],
                    "songId": track["id"],
                    "image": _first_image_url(track),
                    "author": _primary_artist_name(track),
                }
                for track in items
            ]
        except (KeyError, TypeError) as e:
            raise CatalogLookupError(f"Unexpected search response: missing {e}") from e

    async def get_artist(self, artist_id: str) -> Dict[str, Any]:
        return await self.client.get_artist(artist_id)

    async def get_top_tracks(self, artist_id: str) -> List[Dict[str, Any]]:
        """An artist's top tracks as {name, songId, image, author, duration}."""
        try:
            artist = await self.client.get_artist(artist_id)
            response = await self.client.get_artist_top_tracks(artist_id, self.market)
            return [
                {
                    "name": track["name"],
                    "songId": track["id"],
                    "image": _first_image_url(track),
                    "author": artist.get("name"),
                    "duration": track.get("duration_ms"),
                }
                for track in response["tracks"]
            ]
        except CatalogLookupError as e:
            log.error(f"Error fetching top tracks for '{artist_id}': {e}")
            raise CatalogLookupError(f"Error fetching top tracks: {e}") from e
        except (KeyError, TypeError) as e:
            raise CatalogLookupError(
                f"Error fetching top tracks: unexpected response, missing {e}"
            ) from e

    async def get_artist_albums(self, artist_id: str) -> List[Dict[str, Any]]:
        """The artist's albums as raw Spotify album objects."""
        try:
            response = await self.client.get_artist_albums(artist_id)
            return response.get("items", [])
        except CatalogLookupError as e:
            log.error(f"Error fetching albums for '{artist_id}': {e}")
            raise CatalogLookupError(f"Error fetching artist albums: {e}") from e
