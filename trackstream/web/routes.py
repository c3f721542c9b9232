"""
HTTP routes: the range-aware stream endpoint and the catalog queries.
"""

import logging
from typing import Any, Optional

from fastapi import APIRouter, Header, Request, Response

from trackstream import __version__
from trackstream.exceptions import (
    BadRequestError,
    InternalError,
    RangeNotSatisfiableError,
)

from .services import StreamServices

log = logging.getLogger(__name__)

router = APIRouter()


def _services(request: Request) -> StreamServices:
    return request.app.state.services


@router.get("/")
async def health(request: Request) -> dict[str, Any]:
    return {
        "status": "ok",
        "version": __version__,
        "cache": _services(request).cache.stats.as_dict(),
    }


@router.get("/stream")
async def stream_audio(
    request: Request,
    url: Optional[str] = None,
    range_header: Optional[str] = Header(None, alias="range"),
) -> Response:
    if not range_header:
        raise BadRequestError("Requires Range header")

    try:
        result = await _services(request).responder.respond(range_header, url or "")
    except (BadRequestError, RangeNotSatisfiableError):
        raise
    except Exception as e:
        log.error(f"Streaming '{url}' failed: {e}")
        log.debug("Full traceback:", exc_info=True)
        raise InternalError(str(e)) from e

    return Response(
        content=result.body, status_code=result.status, headers=result.headers
    )


@router.get("/search/artist/{artist_id}")
async def search_artist(request: Request, artist_id: str) -> dict[str, Any]:
    return await _services(request).catalog.get_artist(artist_id)


@router.get("/search/{query}")
async def search(request: Request, query: str) -> list[dict[str, Any]]:
    return await _services(request).catalog.search(query)


# Returns the artist's top tracks, not albums; existing clients depend on it.
# Upstream catalog failures on these routes answer 502, not a generic 500.
@router.get("/artist-albums/{artist_id}")
async def artist_albums(request: Request, artist_id: str) -> list[dict[str, Any]]:
    return await _services(request).catalog.get_top_tracks(artist_id)


@router.get("/artist/{artist_id}/albums")
async def artist_releases(request: Request, artist_id: str) -> list[dict[str, Any]]:
    return await _services(request).catalog.get_artist_albums(artist_id)
