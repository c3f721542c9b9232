"""
Builds HTTP 206 Partial Content responses over complete audio blobs.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Optional

from trackstream.exceptions import (
    BadRequestError,
    InvalidRangeError,
    RangeNotSatisfiableError,
)
from trackstream.models.config import AUDIO_MIME_TYPE

log = logging.getLogger(__name__)

# A single "bytes=<start>-[<end>]" range. Suffix ranges and range lists are
# not supported.
_RANGE_RE = re.compile(r"^\s*bytes\s*=\s*(\d+)\s*-\s*(\d*)\s*$", re.IGNORECASE)


@dataclass(frozen=True)
class ByteRange:
    """Inclusive byte offsets into a blob."""

    start: int
    end: int

    @property
    def length(self) -> int:
        return self.end - self.start + 1


@dataclass
class RangeResponse:
    status: int
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""


def parse_range_header(header: Optional[str]) -> tuple[int, Optional[int]]:
    """
    Parses a Range header into (start, end); end is None when open-ended.

    Raises:
        BadRequestError: If the header is missing.
        InvalidRangeError: If the header is not a single numeric byte range.
    """
    if header is None or not header.strip():
        raise BadRequestError("Requires Range header")

    match = _RANGE_RE.match(header)
    if not match:
        raise InvalidRangeError(f"Malformed Range header: {header!r}")

    start = int(match.group(1))
    end = int(match.group(2)) if match.group(2) else None
    return start, end


def resolve_range(start: int, end: Optional[int], total: int) -> ByteRange:
    """
    Applies the parsed offsets to a blob of total bytes.

    Raises:
        RangeNotSatisfiableError: If the range does not lie within the blob.
    """
    if end is None:
        end = total - 1
    if start >= total or end >= total or start > end:
        raise RangeNotSatisfiableError(
            f"Range {start}-{end} is not satisfiable for {total} bytes", total
        )
    return ByteRange(start, end)


def build_partial_response(blob: bytes, byte_range: ByteRange) -> RangeResponse:
    total = len(blob)
    return RangeResponse(
        status=206,
        headers={
            "Content-Range": f"bytes {byte_range.start}-{byte_range.end}/{total}",
            "Accept-Ranges": "bytes",
            "Content-Length": str(byte_range.length),
            "Content-Type": AUDIO_MIME_TYPE,
        },
        body=blob[byte_range.start : byte_range.end + 1],
    )


class RangeResponder:
    """Serves byte windows of catalog tracks."""

    def __init__(self, fetcher):
        """
        Args:
            fetcher: Provides `fetch(catalog_id) -> bytes` (the TrackFetcher).
        """
        self.fetcher = fetcher

    async def respond(self, range_header: Optional[str], catalog_id: str) -> RangeResponse:
        """
        Fetches the track and returns the requested window of it.

        The header is validated before anything is fetched, so a bad request
        never triggers a lookup or download.
        """
        start, end = parse_range_header(range_header)
        if not catalog_id or not catalog_id.strip():
            raise BadRequestError("Missing 'url' query parameter")

        blob = await self.fetcher.fetch(catalog_id.strip())
        byte_range = resolve_range(start, end, len(blob))
        log.debug(
            f"Serving bytes {byte_range.start}-{byte_range.end}/{len(blob)} "
            f"of '{catalog_id}'."
        )
        return build_partial_response(blob, byte_range)
