"""
Defines custom exceptions for the application to allow for more specific error handling.
"""


class TrackStreamError(Exception):
    """Base exception for all application-specific errors."""


class BadRequestError(TrackStreamError):
    """Raised when a stream request is missing required input, such as a Range header."""


class InvalidRangeError(BadRequestError):
    """Raised when a Range header cannot be parsed."""


class RangeNotSatisfiableError(TrackStreamError):
    """Raised when a parsed byte range falls outside the audio blob."""

    def __init__(self, message: str, total_size: int):
        super().__init__(message)
        self.total_size = total_size


class CatalogLookupError(TrackStreamError):
    """Raised when the Spotify catalog rejects or fails a metadata lookup."""


class AuthenticationError(CatalogLookupError):
    """Raised when an access token cannot be obtained from Spotify."""


class ResolutionError(TrackStreamError):
    """Raised when no downloadable source matches a catalog track."""


class DownloadError(TrackStreamError):
    """Raised when the audio downloader fails to produce a file."""


class CacheEntryNotFoundError(TrackStreamError):
    """Raised when reading a cache key that has no blob on disk."""


class ConfigurationError(TrackStreamError):
    """Raised for issues related to configuration loading or validation."""


class InternalError(TrackStreamError):
    """
    Raised at the HTTP boundary when the stream pipeline fails for any other reason.
    """
