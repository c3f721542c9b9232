"""
Pydantic model for server configuration.
Provides robust validation for all settings.
"""

import tempfile
from pathlib import Path

from pydantic import BaseModel, Field, field_validator, model_validator

AUDIO_FORMAT = "mp3"
AUDIO_MIME_TYPE = "audio/mpeg"
CACHE_SUBDIR = "spotifydl-cache"


def default_cache_dir() -> str:
    """The cache root used when none is configured: a fixed folder in the temp dir."""
    return str(Path(tempfile.gettempdir()) / CACHE_SUBDIR)


class ServerConfig(BaseModel):
    """A validated configuration model for the streaming server."""

    # Spotify credentials
    client_id: str = ""
    client_secret: str = ""
    market: str = "US"

    # HTTP
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 3000
    allowed_origin: str = "*"

    # Audio cache
    cache_dir: str = Field(default_factory=default_cache_dir)
    cache_max_bytes: int = 0
    cache_max_age_days: int = 0
    resolution_ttl_seconds: int = 3600

    # Downloader
    max_concurrent_downloads: int = 4
    download_timeout_seconds: int = 300
    verify_downloads: bool = True

    class Config:
        """Pydantic model configuration."""

        validate_assignment = True
        str_strip_whitespace = True

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        """Ensures the port is a usable TCP port."""
        if v < 1 or v > 65535:
            raise ValueError("Port must be between 1 and 65535.")
        return v

    @field_validator(
        "cache_max_bytes", "cache_max_age_days", "resolution_ttl_seconds"
    )
    @classmethod
    def validate_non_negative(cls, v: int) -> int:
        """Limits of zero mean 'disabled'; negative values are rejected."""
        if v < 0:
            raise ValueError("Cache limits cannot be negative.")
        return v

    @field_validator("max_concurrent_downloads")
    @classmethod
    def validate_downloads(cls, v: int) -> int:
        """Ensures a reasonable number of simultaneous downloads."""
        if v < 1 or v > 32:
            raise ValueError("Max concurrent downloads must be between 1 and 32.")
        return v

    @field_validator("download_timeout_seconds")
    @classmethod
    def validate_timeout(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Download timeout must be at least 1 second.")
        return v

    @field_validator("market")
    @classmethod
    def validate_market(cls, v: str) -> str:
        """Spotify markets are ISO 3166-1 alpha-2 country codes."""
        if len(v) != 2 or not v.isalpha():
            raise ValueError(f"Market must be a 2-letter country code, got: {v}")
        return v.upper()

    @model_validator(mode="after")
    def validate_credentials(self) -> "ServerConfig":
        """Validates that the Spotify client credentials are present."""
        if not self.client_id or not self.client_secret:
            raise ValueError(
                "Spotify credentials not configured. Set SPOTIFY_CLIENT_ID and "
                "SPOTIFY_CLIENT_SECRET."
            )
        return self

    @property
    def cache_path(self) -> Path:
        return Path(self.cache_dir).expanduser()

    @classmethod
    def get_ini_keys(cls) -> set[str]:
        """Returns a set of all keys that are expected in the INI file."""
        return set(cls.model_fields)
