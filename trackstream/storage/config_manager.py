"""
Manages loading and validation of the server configuration from an optional INI
file, environment variables and command-line overrides.
"""

import configparser
import logging
import os
from pathlib import Path
from typing import Any, Mapping

from pydantic import ValidationError

from trackstream.exceptions import ConfigurationError
from trackstream.models.config import ServerConfig, default_cache_dir

log = logging.getLogger(__name__)

# Environment variable -> config key. The first three names match the ones the
# service has always been deployed with.
ENV_VARS = {
    "SPOTIFY_CLIENT_ID": "client_id",
    "SPOTIFY_CLIENT_SECRET": "client_secret",
    "PORT": "port",
    "ALLOWED_URL": "allowed_origin",
    "TRACKSTREAM_HOST": "host",
    "TRACKSTREAM_MARKET": "market",
    "TRACKSTREAM_CACHE_DIR": "cache_dir",
    "TRACKSTREAM_CACHE_MAX_BYTES": "cache_max_bytes",
    "TRACKSTREAM_CACHE_MAX_AGE_DAYS": "cache_max_age_days",
    "TRACKSTREAM_RESOLUTION_TTL": "resolution_ttl_seconds",
    "TRACKSTREAM_MAX_DOWNLOADS": "max_concurrent_downloads",
    "TRACKSTREAM_DOWNLOAD_TIMEOUT": "download_timeout_seconds",
    "TRACKSTREAM_VERIFY_DOWNLOADS": "verify_downloads",
}

_INT_KEYS = {
    "port",
    "cache_max_bytes",
    "cache_max_age_days",
    "resolution_ttl_seconds",
    "max_concurrent_downloads",
    "download_timeout_seconds",
}
_BOOL_KEYS = {"verify_downloads"}


class ConfigManager:
    """Handles all operations related to the server's configuration sources."""

    def __init__(
        self,
        config_file_path: Path | None = None,
        environ: Mapping[str, str] | None = None,
    ):
        self.config_file_path = config_file_path
        self._environ = os.environ if environ is None else environ
        self._parser = configparser.ConfigParser()

    def load_config(self, cli_options: dict[str, Any] | None = None) -> ServerConfig:
        """
        Loads configuration in increasing order of precedence: INI file,
        environment variables, then CLI options.

        Args:
            cli_options: A dictionary of options provided via the command line.

        Returns:
            A validated ServerConfig object.

        Raises:
            ConfigurationError: If the config file is invalid or validation fails.
        """
        settings: dict[str, Any] = {}
        settings.update(self._get_file_settings())
        settings.update(self._get_env_settings())
        if cli_options:
            settings.update({k: v for k, v in cli_options.items() if v is not None})

        try:
            return ServerConfig(**settings)
        except ValidationError as e:
            raise ConfigurationError(f"Configuration validation failed:\n{e}") from e

    def load_cache_dir(self) -> Path:
        """Resolves only the cache root, without requiring the other settings."""
        settings = {**self._get_file_settings(), **self._get_env_settings()}
        cache_dir = settings.get("cache_dir") or default_cache_dir()
        return Path(cache_dir).expanduser()

    def _get_file_settings(self) -> dict[str, Any]:
        """Reads the 'DEFAULT' section of the INI file into a dictionary."""
        if self.config_file_path is None:
            return {}
        if not self.config_file_path.is_file():
            log.debug(f"No configuration file at '{self.config_file_path}'.")
            return {}

        try:
            self._parser.read(self.config_file_path)
        except configparser.Error as e:
            raise ConfigurationError(f"Error parsing configuration file: {e}") from e

        section = self._parser["DEFAULT"]
        settings: dict[str, Any] = {}
        for key in ServerConfig.get_ini_keys():
            if key not in section:
                continue
            try:
                if key in _INT_KEYS:
                    settings[key] = section.getint(key)
                elif key in _BOOL_KEYS:
                    settings[key] = section.getboolean(key)
                else:
                    settings[key] = section.get(key)
            except ValueError as e:
                raise ConfigurationError(
                    f"Invalid value for '{key}' in configuration file: {e}"
                ) from e
        return settings

    def _get_env_settings(self) -> dict[str, Any]:
        """Collects settings from environment variables that are set and non-empty."""
        settings: dict[str, Any] = {}
        for env_name, key in ENV_VARS.items():
            raw = self._environ.get(env_name)
            if raw is None or not raw.strip():
                continue
            raw = raw.strip()
            if key in _INT_KEYS:
                try:
                    settings[key] = int(raw)
                except ValueError as e:
                    raise ConfigurationError(
                        f"Environment variable {env_name} must be an integer, "
                        f"got '{raw}'."
                    ) from e
            elif key in _BOOL_KEYS:
                settings[key] = raw.lower() in ("1", "true", "yes", "on")
            else:
                settings[key] = raw
        return settings
