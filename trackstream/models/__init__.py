"""
Data Models Layer.

This package contains the Pydantic and dataclass models that define the core
data structures used throughout the application, such as configuration and
statistics.
"""

from .config import ServerConfig
from .stats import CacheStats

__all__ = ["CacheStats", "ServerConfig"]
