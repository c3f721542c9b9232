"""
Storage Layer.

This package handles all data persistence: the on-disk audio cache and its
eviction policies, the in-memory resolution cache, and configuration loading.
"""

from .cache import AudioCache
from .config_manager import ConfigManager
from .eviction import (
    EvictionPolicy,
    LRUSizeEviction,
    MaxAgeEviction,
    NoEviction,
    build_eviction_policy,
)
from .resolution_cache import ResolutionCache

__all__ = [
    "AudioCache",
    "ConfigManager",
    "EvictionPolicy",
    "LRUSizeEviction",
    "MaxAgeEviction",
    "NoEviction",
    "ResolutionCache",
    "build_eviction_policy",
]
