"""
Eviction strategies for the audio cache.

A policy looks at a snapshot of the cache entries and decides which ones to
delete. The cache applies the decision; policies never touch the filesystem.
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheEntry:
    """A single audio blob on disk."""

    key: str
    path: Path
    size: int
    last_used: float


class EvictionPolicy(ABC):
    """Decides which cache entries should be removed."""

    @abstractmethod
    def select(
        self, entries: list[CacheEntry], protected: set[str] | None = None
    ) -> list[CacheEntry]:
        """
        Returns the entries to delete.

        Args:
            entries: Every entry currently in the cache.
            protected: Keys that must survive this pass (e.g. a blob just written).
        """

    def describe(self) -> str:
        return type(self).__name__


class NoEviction(EvictionPolicy):
    """Keeps every entry forever."""

    def select(self, entries, protected=None):
        return []

    def describe(self) -> str:
        return "unbounded"


class LRUSizeEviction(EvictionPolicy):
    """Removes the least recently used entries until the cache fits in max_bytes."""

    def __init__(self, max_bytes: int):
        if max_bytes <= 0:
            raise ValueError("max_bytes must be positive.")
        self.max_bytes = max_bytes

    def select(self, entries, protected=None):
        protected = protected or set()
        total = sum(e.size for e in entries)
        if total <= self.max_bytes:
            return []

        victims = []
        for entry in sorted(entries, key=lambda e: e.last_used):
            if total <= self.max_bytes:
                break
            if entry.key in protected:
                continue
            victims.append(entry)
            total -= entry.size
        return victims

    def describe(self) -> str:
        return f"lru(max_bytes={self.max_bytes})"


class MaxAgeEviction(EvictionPolicy):
    """Removes entries that have not been used for longer than max_age_seconds."""

    def __init__(self, max_age_seconds: float, clock=time.time):
        if max_age_seconds <= 0:
            raise ValueError("max_age_seconds must be positive.")
        self.max_age_seconds = max_age_seconds
        self._clock = clock

    def select(self, entries, protected=None):
        protected = protected or set()
        now = self._clock()
        return [
            e
            for e in entries
            if e.key not in protected and now - e.last_used > self.max_age_seconds
        ]

    def describe(self) -> str:
        return f"max_age(seconds={self.max_age_seconds:g})"


class CompositeEviction(EvictionPolicy):
    """Applies several policies in order; an entry selected by any of them goes."""

    def __init__(self, policies: list[EvictionPolicy]):
        self.policies = policies

    def select(self, entries, protected=None):
        remaining = list(entries)
        victims: list[CacheEntry] = []
        for policy in self.policies:
            chosen = policy.select(remaining, protected)
            chosen_keys = {e.key for e in chosen}
            victims.extend(chosen)
            remaining = [e for e in remaining if e.key not in chosen_keys]
        return victims

    def describe(self) -> str:
        return " + ".join(p.describe() for p in self.policies)


def build_eviction_policy(max_bytes: int = 0, max_age_days: int = 0) -> EvictionPolicy:
    """Builds the policy described by the cache limits; zero disables a limit."""
    policies: list[EvictionPolicy] = []
    if max_age_days > 0:
        policies.append(MaxAgeEviction(max_age_days * 86400))
    if max_bytes > 0:
        policies.append(LRUSizeEviction(max_bytes))

    if not policies:
        return NoEviction()
    if len(policies) == 1:
        return policies[0]
    return CompositeEviction(policies)
