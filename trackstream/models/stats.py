"""
Dataclass for tracking audio cache statistics over the lifetime of the server.
"""

from dataclasses import asdict, dataclass


@dataclass
class CacheStats:
    """Counters for the stream pipeline's cache and downloader activity."""

    hits: int = 0
    misses: int = 0
    downloads: int = 0
    download_failures: int = 0
    joined_in_flight: int = 0
    evictions: int = 0
    bytes_written: int = 0

    def record_lookup(self, is_hit: bool) -> None:
        if is_hit:
            self.hits += 1
        else:
            self.misses += 1

    @property
    def hit_ratio(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0

    def as_dict(self) -> dict:
        data = asdict(self)
        data["hit_ratio"] = round(self.hit_ratio, 3)
        return data
