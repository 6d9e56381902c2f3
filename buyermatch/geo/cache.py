# buyermatch/geo/cache.py
from __future__ import annotations

from dataclasses import dataclass, field

from ..domain.types import Coordinates


@dataclass
class GeocodeCacheStats:
    hits: int = 0
    misses: int = 0

    def snapshot(self) -> dict[str, int]:
        return {"hits": self.hits, "misses": self.misses}


@dataclass
class GeocodeCache:
    """
    Process-lifetime geocode results keyed by normalized request string.
    No expiry; the owner constructs it once and clears it explicitly.
    Writes for the same key are idempotent (last writer wins).
    """
    _entries: dict[str, Coordinates] = field(default_factory=dict)
    stats: GeocodeCacheStats = field(default_factory=GeocodeCacheStats)

    def get(self, key: str) -> Coordinates | None:
        hit = self._entries.get(key)
        if hit is None:
            self.stats.misses += 1
        else:
            self.stats.hits += 1
        return hit

    def set(self, key: str, coords: Coordinates) -> None:
        self._entries[key] = coords

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def clear(self) -> None:
        self._entries.clear()
        self.stats = GeocodeCacheStats()

    def snapshot(self) -> dict[str, int]:
        return {"size": len(self._entries), **self.stats.snapshot()}
