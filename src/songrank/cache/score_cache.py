"""
Short-lived memo of song scores for hot read paths.
"""

from __future__ import annotations
import time
from typing import Callable, Dict, Optional, Tuple

from loguru import logger


class ScoreCache:
    """
    TTL cache of ``song_id -> score`` lookups.

    Entries are invalidated per node whenever the graph touches that node,
    dropped wholesale after a recompute and evicted lazily on read or in bulk
    by :meth:`evict_expired`.
    """

    def __init__(self, ttl_seconds: float = 300.0, clock: Callable[[], float] = time.monotonic):
        """
        Args:
            ttl_seconds: How long a cached score stays valid
            clock: Monotonic time source in seconds
        """
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, Tuple[float, float]] = {}

    def get(self, song_id: str) -> Optional[float]:
        """Return the cached score, or None when absent or expired."""
        entry = self._entries.get(song_id)
        if entry is None:
            return None
        score, stored_at = entry
        if self._clock() - stored_at >= self.ttl_seconds:
            del self._entries[song_id]
            return None
        return score

    def put(self, song_id: str, score: float):
        self._entries[song_id] = (score, self._clock())

    def invalidate(self, song_id: str):
        self._entries.pop(song_id, None)

    def clear(self):
        self._entries.clear()

    def evict_expired(self) -> int:
        """
        Drop every expired entry.

        Returns:
            Number of entries removed
        """
        now = self._clock()
        expired = [
            song_id for song_id, (_, stored_at) in self._entries.items()
            if now - stored_at > self.ttl_seconds
        ]
        for song_id in expired:
            del self._entries[song_id]

        if expired:
            logger.debug(f"Evicted {len(expired)} expired scores, {len(self._entries)} remain")
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, song_id: str) -> bool:
        return song_id in self._entries
