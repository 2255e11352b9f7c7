# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""LRU cache with TTL for next-action predictions.

Keyed by the tool trigram that triggered the prediction:
- Automatic TTL expiration (default 60s)
- LRU eviction when max size reached (default 100)
- Thread-safe operations
- Hit/miss metrics
"""

import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Optional

from knowledge_context.schemas import WorkflowPrediction


@dataclass
class CacheEntry:
    """A cached prediction with its creation time."""

    prediction: WorkflowPrediction
    created_at: float

    def is_expired(self, now: float, ttl_seconds: float) -> bool:
        return now - self.created_at > ttl_seconds


class PredictionCache:
    """LRU cache with TTL for workflow predictions."""

    DEFAULT_MAX_SIZE = 100
    DEFAULT_TTL_SECONDS = 60.0

    def __init__(
        self,
        max_size: int = DEFAULT_MAX_SIZE,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the cache.

        Args:
            max_size: Maximum number of entries
            ttl_seconds: Time-to-live in seconds
            clock: Time source, monotonic seconds
        """
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self._clock = clock

        # OrderedDict maintains insertion order for LRU
        self._cache: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = threading.RLock()

        self._hits = 0
        self._misses = 0

    def get(self, trigram: str) -> Optional[WorkflowPrediction]:
        """Return the cached prediction, or None if missing or expired."""
        with self._lock:
            entry = self._cache.get(trigram)

            if entry is None:
                self._misses += 1
                return None

            if entry.is_expired(self._clock(), self.ttl_seconds):
                del self._cache[trigram]
                self._misses += 1
                return None

            self._cache.move_to_end(trigram)
            self._hits += 1
            return entry.prediction

    def set(self, trigram: str, prediction: WorkflowPrediction) -> None:
        with self._lock:
            if len(self._cache) >= self.max_size and trigram not in self._cache:
                self._cache.popitem(last=False)

            self._cache[trigram] = CacheEntry(prediction=prediction, created_at=self._clock())
            self._cache.move_to_end(trigram)

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()
            self._hits = 0
            self._misses = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)

    def get_stats(self) -> dict[str, float]:
        """Get cache statistics.

        Returns:
            Dictionary with size, hits, misses and hit_rate
        """
        with self._lock:
            total = self._hits + self._misses
            return {
                "size": len(self._cache),
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate": self._hits / total if total else 0.0,
            }
