# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Injection quality tracking.

Remembers which files the last injected context named and checks later file
accesses against them. When the agent keeps touching files the context did
not predict, a refresh is recommended.
"""

import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

Clock = Callable[[], float]


@dataclass(frozen=True)
class QualityMetrics:
    """Hit/miss statistics since the last reset."""

    hit_rate: float
    consecutive_misses: int
    accesses: int
    hits: int


class QualityTracker:
    """Tracks whether injected context predicted later file accesses.

    A refresh is recommended once the cooldown since the last refresh has
    passed, enough accesses were seen, and either the consecutive misses hit
    the threshold or the overall hit rate is low.
    """

    def __init__(
        self,
        refresh_cooldown_seconds: float = 30.0,
        miss_threshold: int = 3,
        min_accesses: int = 3,
        low_hit_rate: float = 0.3,
        low_hit_min_accesses: int = 5,
        history_size: int = 20,
        clock: Clock = time.monotonic,
    ):
        self.refresh_cooldown_seconds = refresh_cooldown_seconds
        self.miss_threshold = miss_threshold
        self.min_accesses = min_accesses
        self.low_hit_rate = low_hit_rate
        self.low_hit_min_accesses = low_hit_min_accesses
        self._clock = clock
        self._context_files: frozenset[str] = frozenset()
        self._history: deque[str] = deque(maxlen=history_size)
        self._consecutive_misses = 0
        self._hits = 0
        self._accesses = 0
        self._last_refresh: Optional[float] = None

    @property
    def context_files(self) -> frozenset[str]:
        return self._context_files

    @property
    def consecutive_misses(self) -> int:
        return self._consecutive_misses

    def recent_accesses(self) -> list[str]:
        return list(self._history)

    def set_context_files(self, files: Iterable[str]) -> None:
        """Replace the set of files named by the latest injection."""
        self._context_files = frozenset(files)
        self._consecutive_misses = 0
        self._last_refresh = self._clock()

    def record_file_access(self, path: str) -> bool:
        """Record an access; returns True when the file was predicted."""
        self._history.append(path)
        self._accesses += 1
        if path in self._context_files:
            self._hits += 1
            self._consecutive_misses = 0
            return True
        self._consecutive_misses += 1
        return False

    @property
    def hit_rate(self) -> float:
        if self._accesses == 0:
            return 1.0
        return self._hits / self._accesses

    def should_refresh_context(self) -> bool:
        if (
            self._last_refresh is not None
            and self._clock() - self._last_refresh < self.refresh_cooldown_seconds
        ):
            return False
        if self._accesses < self.min_accesses:
            return False
        if self._consecutive_misses >= self.miss_threshold:
            return True
        return self._accesses >= self.low_hit_min_accesses and self.hit_rate < self.low_hit_rate

    def reset_quality(self) -> None:
        """Clear counters and access history after a refresh and restart the cooldown."""
        self._history.clear()
        self._consecutive_misses = 0
        self._hits = 0
        self._accesses = 0
        self._last_refresh = self._clock()

    def metrics(self) -> QualityMetrics:
        return QualityMetrics(
            hit_rate=self.hit_rate,
            consecutive_misses=self._consecutive_misses,
            accesses=self._accesses,
            hits=self._hits,
        )

    def reset(self) -> None:
        self._context_files = frozenset()
        self._history.clear()
        self._consecutive_misses = 0
        self._hits = 0
        self._accesses = 0
        self._last_refresh = None
