# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Context pipeline metrics.

Counters and latency statistics for the stages of context injection:
analyze, collect, assemble and cache warm-up. Owned by a session; read with
get_stats().
"""

import time
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterator

# Metric name prefix for all context metrics
METRIC_PREFIX: str = "context"


@dataclass
class LatencyStats:
    """Statistics for latency measurements.

    Attributes:
        count: Number of measurements.
        total_ms: Total latency in milliseconds.
        min_ms: Minimum latency in milliseconds.
        max_ms: Maximum latency in milliseconds.
    """

    count: int = 0
    total_ms: float = 0.0
    min_ms: float = float("inf")
    max_ms: float = 0.0

    def record(self, latency_ms: float) -> None:
        self.count += 1
        self.total_ms += latency_ms
        self.min_ms = min(self.min_ms, latency_ms)
        self.max_ms = max(self.max_ms, latency_ms)

    @property
    def avg_ms(self) -> float:
        if self.count == 0:
            return 0.0
        return self.total_ms / self.count


class ContextMetrics:
    """Metrics collector for the context pipeline.

    Example:
        >>> metrics = ContextMetrics()
        >>> metrics.record_injection(sections=3, tokens=812)
        >>> with metrics.timed("assemble"):
        ...     ...
        >>> stats = metrics.get_stats()
    """

    def __init__(self):
        self._counters: dict[str, int] = defaultdict(int)
        self._latencies: dict[str, LatencyStats] = defaultdict(LatencyStats)
        self._labels: dict[str, dict[str, int]] = defaultdict(lambda: defaultdict(int))

    def record_injection(self, sections: int, tokens: int) -> None:
        """Record one assembled context block."""
        self._counters["injection_total"] += 1
        if sections == 0:
            self._counters["injection_empty"] += 1
        self._counters["injection_tokens"] += tokens

    def record_signal(self, name: str, available: bool) -> None:
        """Record whether a peripheral signal answered."""
        outcome = "available" if available else "unavailable"
        self._labels[f"signal_{outcome}"][name] += 1

    def record_latency(self, operation: str, latency_ms: float) -> None:
        self._latencies[operation].record(latency_ms)

    @contextmanager
    def timed(self, operation: str) -> Iterator[None]:
        """Record the latency of the enclosed block under ``operation``."""
        start = time.perf_counter()
        try:
            yield
        finally:
            self.record_latency(operation, (time.perf_counter() - start) * 1000)

    def increment_counter(self, name: str, value: int = 1) -> None:
        if value:
            self._counters[name] += value

    def get_stats(self) -> dict[str, Any]:
        """Get all collected statistics.

        Returns:
            Dictionary containing all metrics and statistics.
        """
        latency_stats = {}
        for op, stats in self._latencies.items():
            latency_stats[op] = {
                "count": stats.count,
                "avg_ms": stats.avg_ms,
                "min_ms": stats.min_ms if stats.count > 0 else 0.0,
                "max_ms": stats.max_ms,
            }

        return {
            "prefix": METRIC_PREFIX,
            "counters": dict(self._counters),
            "latencies": latency_stats,
            "labels": {k: dict(v) for k, v in self._labels.items()},
        }

    def reset(self) -> None:
        """Reset all metrics."""
        self._counters.clear()
        self._latencies.clear()
        self._labels.clear()
