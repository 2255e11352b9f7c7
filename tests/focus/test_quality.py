# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Tests for injection quality tracking."""

from knowledge_context.focus.quality import QualityTracker


class TestHitTracking:
    def test_hit_and_miss(self, clock):
        tracker = QualityTracker(clock=clock)
        tracker.set_context_files({"a.py", "b.py"})

        assert tracker.record_file_access("a.py") is True
        assert tracker.record_file_access("c.py") is False
        assert tracker.consecutive_misses == 1
        assert tracker.hit_rate == 0.5

    def test_hit_resets_consecutive_misses(self, clock):
        tracker = QualityTracker(clock=clock)
        tracker.set_context_files({"a.py"})
        tracker.record_file_access("x.py")
        tracker.record_file_access("y.py")

        tracker.record_file_access("a.py")

        assert tracker.consecutive_misses == 0

    def test_hit_rate_without_accesses(self, clock):
        assert QualityTracker(clock=clock).hit_rate == 1.0

    def test_history_is_capped(self, clock):
        tracker = QualityTracker(history_size=2, clock=clock)
        for path in ("a", "b", "c"):
            tracker.record_file_access(path)

        assert tracker.recent_accesses() == ["b", "c"]
        assert tracker.metrics().accesses == 3


class TestShouldRefresh:
    """Tests for the refresh recommendation."""

    def test_consecutive_misses_after_cooldown(self, clock):
        tracker = QualityTracker(clock=clock)
        tracker.set_context_files({"a.py"})
        tracker.record_file_access("a.py")
        for path in ("x.py", "y.py", "z.py"):
            tracker.record_file_access(path)

        assert tracker.should_refresh_context() is False

        clock.advance(31)
        assert tracker.should_refresh_context() is True

    def test_low_hit_rate(self, clock):
        tracker = QualityTracker(miss_threshold=10, clock=clock)
        for i in range(4):
            tracker.record_file_access(f"miss{i}.py")

        assert tracker.should_refresh_context() is False

        tracker.record_file_access("miss4.py")
        assert tracker.should_refresh_context() is True

    def test_no_cooldown_before_first_injection(self, clock):
        tracker = QualityTracker(clock=clock)
        for path in ("x.py", "y.py", "z.py"):
            tracker.record_file_access(path)

        assert tracker.should_refresh_context() is True

    def test_min_accesses(self, clock):
        tracker = QualityTracker(miss_threshold=2, clock=clock)
        tracker.record_file_access("x.py")
        tracker.record_file_access("y.py")

        assert tracker.should_refresh_context() is False

    def test_reset_quality_restarts_cooldown(self, clock):
        tracker = QualityTracker(clock=clock)
        for path in ("x.py", "y.py", "z.py"):
            tracker.record_file_access(path)

        tracker.reset_quality()

        metrics = tracker.metrics()
        assert (metrics.accesses, metrics.hits, metrics.consecutive_misses) == (0, 0, 0)
        assert tracker.recent_accesses() == []
        for path in ("x.py", "y.py", "z.py"):
            tracker.record_file_access(path)
        assert tracker.should_refresh_context() is False
        clock.advance(30)
        assert tracker.should_refresh_context() is True

    def test_reset(self, clock):
        tracker = QualityTracker(clock=clock)
        tracker.set_context_files({"a.py"})
        tracker.record_file_access("a.py")

        tracker.reset()

        assert tracker.context_files == frozenset()
        assert tracker.recent_accesses() == []
        assert tracker.hit_rate == 1.0
