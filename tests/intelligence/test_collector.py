# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""
Tests for the intelligence collector.

Providers are swapped for in-memory fakes so each test can make an
arbitrary subset fail.
"""

import pytest

from knowledge_context.analysis.trajectory import ToolCallRecord
from knowledge_context.intelligence.collector import SIGNAL_NAMES, IntelligenceCollector
from knowledge_context.observability.metrics import ContextMetrics
from knowledge_context.schemas import (
    AgentProfile,
    BudgetAllocation,
    ImpactStat,
    StrategyEntry,
    TrajectoryPattern,
    WorkflowPrediction,
)


class Fails:
    """Every provider method raises."""

    async def matching_strategies(self, keywords):
        raise RuntimeError("strategies down")

    async def stale_items(self):
        raise RuntimeError("staleness down")

    async def load_overrides(self):
        raise RuntimeError("overrides down")

    async def predict_next_action(self, recent_tools):
        raise RuntimeError("predictor down")

    async def profile(self):
        raise RuntimeError("profile down")

    async def impact_stats(self):
        raise RuntimeError("impact down")


class Works:
    """Every provider method answers."""

    def __init__(self):
        self.seen_tools = None

    async def matching_strategies(self, keywords):
        return [StrategyEntry(name="jwt-rotation", description="Rotate keys", success_rate=0.9, times_used=1)]

    async def stale_items(self):
        return {"decisions:3"}

    async def load_overrides(self):
        return BudgetAllocation(decisions=500)

    async def predict_next_action(self, recent_tools):
        self.seen_tools = list(recent_tools)
        return WorkflowPrediction(predicted_tool="memory_check", confidence=0.8, trigger_sequence="a,b,c")

    async def profile(self):
        return AgentProfile()

    async def impact_stats(self):
        return {"decisions": ImpactStat(helped=5, total=5)}


def collector_from(provider, **kwargs) -> IntelligenceCollector:
    return IntelligenceCollector(
        strategies=provider,
        staleness=provider,
        overrides=provider,
        predictor=provider,
        profile=provider,
        impact=provider,
        **kwargs,
    )


CALLS = [ToolCallRecord("memory_check", ("a.ts",)) for _ in range(3)]


class TestCollect:
    """Tests for the parallel fan-out."""

    @pytest.mark.asyncio
    async def test_all_signals(self):
        provider = Works()

        signals = await collector_from(provider).collect(["jwt"], CALLS)

        assert [s.name for s in signals.strategies] == ["jwt-rotation"]
        assert signals.stale_item_ids == {"decisions:3"}
        assert signals.budget_overrides.decisions == 500
        assert signals.prediction.predicted_tool == "memory_check"
        assert signals.trajectory.pattern is TrajectoryPattern.STUCK
        assert signals.profile is not None
        assert signals.impact_stats["decisions"].helped == 5
        assert provider.seen_tools == ["memory_check"] * 3

    @pytest.mark.asyncio
    async def test_all_failures_become_defaults(self):
        metrics = ContextMetrics()

        signals = await collector_from(Fails(), metrics=metrics).collect(["jwt"], CALLS)

        assert signals.strategies == []
        assert signals.stale_item_ids == set()
        assert signals.budget_overrides is None
        assert signals.prediction is None
        assert signals.profile is None
        assert signals.impact_stats == {}
        # Trajectory is computed locally and still answers
        assert signals.trajectory.pattern is TrajectoryPattern.STUCK
        labels = metrics.get_stats()["labels"]
        assert labels["signal_unavailable"]["strategies"] == 1
        assert labels["signal_available"]["trajectory"] == 1

    @pytest.mark.asyncio
    async def test_partial_failure_is_isolated(self):
        works, fails = Works(), Fails()
        collector = IntelligenceCollector(
            strategies=works, staleness=fails, overrides=works, predictor=fails, profile=works, impact=fails
        )

        signals = await collector.collect([], [])

        assert signals.strategies
        assert signals.stale_item_ids == set()
        assert signals.budget_overrides is not None
        assert signals.prediction is None
        assert signals.impact_stats == {}

    @pytest.mark.asyncio
    async def test_no_providers(self):
        signals = await IntelligenceCollector().collect(["jwt"], [])

        assert signals.strategies == []
        assert signals.trajectory.pattern is TrajectoryPattern.NORMAL

    def test_signal_names(self):
        assert len(SIGNAL_NAMES) == 7


class TestStrategyEnrichment:
    @pytest.mark.asyncio
    async def test_times_used_refreshed_from_catalog(self, store, scope_id):
        await store.run(
            """INSERT INTO strategy_catalog (project_id, name, description, success_rate, times_used)
               VALUES (1, 'jwt-rotation', 'Rotate keys', 0.9, 42)"""
        )
        collector = collector_from(Works(), store=store, scope_id=scope_id)

        signals = await collector.collect(["jwt"], [])

        assert signals.strategies[0].times_used == 42

    @pytest.mark.asyncio
    async def test_enrichment_failure_keeps_strategies(self, empty_store, scope_id):
        collector = collector_from(Works(), store=empty_store, scope_id=scope_id)

        signals = await collector.collect(["jwt"], [])

        assert signals.strategies[0].times_used == 1


class TestFromStore:
    @pytest.mark.asyncio
    async def test_unavailable_store_yields_defaults(self, empty_store, scope_id):
        """Storage-backed providers fail independently and fall back."""
        collector = IntelligenceCollector.from_store(empty_store, scope_id)

        signals = await collector.collect(["jwt"], CALLS)

        assert signals.strategies == []
        assert signals.budget_overrides is None
        assert signals.trajectory.pattern is TrajectoryPattern.STUCK

    @pytest.mark.asyncio
    async def test_empty_store_with_schema(self, store, scope_id):
        collector = IntelligenceCollector.from_store(store, scope_id)

        signals = await collector.collect(["jwt"], [])

        assert signals.strategies == []
        assert signals.profile is not None
        assert signals.profile.worst_task_type is None
