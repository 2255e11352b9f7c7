# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Intelligence collector: parallel fan-out to peripheral signal providers.

Seven requests run concurrently (six providers plus the trajectory analysis)
and are joined with ``asyncio.gather(..., return_exceptions=True)``, so any
subset can fail and fall back to its default without disturbing the rest.
A single follow-up step refreshes strategy usage counts, also best-effort.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Optional, Sequence

from knowledge_context.analysis.tools import DEFAULT_TOOLS, ToolVocabulary
from knowledge_context.analysis.trajectory import ToolCallRecord, analyze_trajectory
from knowledge_context.intelligence.prediction_cache import PredictionCache
from knowledge_context.intelligence.providers import (
    BehavioralProfile,
    BudgetOverrideLoader,
    ImpactStatsProvider,
    NextActionPredictor,
    StalenessTracker,
    StoredAgentProfile,
    StoredBudgetOverrides,
    StoredImpactStats,
    StoredStalenessTracker,
    StoredStrategyCatalog,
    StoredWorkflowPredictor,
    StrategyCatalog,
)
from knowledge_context.observability.metrics import ContextMetrics
from knowledge_context.schemas import (
    IntelligenceSignals,
    StrategyEntry,
    TrajectoryAnalysis,
    default_trajectory,
)
from knowledge_context.storage import BestEffortStore, Storage, best_effort

logger = logging.getLogger(__name__)

SIGNAL_NAMES = (
    "strategies",
    "stale_items",
    "budget_overrides",
    "prediction",
    "trajectory",
    "profile",
    "impact_stats",
)


async def _none() -> None:
    return None


class IntelligenceCollector:
    """Collects the signal bundle consumed by the budget manager.

    Every provider is optional; a missing provider behaves like one that
    failed.
    """

    def __init__(
        self,
        strategies: Optional[StrategyCatalog] = None,
        staleness: Optional[StalenessTracker] = None,
        overrides: Optional[BudgetOverrideLoader] = None,
        predictor: Optional[NextActionPredictor] = None,
        profile: Optional[BehavioralProfile] = None,
        impact: Optional[ImpactStatsProvider] = None,
        store: "Storage | BestEffortStore | None" = None,
        scope_id: Optional[int] = None,
        tools: ToolVocabulary = DEFAULT_TOOLS,
        trajectory_window: int = 10,
        metrics: Optional[ContextMetrics] = None,
    ):
        self.strategies = strategies
        self.staleness = staleness
        self.overrides = overrides
        self.predictor = predictor
        self.profile = profile
        self.impact = impact
        self.db = best_effort(store) if store is not None else None
        self.scope_id = scope_id
        self.tools = tools
        self.trajectory_window = trajectory_window
        self.metrics = metrics

    @classmethod
    def from_store(
        cls,
        store: Storage,
        scope_id: int,
        prediction_cache: Optional[PredictionCache] = None,
        **kwargs: Any,
    ) -> "IntelligenceCollector":
        """Collector wired to the storage-backed providers."""
        return cls(
            strategies=StoredStrategyCatalog(store, scope_id),
            staleness=StoredStalenessTracker(store, scope_id),
            overrides=StoredBudgetOverrides(store, scope_id),
            predictor=StoredWorkflowPredictor(store, scope_id, prediction_cache),
            profile=StoredAgentProfile(store, scope_id),
            impact=StoredImpactStats(store, scope_id),
            store=store,
            scope_id=scope_id,
            **kwargs,
        )

    async def _trajectory(self, calls: Sequence[ToolCallRecord]) -> TrajectoryAnalysis:
        return analyze_trajectory(calls, self.tools, self.trajectory_window)

    async def collect(
        self, keywords: Sequence[str], recent_calls: Sequence[ToolCallRecord]
    ) -> IntelligenceSignals:
        """Gather every signal; failures become defaults."""
        start = time.perf_counter()
        calls = list(recent_calls)
        tool_names = [c.tool_name for c in calls]

        requests: list[Awaitable[Any]] = [
            self.strategies.matching_strategies(keywords) if self.strategies else _none(),
            self.staleness.stale_items() if self.staleness else _none(),
            self.overrides.load_overrides() if self.overrides else _none(),
            self.predictor.predict_next_action(tool_names) if self.predictor else _none(),
            self._trajectory(calls),
            self.profile.profile() if self.profile else _none(),
            self.impact.impact_stats() if self.impact else _none(),
        ]
        results = await asyncio.gather(*requests, return_exceptions=True)

        values: dict[str, Any] = {}
        for name, result in zip(SIGNAL_NAMES, results):
            if isinstance(result, BaseException):
                logger.debug(f"Signal '{name}' unavailable: {result}")
                result = None
            values[name] = result
            if self.metrics is not None:
                self.metrics.record_signal(name, result is not None)

        signals = IntelligenceSignals(
            strategies=list(values["strategies"] or []),
            stale_item_ids=set(values["stale_items"] or ()),
            budget_overrides=values["budget_overrides"],
            prediction=values["prediction"],
            trajectory=values["trajectory"] or default_trajectory(),
            profile=values["profile"],
            impact_stats=dict(values["impact_stats"] or {}),
        )
        if signals.strategies:
            signals.strategies = await self._enrich_strategies(signals.strategies)

        if self.metrics is not None:
            self.metrics.record_latency("collect", (time.perf_counter() - start) * 1000)
        return signals

    async def _enrich_strategies(self, strategies: list[StrategyEntry]) -> list[StrategyEntry]:
        """Refresh usage counts from the strategy catalog."""
        if self.db is None or self.scope_id is None:
            return strategies
        outcomes = await asyncio.gather(
            *(
                self.db.get(
                    "SELECT times_used FROM strategy_catalog WHERE project_id = ? AND name = ?",
                    (self.scope_id, s.name),
                )
                for s in strategies
            )
        )
        for strategy, outcome in zip(strategies, outcomes):
            row = outcome.unwrap_or(None)
            if row and row.get("times_used") is not None:
                strategy.times_used = int(row["times_used"])
        return strategies
