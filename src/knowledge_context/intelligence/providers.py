# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""
Peripheral signal providers for the intelligence collector.

One protocol per signal, each with a single read operation that returns a
typed result or raises. The collector treats a raise as "unavailable", so the
storage-backed implementations below query the store directly and let
StorageError propagate.

Providers:
- StrategyCatalog: proven strategies relevant to the current keywords
- StalenessTracker: ids of knowledge items flagged as stale
- BudgetOverrideLoader: persisted budget recommendations
- NextActionPredictor: likely next tool from the recent tool trigram
- BehavioralProfile: per-task-type success rates of past sessions
- ImpactStatsProvider: helped/irrelevant/harmful counts of injected context
"""

import logging
from typing import Optional, Protocol, Sequence, runtime_checkable

from knowledge_context.budget.allocation import OVERRIDES_QUERY, overrides_from_rows
from knowledge_context.intelligence.prediction_cache import PredictionCache
from knowledge_context.schemas import (
    AgentProfile,
    BudgetAllocation,
    ImpactStat,
    StrategyEntry,
    TaskTypeStats,
    WorkflowPrediction,
)
from knowledge_context.storage import Storage

logger = logging.getLogger(__name__)

# Protocol version for compatibility tracking
SIGNAL_PROVIDER_VERSION = "1.0.0"

MIN_STRATEGY_SUCCESS_RATE = 0.5
MIN_STRATEGY_USES = 3
MAX_STRATEGY_CANDIDATES = 10
MAX_STRATEGIES = 3
STALENESS_THRESHOLD = 0.7
MAX_STALE_ITEMS = 10
TRIGRAM_LENGTH = 3
MIN_PREDICTION_SAMPLES = 3
MIN_PREDICTION_CONFIDENCE = 0.5
MIN_PROFILE_SESSIONS = 2
MIN_WORST_TYPE_SESSIONS = 3
IMPACT_WINDOW_DAYS = 30
SESSION_SUCCESS = 2  # sessions.success: 0 failed, 1 partial, 2 succeeded


@runtime_checkable
class StrategyCatalog(Protocol):
    async def matching_strategies(self, keywords: Sequence[str]) -> list[StrategyEntry]: ...


@runtime_checkable
class StalenessTracker(Protocol):
    async def stale_items(self) -> set[str]: ...


@runtime_checkable
class BudgetOverrideLoader(Protocol):
    async def load_overrides(self) -> Optional[BudgetAllocation]: ...


@runtime_checkable
class NextActionPredictor(Protocol):
    async def predict_next_action(self, recent_tools: Sequence[str]) -> Optional[WorkflowPrediction]: ...


@runtime_checkable
class BehavioralProfile(Protocol):
    async def profile(self) -> Optional[AgentProfile]: ...


@runtime_checkable
class ImpactStatsProvider(Protocol):
    async def impact_stats(self) -> dict[str, ImpactStat]: ...


class _StoreProvider:
    def __init__(self, store: Storage, scope_id: int):
        self.store = store
        self.scope_id = scope_id


class StoredStrategyCatalog(_StoreProvider):
    """Strategies with a proven track record, ranked by keyword relevance.

    A keyword found in the strategy name counts twice as much as one found in
    its description; ties fall back to success rate.
    """

    async def matching_strategies(self, keywords: Sequence[str]) -> list[StrategyEntry]:
        rows = await self.store.all(
            """SELECT name, description, success_rate, times_used FROM strategy_catalog
               WHERE project_id = ? AND success_rate >= ? AND times_used >= ?
               ORDER BY success_rate DESC, times_used DESC
               LIMIT ?""",
            (self.scope_id, MIN_STRATEGY_SUCCESS_RATE, MIN_STRATEGY_USES, MAX_STRATEGY_CANDIDATES),
        )
        lowered = [k.lower() for k in keywords]

        def relevance(row: dict) -> int:
            name = (row.get("name") or "").lower()
            description = (row.get("description") or "").lower()
            return sum(2 * (k in name) + (k in description) for k in lowered)

        ranked = sorted(rows, key=lambda r: (-relevance(r), -(r.get("success_rate") or 0.0)))
        return [
            StrategyEntry(
                name=r.get("name") or "",
                description=r.get("description") or "",
                success_rate=float(r.get("success_rate") or 0.0),
                times_used=int(r.get("times_used") or 0),
            )
            for r in ranked[:MAX_STRATEGIES]
        ]


class StoredStalenessTracker(_StoreProvider):
    """Items whose staleness score is above 0.7, as ``"table:id"`` strings."""

    async def stale_items(self) -> set[str]:
        rows = await self.store.all(
            """SELECT source_table, source_id FROM knowledge_freshness
               WHERE project_id = ? AND staleness_score > ?
               ORDER BY staleness_score DESC LIMIT ?""",
            (self.scope_id, STALENESS_THRESHOLD, MAX_STALE_ITEMS),
        )
        return {f"{r['source_table']}:{r['source_id']}" for r in rows}


class StoredBudgetOverrides(_StoreProvider):
    async def load_overrides(self) -> Optional[BudgetAllocation]:
        rows = await self.store.all(OVERRIDES_QUERY, (self.scope_id,))
        if not rows:
            return None
        return overrides_from_rows(rows)


class StoredWorkflowPredictor(_StoreProvider):
    """Predicts the next tool from trigram counts of past sessions.

    Confidence is Laplace-smoothed: (correct + 1) / (total + 2). Trigrams
    seen fewer than three times, or predicted with less than 50% confidence,
    yield no prediction.
    """

    def __init__(self, store: Storage, scope_id: int, cache: Optional[PredictionCache] = None):
        super().__init__(store, scope_id)
        self.cache = cache if cache is not None else PredictionCache()

    async def predict_next_action(self, recent_tools: Sequence[str]) -> Optional[WorkflowPrediction]:
        if len(recent_tools) < TRIGRAM_LENGTH:
            return None
        trigram = ",".join(recent_tools[-TRIGRAM_LENGTH:])

        cached = self.cache.get(trigram)
        if cached is not None:
            return cached

        row = await self.store.get(
            """SELECT predicted_tool, times_correct, times_total FROM workflow_predictions
               WHERE project_id = ? AND trigger_sequence = ?
               ORDER BY confidence DESC LIMIT 1""",
            (self.scope_id, trigram),
        )
        if row is None or (row.get("times_total") or 0) < MIN_PREDICTION_SAMPLES:
            return None

        confidence = ((row.get("times_correct") or 0) + 1) / (row["times_total"] + 2)
        if confidence < MIN_PREDICTION_CONFIDENCE:
            return None

        prediction = WorkflowPrediction(
            predicted_tool=row["predicted_tool"],
            confidence=confidence,
            trigger_sequence=trigram,
        )
        self.cache.set(trigram, prediction)
        return prediction


class StoredAgentProfile(_StoreProvider):
    """Success rates per task type over completed sessions."""

    async def profile(self) -> Optional[AgentProfile]:
        rows = await self.store.all(
            """SELECT task_type, COUNT(*) AS total,
                      AVG(CASE WHEN success = ? THEN 1.0 ELSE 0.0 END) AS success_rate
               FROM sessions
               WHERE project_id = ? AND task_type IS NOT NULL AND ended_at IS NOT NULL
               GROUP BY task_type HAVING COUNT(*) >= ?""",
            (SESSION_SUCCESS, self.scope_id, MIN_PROFILE_SESSIONS),
        )
        best = await self.store.get(
            """SELECT name FROM strategy_catalog
               WHERE project_id = ? AND success_rate >= ? AND times_used >= ?
               ORDER BY success_rate DESC LIMIT 1""",
            (self.scope_id, MIN_STRATEGY_SUCCESS_RATE, MIN_STRATEGY_USES),
        )

        stats = [
            TaskTypeStats(
                task_type=r["task_type"],
                total=int(r["total"]),
                success_rate=float(r["success_rate"] or 0.0),
            )
            for r in rows
        ]
        qualifying = [s for s in stats if s.total >= MIN_WORST_TYPE_SESSIONS]
        worst = min(qualifying, key=lambda s: s.success_rate) if qualifying else None
        return AgentProfile(
            task_type_stats=stats,
            best_strategy=best["name"] if best else None,
            worst_task_type=worst,
        )


class StoredImpactStats(_StoreProvider):
    """Outcome counts of injected context per type over the last 30 days."""

    async def impact_stats(self) -> dict[str, ImpactStat]:
        rows = await self.store.all(
            f"""SELECT context_type, outcome_signal, COUNT(*) AS cnt
                FROM impact_tracking
                WHERE project_id = ? AND created_at > datetime('now', '-{IMPACT_WINDOW_DAYS} days')
                GROUP BY context_type, outcome_signal""",
            (self.scope_id,),
        )
        stats: dict[str, ImpactStat] = {}
        for row in rows:
            stat = stats.setdefault(row["context_type"], ImpactStat())
            count = int(row["cnt"])
            if row["outcome_signal"] in ("helped", "irrelevant", "harmful"):
                setattr(stat, row["outcome_signal"], getattr(stat, row["outcome_signal"]) + count)
            stat.total += count
        return stats
