# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""
Token budget allocation across context categories.

Default split of the 2000-token budget:

    contradictions 250, critical_warnings 300, strategies 200,
    decisions 300, learnings 300, file_context 300, error_fixes 150,
    reserve 200 (open issues)

The split moves in three ways, all clamped to [100, 800] per category:
- persisted recommendations (load_budget_overrides)
- accuracy multipliers from calibration (apply_weight_adjustments)
- feedback from session signals (compute_dynamic_budget): impact stats,
  then stale-item counts, then the trajectory, applied in that order
"""

import logging
import math
from dataclasses import replace
from typing import Iterable, Mapping, Optional

from knowledge_context.schemas import (
    BudgetAllocation,
    ImpactStat,
    IntelligenceSignals,
    TrajectoryAnalysis,
    TrajectoryPattern,
)
from knowledge_context.storage import BestEffortStore, Row, Storage, best_effort

logger = logging.getLogger(__name__)

DEFAULT_TOTAL_BUDGET = 2000
MIN_CATEGORY_BUDGET = 100
MAX_CATEGORY_BUDGET = 800

# Persisted recommendation context types
CONTEXT_TYPE_TO_CATEGORY = {
    "warning": "critical_warnings",
    "strategy": "strategies",
    "decision": "decisions",
    "learning": "learnings",
    "file": "file_context",
    "error_fix": "error_fixes",
}

# Impact-tracking context types
IMPACT_TYPE_TO_CATEGORY = {
    "decisions": "decisions",
    "learnings": "learnings",
    "files": "file_context",
    "error_fixes": "error_fixes",
    "warnings": "critical_warnings",
    "strategies": "strategies",
}

ENRICHMENT_CATEGORIES = ("critical_warnings", "decisions", "learnings", "error_fixes")

IMPACT_MIN_SAMPLES = 5
IMPACT_IRRELEVANT_RATE = 0.5
IMPACT_HELP_RATE = 0.6
STALE_ITEM_THRESHOLD = 5
TRAJECTORY_MIN_CONFIDENCE = 0.5

# (category, multiplier) pairs per trajectory pattern
TRAJECTORY_ADJUSTMENTS: dict[TrajectoryPattern, tuple[tuple[str, float], ...]] = {
    TrajectoryPattern.EXPLORATION: (("file_context", 1.4), ("strategies", 1.2)),
    TrajectoryPattern.FAILING: (("error_fixes", 1.5), ("critical_warnings", 1.3)),
    TrajectoryPattern.STUCK: (("strategies", 1.5), ("file_context", 1.3)),
    TrajectoryPattern.CONFIDENT: (("reserve", 0.7),),
}

OVERRIDES_QUERY = "SELECT context_type, recommended_budget FROM budget_recommendations WHERE project_id = ?"


def default_allocation() -> BudgetAllocation:
    return BudgetAllocation()


def clamp_budget(value: float) -> int:
    """Round half up and clamp to the per-category bounds."""
    rounded = int(math.floor(value + 0.5))
    return max(MIN_CATEGORY_BUDGET, min(MAX_CATEGORY_BUDGET, rounded))


def _scaled(allocation: BudgetAllocation, adjustments: Iterable[tuple[str, float]]) -> BudgetAllocation:
    changes = {name: clamp_budget(getattr(allocation, name) * factor) for name, factor in adjustments}
    return replace(allocation, **changes)


def apply_weight_adjustments(
    allocation: BudgetAllocation, weights: Optional[Mapping[str, float]]
) -> BudgetAllocation:
    """Scale categories by calibration accuracy multipliers.

    Args:
        allocation: Starting allocation.
        weights: Multipliers keyed by signal. ``prediction`` (or, when absent,
            ``suggestion``) scales file context; ``enrichment`` scales
            warnings, decisions, learnings and error fixes.

    Returns:
        A new allocation; the input is not modified.
    """
    if not weights:
        return allocation

    adjustments: list[tuple[str, float]] = []
    file_weight = weights.get("prediction", weights.get("suggestion"))
    if file_weight is not None:
        adjustments.append(("file_context", file_weight))
    enrichment = weights.get("enrichment")
    if enrichment is not None:
        adjustments.extend((name, enrichment) for name in ENRICHMENT_CATEGORIES)
    return _scaled(allocation, adjustments)


def overrides_from_rows(rows: Iterable[Row], base: Optional[BudgetAllocation] = None) -> BudgetAllocation:
    """Apply persisted recommendations (context_type, recommended_budget)."""
    changes: dict[str, int] = {}
    for row in rows:
        category = CONTEXT_TYPE_TO_CATEGORY.get(row.get("context_type") or "")
        budget = row.get("recommended_budget")
        if category is None or not isinstance(budget, (int, float)):
            continue
        changes[category] = clamp_budget(budget)
    return replace(base or default_allocation(), **changes)


async def load_budget_overrides(store: "Storage | BestEffortStore", scope_id: int) -> BudgetAllocation:
    """Defaults overlaid with persisted recommendations; defaults on failure."""
    outcome = await best_effort(store).all(OVERRIDES_QUERY, (scope_id,))
    return overrides_from_rows(outcome.unwrap_or([]))


def _apply_impact(allocation: BudgetAllocation, impact_stats: Optional[Mapping[str, ImpactStat]]) -> BudgetAllocation:
    if not impact_stats:
        return allocation
    adjustments: list[tuple[str, float]] = []
    for context_type, stats in impact_stats.items():
        category = IMPACT_TYPE_TO_CATEGORY.get(context_type)
        if category is None or stats.total < IMPACT_MIN_SAMPLES:
            continue
        if stats.irrelevant / stats.total > IMPACT_IRRELEVANT_RATE:
            adjustments.append((category, 0.8))
        elif stats.helped / stats.total > IMPACT_HELP_RATE:
            adjustments.append((category, 1.2))
    return _scaled(allocation, adjustments)


def _apply_staleness(allocation: BudgetAllocation, stale_item_ids: set[str]) -> BudgetAllocation:
    if len(stale_item_ids) < STALE_ITEM_THRESHOLD:
        return allocation
    return _scaled(allocation, (("decisions", 0.85), ("learnings", 0.85)))


def _apply_trajectory(allocation: BudgetAllocation, trajectory: TrajectoryAnalysis) -> BudgetAllocation:
    if trajectory.confidence < TRAJECTORY_MIN_CONFIDENCE:
        return allocation
    return _scaled(allocation, TRAJECTORY_ADJUSTMENTS.get(trajectory.pattern, ()))


def compute_dynamic_budget(
    signals: IntelligenceSignals,
    base_overrides: Optional[BudgetAllocation] = None,
    impact_stats: Optional[Mapping[str, ImpactStat]] = None,
) -> BudgetAllocation:
    """Fold session signals into the allocation.

    Starts from ``base_overrides`` (or the signals' overrides, or defaults),
    then applies impact, staleness and trajectory adjustments in that order.
    """
    allocation = base_overrides or signals.budget_overrides or default_allocation()
    stats = impact_stats if impact_stats is not None else signals.impact_stats
    allocation = _apply_impact(allocation, stats)
    allocation = _apply_staleness(allocation, signals.stale_item_ids)
    allocation = _apply_trajectory(allocation, signals.trajectory)
    return allocation
