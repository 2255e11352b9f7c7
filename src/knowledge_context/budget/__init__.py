# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Token budget allocation and context assembly."""

from knowledge_context.budget.allocation import (
    DEFAULT_TOTAL_BUDGET,
    MAX_CATEGORY_BUDGET,
    MIN_CATEGORY_BUDGET,
    apply_weight_adjustments,
    clamp_budget,
    compute_dynamic_budget,
    default_allocation,
    load_budget_overrides,
)
from knowledge_context.budget.manager import BudgetManager

__all__ = [
    "DEFAULT_TOTAL_BUDGET",
    "MAX_CATEGORY_BUDGET",
    "MIN_CATEGORY_BUDGET",
    "BudgetManager",
    "apply_weight_adjustments",
    "clamp_budget",
    "compute_dynamic_budget",
    "default_allocation",
    "load_budget_overrides",
]
