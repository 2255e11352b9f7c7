# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""
Context retrieval, ranking and budget-constrained assembly for an AI coding
assistant's knowledge store.

Typical use:
    >>> from knowledge_context import ContextSession, SqliteStorage
    >>> session = ContextSession(SqliteStorage("knowledge.db"), scope_id=1)
    >>> injection = await session.on_tool_call("memory_query", {"query": "jwt refresh"})
"""

from knowledge_context.budget import BudgetManager, compute_dynamic_budget
from knowledge_context.config import ContextConfig, load_config
from knowledge_context.contradictions import (
    detect_contradictions,
    detect_deep_contradictions,
    serialize_contradictions,
)
from knowledge_context.schemas import (
    BudgetAllocation,
    Contradiction,
    ContextSection,
    IntelligenceSignals,
    SectionCategory,
    TaskContext,
    TaskType,
)
from knowledge_context.session import ContextInjection, ContextSession
from knowledge_context.storage import SqliteStorage, Storage, StorageError
from knowledge_context.tokens import CharTokenEstimator, estimate_tokens

__version__ = "0.1.0"

__all__ = [
    "BudgetAllocation",
    "BudgetManager",
    "CharTokenEstimator",
    "ContextConfig",
    "ContextInjection",
    "ContextSection",
    "ContextSession",
    "Contradiction",
    "IntelligenceSignals",
    "SectionCategory",
    "SqliteStorage",
    "Storage",
    "StorageError",
    "TaskContext",
    "TaskType",
    "__version__",
    "compute_dynamic_budget",
    "detect_contradictions",
    "detect_deep_contradictions",
    "estimate_tokens",
    "load_config",
    "serialize_contradictions",
]
