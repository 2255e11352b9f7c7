# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Storage contract, best-effort wrapper and the SQLite adapter."""

from knowledge_context.storage.protocols import (
    STORAGE_PROTOCOL_VERSION,
    Row,
    RunResult,
    Storage,
    StorageError,
)
from knowledge_context.storage.result import (
    BestEffortStore,
    OutcomeKind,
    QueryOutcome,
    best_effort,
)
from knowledge_context.storage.sqlite import SqliteStorage

__all__ = [
    "STORAGE_PROTOCOL_VERSION",
    "BestEffortStore",
    "OutcomeKind",
    "QueryOutcome",
    "Row",
    "RunResult",
    "SqliteStorage",
    "Storage",
    "StorageError",
    "best_effort",
]
