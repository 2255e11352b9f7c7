# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""
Root pytest configuration with shared fixtures and markers.

This file is automatically loaded by pytest and provides:
- Custom markers for test categories
- An in-memory SQLite knowledge store, with and without full-text indexes
- A seeding helper for knowledge rows
- A deterministic vocabulary embedder and a controllable clock
"""

import re
from typing import Optional, Sequence

import numpy as np
import pytest

from knowledge_context.retrieval.embeddings import (
    cosine_similarity,
    deserialize_embedding,
    serialize_embedding,
)
from knowledge_context.storage import SqliteStorage

SCOPE_ID = 1


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "integration: Mark test as integration test (full pipeline over SQLite)",
    )
    config.addinivalue_line(
        "markers",
        "slow: Mark test as slow-running (may be skipped in quick runs)",
    )


# ============================================================================
# Test Doubles
# ============================================================================


class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class VocabularyEmbedder:
    """EmbeddingProvider with one axis per vocabulary word.

    A text embeds to the counts of the vocabulary words it contains, so
    similarities are easy to reason about in tests. Unknown words are ignored.
    """

    def __init__(self, vocabulary: Sequence[str], available: bool = True):
        self.vocabulary = list(vocabulary)
        self.available = available
        self.calls = 0

    def embed(self, text: str) -> np.ndarray:
        vector = np.zeros(len(self.vocabulary), dtype=np.float32)
        for word in re.findall(r"[a-z0-9]+", text.lower()):
            if word in self.vocabulary:
                vector[self.vocabulary.index(word)] += 1.0
        return vector

    def blob(self, text: str) -> bytes:
        return serialize_embedding(self.embed(text))

    async def generate(self, text: str) -> Optional[np.ndarray]:
        self.calls += 1
        if not self.available or not text:
            return None
        return self.embed(text)

    def dimensions(self) -> int:
        return len(self.vocabulary)

    def cosine_similarity(self, a, b) -> float:
        return cosine_similarity(a, b)

    def deserialize(self, blob: bytes) -> np.ndarray:
        return deserialize_embedding(blob)


class KnowledgeSeeder:
    """Inserts knowledge rows for one scope."""

    def __init__(self, store: SqliteStorage, scope_id: int = SCOPE_ID):
        self.store = store
        self.scope_id = scope_id

    async def file(self, path: str, fragility: int = 0, purpose: Optional[str] = None) -> int:
        result = await self.store.run(
            "INSERT INTO files (project_id, path, fragility, purpose) VALUES (?, ?, ?, ?)",
            (self.scope_id, path, fragility, purpose),
        )
        return result.last_id

    async def decision(
        self,
        title: str,
        decision: str = "",
        outcome_status: str = "pending",
        affects: Optional[str] = None,
        embedding: Optional[bytes] = None,
        decided_at: str = "2025-01-01 00:00:00",
        status: str = "active",
    ) -> int:
        result = await self.store.run(
            """INSERT INTO decisions
               (project_id, title, decision, outcome_status, affects, embedding, decided_at, status)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
            (self.scope_id, title, decision or title, outcome_status, affects, embedding, decided_at, status),
        )
        return result.last_id

    async def learning(
        self,
        title: str,
        content: str = "",
        category: str = "pattern",
        confidence: int = 5,
        embedding: Optional[bytes] = None,
        global_scope: bool = False,
    ) -> int:
        result = await self.store.run(
            """INSERT INTO learnings (project_id, category, title, content, confidence, embedding)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (None if global_scope else self.scope_id, category, title, content or title, confidence, embedding),
        )
        return result.last_id

    async def issue(
        self,
        title: str,
        description: str = "",
        severity: int = 5,
        type: str = "bug",
        status: str = "open",
    ) -> int:
        result = await self.store.run(
            """INSERT INTO issues (project_id, title, description, severity, type, status)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (self.scope_id, title, description, severity, type, status),
        )
        return result.last_id

    async def error_fix(
        self, signature: str, fix_description: str = "", confidence: float = 0.8, times_fixed: int = 1
    ) -> int:
        result = await self.store.run(
            """INSERT INTO error_fix_pairs
               (project_id, error_signature, fix_description, confidence, times_fixed)
               VALUES (?, ?, ?, ?, ?)""",
            (self.scope_id, signature, fix_description, confidence, times_fixed),
        )
        return result.last_id


# ============================================================================
# Shared Fixtures
# ============================================================================


@pytest.fixture
def scope_id():
    return SCOPE_ID


@pytest.fixture
def store():
    """In-memory knowledge store with full-text indexes."""
    storage = SqliteStorage(":memory:")
    storage.initialize_schema()
    yield storage
    storage.close()


@pytest.fixture
def store_without_fts():
    """In-memory knowledge store without full-text indexes."""
    storage = SqliteStorage(":memory:")
    storage.initialize_schema(full_text=False)
    yield storage
    storage.close()


@pytest.fixture
def empty_store():
    """In-memory store with no tables at all."""
    storage = SqliteStorage(":memory:")
    yield storage
    storage.close()


@pytest.fixture
def seed(store):
    return KnowledgeSeeder(store)


@pytest.fixture
def seed_without_fts(store_without_fts):
    return KnowledgeSeeder(store_without_fts)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def embedder():
    return VocabularyEmbedder(
        ["jwt", "token", "refresh", "race", "billing", "invoice", "stripe", "cache", "redis", "auth"]
    )
