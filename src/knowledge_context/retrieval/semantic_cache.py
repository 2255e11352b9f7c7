# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""
Warmed in-memory semantic cache over learnings and decisions.

Holds up to ``max_size`` stored items with embeddings and answers
nearest-neighbour queries with a brute-force cosine scan. With N <= 500 and
a 384-dim model the scan is a single matrix-vector product.

The cache is swapped, never mutated: ``warm`` builds a complete snapshot and
replaces the old one at the end, so a concurrent ``query`` sees either the
previous set or the new one.
"""

import logging
from dataclasses import dataclass, field
from typing import Literal, Optional

import numpy as np
from numpy.typing import NDArray

from knowledge_context.retrieval.embeddings import EmbeddingProvider
from knowledge_context.schemas import OutcomeStatus, SemanticMatch
from knowledge_context.storage import BestEffortStore, Row, Storage, best_effort

logger = logging.getLogger(__name__)

DEFAULT_MAX_SIZE = 500
DEFAULT_SIMILARITY_THRESHOLD = 0.3

# Decisions have no stored confidence; their outcome stands in for it
DECISION_CONFIDENCE = {
    OutcomeStatus.FAILED.value: 1.0,
    OutcomeStatus.REVISED.value: 2.0,
}
DEFAULT_DECISION_CONFIDENCE = 5.0

LEARNINGS_QUERY = """
    SELECT id, category, title, content, confidence, embedding FROM learnings
    WHERE (project_id = ? OR project_id IS NULL)
      AND archived_at IS NULL AND embedding IS NOT NULL
    ORDER BY confidence DESC
    LIMIT ?
"""

DECISIONS_QUERY = """
    SELECT id, title, decision, outcome_status, embedding FROM decisions
    WHERE project_id = ? AND status = 'active' AND embedding IS NOT NULL
    ORDER BY decided_at DESC
    LIMIT ?
"""


@dataclass(frozen=True)
class CachedItem:
    """A knowledge item held in the semantic cache."""

    id: int
    kind: Literal["learning", "decision"]
    title: str
    content: str
    confidence: float
    embedding: NDArray[np.float32] = field(repr=False, compare=False)
    category: Optional[str] = None


@dataclass(frozen=True)
class _Snapshot:
    items: tuple[CachedItem, ...] = ()
    matrix: Optional[NDArray[np.float32]] = None  # (N, D), rows unit-normalized
    valid: Optional[NDArray[np.bool_]] = None  # rows with non-zero magnitude

    @classmethod
    def build(cls, items: list[CachedItem]) -> "_Snapshot":
        if not items:
            return cls()
        matrix = np.vstack([item.embedding for item in items]).astype(np.float32)
        norms = np.linalg.norm(matrix, axis=1)
        valid = norms > 0
        matrix[valid] = matrix[valid] / norms[valid][:, None]
        return cls(items=tuple(items), matrix=matrix, valid=valid)


class SemanticCache:
    """Nearest-neighbour cache of top knowledge items.

    Example:
        >>> cache = SemanticCache(embedder)
        >>> await cache.warm(store, scope_id=1)
        >>> matches = await cache.query("jwt refresh token race", max_results=5)

    Attributes:
        max_size: Total cached items, split evenly between kinds.
        similarity_threshold: Minimum cosine similarity of a match.
    """

    def __init__(
        self,
        embedder: EmbeddingProvider,
        max_size: int = DEFAULT_MAX_SIZE,
        similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
    ):
        self.embedder = embedder
        self.max_size = max_size
        self.similarity_threshold = similarity_threshold
        self._snapshot = _Snapshot()
        self._warming = False
        self._warmed = False

    @property
    def size(self) -> int:
        return len(self._snapshot.items)

    @property
    def is_warmed(self) -> bool:
        return self._warmed

    def items(self) -> tuple[CachedItem, ...]:
        return self._snapshot.items

    async def warm(self, store: "Storage | BestEffortStore", scope_id: int) -> int:
        """Load the top learnings and most recent decisions with embeddings.

        Calls made while a warm is already running return the current size
        without doing anything.

        Returns:
            Number of items cached after warming.
        """
        if self._warming:
            return self.size

        self._warming = True
        try:
            db = best_effort(store)
            per_kind = self.max_size // 2
            learnings = await db.all(LEARNINGS_QUERY, (scope_id, per_kind))
            decisions = await db.all(DECISIONS_QUERY, (scope_id, per_kind))

            if not learnings.ok and not decisions.ok:
                logger.debug("Semantic cache warm skipped: knowledge store unavailable")
                return 0

            items = [
                item
                for item in (
                    *(self._from_learning(r) for r in learnings.unwrap_or([])),
                    *(self._from_decision(r) for r in decisions.unwrap_or([])),
                )
                if item is not None
            ]
            self._snapshot = _Snapshot.build(items)
            self._warmed = True
            logger.debug(f"Semantic cache warmed with {len(items)} items")
            return len(items)
        finally:
            self._warming = False

    def _vector(self, blob: object) -> Optional[NDArray[np.float32]]:
        if not isinstance(blob, (bytes, bytearray, memoryview)):
            return None
        try:
            vector = self.embedder.deserialize(bytes(blob))
        except Exception as e:
            logger.debug(f"Dropping malformed embedding: {e}")
            return None
        if vector.shape != (self.embedder.dimensions(),):
            return None
        return vector

    def _from_learning(self, row: Row) -> Optional[CachedItem]:
        vector = self._vector(row.get("embedding"))
        if vector is None:
            return None
        return CachedItem(
            id=int(row["id"]),
            kind="learning",
            title=row.get("title") or "",
            content=row.get("content") or "",
            confidence=float(row.get("confidence") or 0),
            embedding=vector,
            category=row.get("category"),
        )

    def _from_decision(self, row: Row) -> Optional[CachedItem]:
        vector = self._vector(row.get("embedding"))
        if vector is None:
            return None
        return CachedItem(
            id=int(row["id"]),
            kind="decision",
            title=row.get("title") or "",
            content=row.get("decision") or "",
            confidence=DECISION_CONFIDENCE.get(row.get("outcome_status") or "", DEFAULT_DECISION_CONFIDENCE),
            embedding=vector,
        )

    async def query(self, text: str, max_results: int = 10) -> list[SemanticMatch]:
        """Return cached items most similar to ``text``.

        Empty when the cache is empty or no embedding can be produced.
        """
        snapshot = self._snapshot
        if not snapshot.items or max_results <= 0:
            return []

        vector = await self.embedder.generate(text)
        if vector is None:
            return []
        query = np.asarray(vector, dtype=np.float32)
        if snapshot.matrix is None or query.shape != (snapshot.matrix.shape[1],):
            return []
        norm = float(np.linalg.norm(query))
        if norm == 0.0:
            return []

        similarities = snapshot.matrix @ (query / norm)
        similarities[~snapshot.valid] = 0.0

        candidates = np.flatnonzero(similarities >= self.similarity_threshold)
        ranked = candidates[np.argsort(-similarities[candidates], kind="stable")][:max_results]

        return [
            SemanticMatch(
                id=snapshot.items[i].id,
                kind=snapshot.items[i].kind,
                title=snapshot.items[i].title,
                content=snapshot.items[i].content,
                category=snapshot.items[i].category,
                confidence=snapshot.items[i].confidence,
                similarity=float(similarities[i]),
            )
            for i in ranked
        ]

    def reset(self) -> None:
        """Drop every cached item."""
        self._snapshot = _Snapshot()
        self._warmed = False
