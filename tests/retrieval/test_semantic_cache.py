# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Tests for the semantic cache and embedding helpers."""

import asyncio

import numpy as np
import pytest
import pytest_asyncio

from knowledge_context.retrieval.embeddings import (
    SentenceTransformerEmbedder,
    cosine_similarity,
    deserialize_embedding,
    serialize_embedding,
)
from knowledge_context.retrieval.semantic_cache import SemanticCache


class TestEmbeddingHelpers:
    def test_serialize_roundtrip(self):
        vector = np.array([0.5, -1.0, 2.0], dtype=np.float32)

        assert np.array_equal(deserialize_embedding(serialize_embedding(vector)), vector)

    def test_misaligned_buffer_raises(self):
        with pytest.raises(ValueError):
            deserialize_embedding(b"\x00\x01\x02")

    def test_cosine_of_zero_vector(self):
        """Zero magnitude yields 0.0 instead of NaN."""
        assert cosine_similarity(np.zeros(3, dtype=np.float32), np.ones(3, dtype=np.float32)) == 0.0


class StubModel:
    def __init__(self, dim: int):
        self.dim = dim

    def encode(self, sentences, batch_size=32, show_progress_bar=False, normalize_embeddings=True):
        return np.ones(self.dim, dtype=np.float32)


class TestSentenceTransformerEmbedder:
    """Tests for the sentence-transformers adapter with an injected model."""

    @pytest.mark.asyncio
    async def test_generate_with_injected_model(self):
        embedder = SentenceTransformerEmbedder(embedding_dim=4, model=StubModel(4))

        vector = await embedder.generate("jwt refresh")

        assert vector.shape == (4,)
        assert embedder.dimensions() == 4

    @pytest.mark.asyncio
    async def test_empty_text_yields_none(self):
        embedder = SentenceTransformerEmbedder(embedding_dim=4, model=StubModel(4))

        assert await embedder.generate("") is None

    @pytest.mark.asyncio
    async def test_dimension_mismatch_yields_none(self):
        embedder = SentenceTransformerEmbedder(embedding_dim=8, model=StubModel(4))

        assert await embedder.generate("jwt") is None


@pytest_asyncio.fixture
async def seeded(seed, embedder):
    """Two valid learnings, two broken ones and a failed decision."""
    ids = {
        "jwt": await seed.learning(
            "JWT refresh token race", category="gotcha", confidence=9,
            embedding=embedder.blob("jwt refresh token race"),
        ),
        "billing": await seed.learning(
            "Stripe billing invoice", confidence=6, embedding=embedder.blob("stripe billing invoice")
        ),
        "malformed": await seed.learning("Broken vector", embedding=b"\x00\x01\x02"),
        "wrong_dim": await seed.learning("Short vector", embedding=serialize_embedding([1.0, 2.0])),
        "no_vector": await seed.learning("No vector"),
        "redis": await seed.decision(
            "Use redis cache", outcome_status="failed", embedding=embedder.blob("redis cache")
        ),
    }
    return ids


class TestSemanticCacheWarm:
    """Tests for warming."""

    @pytest.mark.asyncio
    async def test_warm_drops_malformed_vectors(self, store, embedder, seeded, scope_id):
        """Misaligned and wrong-dimension vectors are skipped silently."""
        cache = SemanticCache(embedder)

        size = await cache.warm(store, scope_id)

        assert size == 3
        assert cache.is_warmed
        assert {item.id for item in cache.items() if item.kind == "learning"} == {
            seeded["jwt"],
            seeded["billing"],
        }

    @pytest.mark.asyncio
    async def test_max_size_splits_between_kinds(self, store, embedder, seeded, scope_id):
        cache = SemanticCache(embedder, max_size=2)

        await cache.warm(store, scope_id)

        assert sorted(item.kind for item in cache.items()) == ["decision", "learning"]
        learning = next(item for item in cache.items() if item.kind == "learning")
        assert learning.id == seeded["jwt"]

    @pytest.mark.asyncio
    async def test_concurrent_warms_collapse(self, store, embedder, seeded, scope_id):
        """A warm requested while one is in flight does nothing."""
        cache = SemanticCache(embedder)

        results = await asyncio.gather(cache.warm(store, scope_id), cache.warm(store, scope_id))

        assert sorted(results) == [0, 3]
        assert cache.size == 3

    @pytest.mark.asyncio
    async def test_failed_warm_keeps_previous_items(self, store, empty_store, embedder, seeded, scope_id):
        cache = SemanticCache(embedder)
        await cache.warm(store, scope_id)

        size = await cache.warm(empty_store, scope_id)

        assert size == 0
        assert cache.size == 3

    @pytest.mark.asyncio
    async def test_warm_without_tables(self, empty_store, embedder, scope_id):
        cache = SemanticCache(embedder)

        assert await cache.warm(empty_store, scope_id) == 0
        assert not cache.is_warmed

    @pytest.mark.asyncio
    async def test_reset(self, store, embedder, seeded, scope_id):
        cache = SemanticCache(embedder)
        await cache.warm(store, scope_id)

        cache.reset()

        assert cache.size == 0
        assert not cache.is_warmed


class TestSemanticCacheQuery:
    """Tests for nearest-neighbour queries."""

    @pytest.mark.asyncio
    async def test_returns_matches_above_threshold(self, store, embedder, seeded, scope_id):
        cache = SemanticCache(embedder, similarity_threshold=0.3)
        await cache.warm(store, scope_id)

        matches = await cache.query("jwt token")

        assert [m.id for m in matches] == [seeded["jwt"]]
        assert matches[0].kind == "learning"
        assert matches[0].category == "gotcha"
        assert matches[0].similarity == pytest.approx(2 / (np.sqrt(2) * 2), rel=1e-5)

    @pytest.mark.asyncio
    async def test_decision_confidence_reflects_outcome(self, store, embedder, seeded, scope_id):
        """Failed decisions carry the lowest confidence."""
        cache = SemanticCache(embedder)
        await cache.warm(store, scope_id)

        matches = await cache.query("redis cache")

        assert matches[0].kind == "decision"
        assert matches[0].confidence == 1.0
        assert matches[0].similarity == pytest.approx(1.0, rel=1e-5)

    @pytest.mark.asyncio
    async def test_sorted_by_similarity_and_capped(self, store, embedder, seeded, scope_id):
        cache = SemanticCache(embedder, similarity_threshold=0.0)
        await cache.warm(store, scope_id)

        matches = await cache.query("jwt token billing", max_results=2)

        assert len(matches) == 2
        assert matches[0].similarity >= matches[1].similarity
        assert matches[0].id == seeded["jwt"]

    @pytest.mark.asyncio
    async def test_empty_cache_skips_embedding(self, embedder):
        cache = SemanticCache(embedder)

        assert await cache.query("jwt") == []
        assert embedder.calls == 0

    @pytest.mark.asyncio
    async def test_unavailable_embedder(self, store, embedder, seeded, scope_id):
        cache = SemanticCache(embedder)
        await cache.warm(store, scope_id)
        embedder.available = False

        assert await cache.query("jwt token") == []
