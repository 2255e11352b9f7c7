# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Hybrid retrieval: full-text, substring and semantic lookups."""

from knowledge_context.retrieval.embeddings import (
    EmbeddingProvider,
    SentenceTransformerEmbedder,
    cosine_similarity,
    deserialize_embedding,
    serialize_embedding,
)
from knowledge_context.retrieval.semantic_cache import CachedItem, SemanticCache
from knowledge_context.retrieval.task_context import BuildMetrics, TaskContextBuilder

__all__ = [
    "BuildMetrics",
    "CachedItem",
    "EmbeddingProvider",
    "SemanticCache",
    "SentenceTransformerEmbedder",
    "TaskContextBuilder",
    "cosine_similarity",
    "deserialize_embedding",
    "serialize_embedding",
]
