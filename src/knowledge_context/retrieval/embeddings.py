# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Embedding provider contract and the sentence-transformers adapter.

Stored embeddings are raw little-endian float32 buffers. The engine never
trains or hosts a model; it only needs to embed query text and compare it
against pre-computed vectors.

Model: all-MiniLM-L6-v2 (384-dim, fast, good quality)
"""

import asyncio
import logging
from typing import Optional, Protocol, cast, runtime_checkable

import numpy as np
from numpy.typing import NDArray

logger = logging.getLogger(__name__)

Vector = NDArray[np.float32]


def serialize_embedding(vector: "Vector | list[float]") -> bytes:
    """Encode a vector as a float32 byte buffer."""
    return np.asarray(vector, dtype="<f4").tobytes()


def deserialize_embedding(blob: bytes) -> Vector:
    """Decode a float32 byte buffer.

    Raises:
        ValueError: If the buffer length is not a multiple of four bytes.
    """
    if len(blob) % 4 != 0:
        raise ValueError(f"Embedding buffer of {len(blob)} bytes is not float32-aligned")
    return np.frombuffer(blob, dtype="<f4").astype(np.float32)


def cosine_similarity(a: Vector, b: Vector) -> float:
    """Cosine similarity, 0.0 when either vector has zero magnitude."""
    norm = float(np.linalg.norm(a) * np.linalg.norm(b))
    if norm == 0.0:
        return 0.0
    return float(np.dot(a, b) / norm)


@runtime_checkable
class EmbeddingProvider(Protocol):
    """Produces and compares embeddings.

    ``generate`` returns None when no embedding can be produced (model
    missing, empty text); callers treat that as "semantic search off".
    """

    async def generate(self, text: str) -> Optional[Vector]: ...

    def dimensions(self) -> int: ...

    def cosine_similarity(self, a: Vector, b: Vector) -> float: ...

    def deserialize(self, blob: bytes) -> Vector: ...


class EmbeddingModel(Protocol):
    """Protocol for sentence-transformers style models."""

    def encode(
        self,
        sentences: "list[str] | str",
        batch_size: int = 32,
        show_progress_bar: bool = False,
        normalize_embeddings: bool = True,
    ) -> Vector: ...


class SentenceTransformerEmbedder:
    """EmbeddingProvider backed by a lazily loaded sentence-transformers model.

    Example:
        >>> embedder = SentenceTransformerEmbedder()
        >>> vector = await embedder.generate("token refresh race")

    Attributes:
        model_name: Name of the sentence-transformers model.
        embedding_dim: Dimension of embeddings.
    """

    DEFAULT_MODEL = "all-MiniLM-L6-v2"
    DEFAULT_EMBEDDING_DIM = 384

    def __init__(
        self,
        model_name: str = DEFAULT_MODEL,
        embedding_dim: int = DEFAULT_EMBEDDING_DIM,
        model: Optional[EmbeddingModel] = None,
    ):
        """Initialize the embedder.

        Args:
            model_name: Sentence-transformers model name.
            embedding_dim: Expected embedding dimension.
            model: Pre-loaded model (mainly for tests).
        """
        self.model_name = model_name
        self.embedding_dim = embedding_dim
        self._model = model
        self._unavailable = False

    def _load_model(self) -> Optional[EmbeddingModel]:
        if self._model is not None or self._unavailable:
            return self._model

        try:
            from sentence_transformers import SentenceTransformer

            logger.info(f"Loading embedding model: {self.model_name}")
            self._model = cast(EmbeddingModel, SentenceTransformer(self.model_name))
            logger.info("Embedding model loaded successfully")
        except Exception as e:
            # Semantic features stay off for the rest of the process
            self._unavailable = True
            logger.warning(f"Embedding model unavailable, semantic search disabled: {e}")
        return self._model

    def _encode(self, text: str) -> Optional[Vector]:
        model = self._load_model()
        if model is None:
            return None
        vector = np.asarray(
            model.encode(text, show_progress_bar=False, normalize_embeddings=True),
            dtype=np.float32,
        )
        if vector.shape != (self.embedding_dim,):
            logger.warning(
                f"Model {self.model_name} returned shape {vector.shape}, expected ({self.embedding_dim},)"
            )
            return None
        return vector

    async def generate(self, text: str) -> Optional[Vector]:
        if not text.strip():
            return None
        try:
            return await asyncio.to_thread(self._encode, text)
        except Exception as e:
            logger.warning(f"Embedding generation failed: {e}")
            return None

    def dimensions(self) -> int:
        return self.embedding_dim

    def cosine_similarity(self, a: Vector, b: Vector) -> float:
        return cosine_similarity(a, b)

    def deserialize(self, blob: bytes) -> Vector:
        return deserialize_embedding(blob)
