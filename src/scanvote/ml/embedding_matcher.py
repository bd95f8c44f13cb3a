"""Fast classifier: nearest-neighbour matching of face embeddings.

The embedding itself is computed by an external ``FaceEmbedder``; this module
only compares it against the known reference embeddings.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

import numpy as np

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from numpy.typing import NDArray

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EmbeddingMatch:
    """Closest known identity for a frame's face embedding."""

    label: str
    distance: float


class FaceEmbedder(Protocol):
    """Protocol for face embedding models."""

    @property
    def embedding_dim(self) -> int:
        """Return the embedding dimensionality (e.g., 128)."""
        ...

    def embed(self, frame: object) -> NDArray[np.float32] | None:
        """Compute the embedding of the most prominent face in a frame.

        Args:
            frame: A captured frame (encoded bytes or decoded image array).

        Returns:
            1-D embedding vector, or None if no face was found.
        """
        ...


class FastClassifier(Protocol):
    """Protocol for the fast (primary) classification strategy."""

    def match_embedding(self, frame: object) -> EmbeddingMatch | None:
        """Return the closest known identity, or None if there is no face."""
        ...


class EmbeddingMatcher:
    """Matches frame embeddings against labelled reference embeddings."""

    def __init__(self, embedder: FaceEmbedder, references: Mapping[str, Sequence[NDArray[np.float32]]]) -> None:
        self._embedder = embedder
        labels: list[str] = []
        vectors: list[NDArray[np.float32]] = []
        for label, label_vectors in references.items():
            for vector in label_vectors:
                labels.append(label)
                vectors.append(np.asarray(vector, dtype=np.float32).ravel())

        self._labels = labels
        if vectors:
            self._matrix = np.vstack(vectors)
        else:
            self._matrix = np.empty((0, embedder.embedding_dim), dtype=np.float32)
        logger.info("Embedding matcher ready with %d reference vectors", len(labels))

    @property
    def reference_count(self) -> int:
        return len(self._labels)

    def match_embedding(self, frame: object) -> EmbeddingMatch | None:
        if not self._labels:
            return None

        embedding = self._embedder.embed(frame)
        if embedding is None:
            return None

        query = np.asarray(embedding, dtype=np.float32).ravel()
        if query.shape[0] != self._matrix.shape[1]:
            raise ValueError(f"Embedding has {query.shape[0]} dimensions, expected {self._matrix.shape[1]}")

        distances = np.linalg.norm(self._matrix - query, axis=1)
        best = int(np.argmin(distances))
        return EmbeddingMatch(label=self._labels[best], distance=float(distances[best]))
