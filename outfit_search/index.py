"""
Nearest-neighbor search over corpus fingerprints.

Two interchangeable backends implement the same contract:

    exhaustive  numpy, float64, distances computed in row chunks
    faiss       faiss.IndexFlatL2 (exact, float32)

Both rank by squared Euclidean distance. On L2-normalized vectors this
gives the same order as cosine similarity. Ties are broken by corpus
insertion order, so identical inputs always produce identical rankings.

The backend is configurable via OUTFIT_INDEX_BACKEND. Exhaustive search
is fine for corpora of a few hundred images; the chunked distance loop
is independent per row and can be split across workers without changing
the interface.
"""

import os
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, Union

import faiss
import numpy as np

from .errors import DimensionMismatch, InvalidArgument

logger = logging.getLogger(__name__)

DEFAULT_BACKEND = os.environ.get("OUTFIT_INDEX_BACKEND", "exhaustive")

# Rows per distance block. Bounds the temporary copy made for
# 512000-dim RGB fingerprints.
QUERY_CHUNK = int(os.environ.get("OUTFIT_QUERY_CHUNK", "64"))

# Sentinel for "return the whole corpus ranked"
ALL = "all"

K = Union[int, str, None]


@dataclass(frozen=True)
class MatchResult:
    """One ranked hit: the stored payload, its distance and corpus position."""

    payload: Any
    distance: float
    position: int


def _resolve_k(k: K, total: int) -> int:
    if k is None or k == ALL:
        return total
    if isinstance(k, bool) or not isinstance(k, (int, np.integer)):
        raise InvalidArgument(f"k must be a non-negative integer or {ALL!r}, got {k!r}")
    if k < 0:
        raise InvalidArgument(f"k must be non-negative, got {k}")
    return min(int(k), total)


class NearestNeighborIndex(ABC):
    """
    Read-only index over (vector, payload) pairs of one corpus.

    Subclasses only supply the distance computation; validation, ranking
    and tie-breaking live here so every backend behaves the same.
    """

    name: str = "base"

    def __init__(self, vectors, payloads: Sequence, dim: Optional[int] = None):
        vectors = np.asarray(vectors, dtype=np.float64)
        if vectors.size == 0:
            if dim is None:
                raise InvalidArgument("dim is required to build an index over no vectors")
            vectors = vectors.reshape(0, dim)
        if vectors.ndim != 2:
            raise InvalidArgument(f"Index vectors must be 2-D, got shape {vectors.shape}")
        if dim is not None and vectors.shape[1] != dim:
            raise DimensionMismatch(
                f"Vectors have {vectors.shape[1]} dimensions, expected {dim}"
            )
        if len(payloads) != vectors.shape[0]:
            raise InvalidArgument(
                f"{vectors.shape[0]} vectors but {len(payloads)} payloads"
            )

        self.dim = vectors.shape[1]
        self.payloads = list(payloads)
        self._prepare(vectors)

    def __len__(self) -> int:
        return len(self.payloads)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({len(self)} vectors, {self.dim}d)"

    @abstractmethod
    def _prepare(self, vectors: np.ndarray) -> None:
        """Store vectors in the backend's own form."""

    @abstractmethod
    def _distances(self, query: np.ndarray) -> np.ndarray:
        """Squared Euclidean distance from query to every stored vector, in insertion order."""

    def _check_query(self, vector) -> np.ndarray:
        query = np.asarray(vector, dtype=np.float64)
        if query.ndim == 2 and query.shape[0] == 1:
            query = query[0]
        if query.ndim != 1 or query.shape[0] != self.dim:
            raise DimensionMismatch(
                f"Query dimension {query.shape} doesn't match "
                f"index dimension {self.dim}"
            )
        return query

    def query(self, vector, k: K = ALL) -> List[MatchResult]:
        """
        Rank stored payloads by distance to vector.

        Args:
            vector: Query fingerprint, same length as the indexed vectors.
            k: Number of results; ALL (or None) for the full corpus.
               k larger than the corpus returns the full corpus.

        Returns:
            MatchResults sorted by ascending distance, ties in insertion order.

        Raises:
            DimensionMismatch: Query length differs from the index.
            InvalidArgument: Negative or non-integer k.
        """
        query = self._check_query(vector)
        k = _resolve_k(k, len(self))
        if k == 0:
            return []

        distances = self._distances(query)
        order = np.argsort(distances, kind="stable")[:k]

        logger.debug(f"{self.name} query: {len(self)} candidates -> {len(order)} results")

        return [
            MatchResult(
                payload=self.payloads[i],
                distance=float(distances[i]),
                position=int(i),
            )
            for i in order
        ]


class ExhaustiveIndex(NearestNeighborIndex):
    """Brute-force search with numpy."""

    name = "exhaustive"

    def __init__(self, vectors, payloads: Sequence, dim: Optional[int] = None,
                 chunk_size: Optional[int] = None):
        self.chunk_size = max(1, chunk_size or QUERY_CHUNK)
        super().__init__(vectors, payloads, dim)

    def _prepare(self, vectors: np.ndarray) -> None:
        # Corpus vectors are already read-only and shared; anything else is copied
        if vectors.flags.writeable:
            vectors = vectors.copy()
            vectors.setflags(write=False)
        self._vectors = vectors

    def _distances(self, query: np.ndarray) -> np.ndarray:
        total = self._vectors.shape[0]
        out = np.empty(total, dtype=np.float64)

        # Each block is independent; identical vectors give exactly 0.0
        for start in range(0, total, self.chunk_size):
            block = self._vectors[start:start + self.chunk_size] - query
            out[start:start + block.shape[0]] = np.einsum("ij,ij->i", block, block)

        return out


class FaissFlatIndex(NearestNeighborIndex):
    """Exact search delegated to faiss.IndexFlatL2."""

    name = "faiss"

    def _prepare(self, vectors: np.ndarray) -> None:
        self._index = faiss.IndexFlatL2(vectors.shape[1])
        if vectors.shape[0]:
            self._index.add(np.ascontiguousarray(vectors, dtype=np.float32))

    def _distances(self, query: np.ndarray) -> np.ndarray:
        total = self._index.ntotal
        if total == 0:
            return np.empty(0, dtype=np.float64)

        q = np.ascontiguousarray(query.reshape(1, -1), dtype=np.float32)
        distances, indices = self._index.search(q, total)

        # Back to insertion order so the shared stable sort breaks ties
        out = np.empty(total, dtype=np.float64)
        out[indices[0]] = np.maximum(distances[0], 0.0)
        return out


BACKENDS = {
    ExhaustiveIndex.name: ExhaustiveIndex,
    FaissFlatIndex.name: FaissFlatIndex,
}


def build_index(corpus, backend: Optional[str] = None) -> NearestNeighborIndex:
    """
    Build a nearest-neighbor index over a corpus.

    Payloads are the corpus image references.

    Args:
        corpus: Corpus (or anything with .vectors, .images and .dim).
        backend: 'exhaustive' or 'faiss'. Defaults to DEFAULT_BACKEND.

    Raises:
        InvalidArgument: Unknown backend.
    """
    backend = backend or DEFAULT_BACKEND
    index_cls = BACKENDS.get(backend)
    if index_cls is None:
        raise InvalidArgument(
            f"Unknown index backend: {backend!r} (expected one of {sorted(BACKENDS)})"
        )

    index = index_cls(corpus.vectors, corpus.images, dim=corpus.dim)
    logger.info(f"Built {backend} index: {len(index)} vectors, {index.dim}d")
    return index


def query(index: NearestNeighborIndex, vector, k: K = ALL) -> List[MatchResult]:
    """Functional form of index.query()."""
    return index.query(vector, k)
