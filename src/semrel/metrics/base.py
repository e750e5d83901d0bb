"""
Metric base classes.

Every metric answers three query shapes on raw (unnormalized) scores:

- similarity(a, b)            -> float
- most_similar(query, k)      -> [(concept_id, raw)] ranked, at most k
- cosimilarity(rows, cols)    -> (|rows|, |cols|) ndarray

Each call reads one served state for its whole duration. Callers that need
several calls (or the matching normalizers) against the same version pass
`state=` explicitly, as the QueryEngine does.
"""

from __future__ import annotations

import heapq
import logging
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from typing import Any, ClassVar, Collection, Sequence

import numpy as np

from ..core.models import FeatureVector
from ..core.types import MetricKind
from ..features.matrix import FeatureMatrix, MetricHandle, MetricState

logger = logging.getLogger(__name__)


class TopK:
    """
    Bounded min-heap keeping the k best (concept_id, score) pairs.

    "Best" means higher score, then lower concept id. The heap root is the
    current worst entry, so each offer costs O(log k).
    """

    def __init__(self, k: int):
        self.k = k
        self._heap: list[tuple[float, int]] = []

    def offer(self, concept_id: int, score: float) -> None:
        if self.k <= 0:
            return
        entry = (score, -concept_id)
        if len(self._heap) < self.k:
            heapq.heappush(self._heap, entry)
        elif entry > self._heap[0]:
            heapq.heapreplace(self._heap, entry)

    def __len__(self) -> int:
        return len(self._heap)

    def results(self) -> list[tuple[int, float]]:
        """Kept pairs, best first."""
        ordered = sorted(self._heap, reverse=True)
        return [(-neg_id, score) for score, neg_id in ordered]


def top_k(
    ids: np.ndarray,
    scores: np.ndarray,
    k: int,
    exclude: Collection[int] = (),
) -> list[tuple[int, float]]:
    """Rank aligned id / score arrays, skipping excluded ids."""
    heap = TopK(k)
    exclude = set(exclude)
    for concept_id, score in zip(ids.tolist(), scores.tolist()):
        if concept_id in exclude:
            continue
        heap.offer(concept_id, score)
    return heap.results()


class SRMetric(ABC):
    """A semantic relatedness metric for one language."""

    kind: ClassVar[MetricKind]

    def __init__(self, name: str, language: str):
        self.name = name
        self.language = language

    @abstractmethod
    def state(self) -> Any:
        """Snapshot of everything this metric reads; raises NotBuiltError if unbuilt."""

    @abstractmethod
    def is_built(self) -> bool:
        ...

    @abstractmethod
    def contains(self, concept_id: int, state: Any = None) -> bool:
        ...

    @abstractmethod
    def similarity(self, a: int, b: int, state: Any = None) -> float:
        ...

    @abstractmethod
    def most_similar(
        self,
        query: Any,
        k: int,
        exclude: Collection[int] = (),
        state: Any = None,
    ) -> list[tuple[int, float]]:
        ...

    @abstractmethod
    def cosimilarity(
        self,
        rows: Sequence[int],
        cols: Sequence[int],
        state: Any = None,
    ) -> np.ndarray:
        ...

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, language={self.language!r})"


class MatrixMetric(SRMetric):
    """
    Metric scoring FeatureVectors from a single feature matrix.

    Subclasses supply the pairwise function and its bulk form over every
    row of the matrix.
    """

    def __init__(self, name: str, language: str, handle: MetricHandle | None = None, workers: int = 1):
        super().__init__(name, language)
        self.handle = handle or MetricHandle(name, language)
        self.workers = max(1, workers)

    def state(self) -> MetricState:
        return self.handle.require()

    def is_built(self) -> bool:
        return self.handle.is_built()

    def contains(self, concept_id: int, state: MetricState | None = None) -> bool:
        state = state or self.state()
        return concept_id in state.matrix

    @abstractmethod
    def score_pair(self, a: FeatureVector, b: FeatureVector) -> float:
        ...

    @abstractmethod
    def score_rows(self, matrix: FeatureMatrix, query: FeatureVector) -> np.ndarray:
        """Score `query` against every row of `matrix` (aligned with matrix.ids)."""

    def query_vector(self, query: int | FeatureVector, state: MetricState) -> FeatureVector:
        """Resolve a concept id (or pass through a vector) to a FeatureVector."""
        if isinstance(query, FeatureVector):
            return query
        return state.matrix.vector(query)

    def similarity(self, a: int, b: int, state: MetricState | None = None) -> float:
        state = state or self.state()
        return self.score_pair(state.matrix.vector(a), state.matrix.vector(b))

    def score_all(
        self, query: int | FeatureVector, state: MetricState | None = None
    ) -> tuple[np.ndarray, np.ndarray]:
        """Raw scores of `query` against every concept: (ids, scores)."""
        state = state or self.state()
        vector = self.query_vector(query, state)
        return state.matrix.ids, self.score_rows(state.matrix, vector)

    def most_similar(
        self,
        query: int | FeatureVector,
        k: int,
        exclude: Collection[int] = (),
        state: MetricState | None = None,
    ) -> list[tuple[int, float]]:
        ids, scores = self.score_all(query, state)
        return top_k(ids, scores, k, exclude)

    def cosimilarity(
        self,
        rows: Sequence[int],
        cols: Sequence[int],
        state: MetricState | None = None,
    ) -> np.ndarray:
        state = state or self.state()
        matrix = state.matrix
        row_vectors = [matrix.vector(r) for r in rows]
        col_vectors = [matrix.vector(c) for c in cols]
        out = np.zeros((len(rows), len(cols)), dtype=np.float64)

        if not len(rows) or not len(cols):
            return out

        # Cells use the pairwise function so each equals similarity() exactly.
        def fill(i: int) -> None:
            vector = row_vectors[i]
            out[i, :] = [self.score_pair(vector, col) for col in col_vectors]

        if self.workers > 1 and len(rows) > 1:
            with ThreadPoolExecutor(max_workers=self.workers) as executor:
                list(executor.map(fill, range(len(rows))))
        else:
            for i in range(len(rows)):
                fill(i)
        return out
