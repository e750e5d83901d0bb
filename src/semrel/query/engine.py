"""
Query engine.

Runtime façade over one metric. Every call:

1. Checks request size against the configured ceilings, before anything
   else is touched.
2. Takes one state snapshot from the metric and checks it is built, the
   needed normalizer is fitted and the concept ids exist.
3. Delegates raw scoring to the metric.
4. Normalizes the raw scores and shapes a SimilarityResult, ResultList or
   CosimilarityMatrix.

Pairwise similarity and cosimilarity use the `similarity` normalizer, so
every cosimilarity cell equals the matching similarity score. mostSimilar
uses the `most_similar` normalizer.
"""

from __future__ import annotations

import logging
from typing import Any, Collection, Sequence

import numpy as np

from ..core.errors import CapacityExceededError, NotFoundError
from ..core.models import CosimilarityMatrix, ResultList, SimilarityResult
from ..core.types import NormalizerRole
from ..metrics.base import SRMetric

logger = logging.getLogger(__name__)

DEFAULT_MAX_RESULT_MATRIX_CELLS = 1_000_000
DEFAULT_MAX_MOST_SIMILAR_K = 10_000


class QueryEngine:
    """
    Validating, normalizing front for a metric.

    Args:
        metric: Metric to query
        max_result_matrix_cells: Ceiling on |rows| x |cols| for cosimilarity
        max_most_similar_k: Ceiling on k for mostSimilar
        exclude_query_concept: Drop the query concept from its own mostSimilar results
    """

    def __init__(
        self,
        metric: SRMetric,
        max_result_matrix_cells: int = DEFAULT_MAX_RESULT_MATRIX_CELLS,
        max_most_similar_k: int = DEFAULT_MAX_MOST_SIMILAR_K,
        exclude_query_concept: bool = False,
    ):
        self.metric = metric
        self.max_result_matrix_cells = max_result_matrix_cells
        self.max_most_similar_k = max_most_similar_k
        self.exclude_query_concept = exclude_query_concept

    @property
    def name(self) -> str:
        return self.metric.name

    @property
    def language(self) -> str:
        return self.metric.language

    def snapshot(self) -> Any:
        """
        Current state of the metric, for callers that need several
        consistent calls.

        Raises:
            NotBuiltError: If the metric has not been built
        """
        return self.metric.state()

    # =========================================================================
    # Preconditions
    # =========================================================================

    def check_cells(self, num_rows: int, num_cols: int) -> None:
        cells = num_rows * num_cols
        if cells > self.max_result_matrix_cells:
            raise CapacityExceededError(cells, self.max_result_matrix_cells)

    def check_k(self, k: int) -> None:
        if k < 0:
            raise ValueError(f"k must be non-negative, got {k}")
        if k > self.max_most_similar_k:
            raise CapacityExceededError(k, self.max_most_similar_k, what="results")

    def _require_concepts(self, ids: Collection[int], state: Any) -> None:
        for concept_id in ids:
            if not self.metric.contains(concept_id, state):
                raise NotFoundError("Concept", concept_id, f"{self.name}/{self.language}")

    # =========================================================================
    # Queries
    # =========================================================================

    def similarity(self, a: int, b: int, state: Any = None) -> SimilarityResult:
        """
        Normalized relatedness of two concepts.

        Returns:
            SimilarityResult for `b` with raw and normalized score

        Raises:
            NotBuiltError, NotFittedError, NotFoundError
        """
        state = state if state is not None else self.snapshot()
        normalizer = state.normalizer(NormalizerRole.similarity)
        self._require_concepts((a, b), state)

        raw = self.metric.similarity(a, b, state=state)
        return SimilarityResult(id=b, raw=raw, score=normalizer.normalize(raw))

    def most_similar(
        self,
        query: Any,
        k: int,
        exclude: Collection[int] = (),
        state: Any = None,
    ) -> ResultList:
        """
        Top-k concepts most related to a concept id or a query vector.

        Args:
            query: Concept id, or a vector in the metric's feature space
            k: Maximum number of results
            exclude: Concept ids never returned
            state: Snapshot to query (defaults to the current one)

        Returns:
            ResultList sorted by normalized score, ties by concept id

        Raises:
            CapacityExceededError: If k exceeds max_most_similar_k
            NotBuiltError, NotFittedError, NotFoundError
        """
        self.check_k(k)
        state = state if state is not None else self.snapshot()
        normalizer = state.normalizer(NormalizerRole.most_similar)

        exclude = set(exclude)
        if isinstance(query, (int, np.integer)):
            query = int(query)
            self._require_concepts((query,), state)
            if self.exclude_query_concept:
                exclude.add(query)

        if k == 0:
            return ResultList([], k)

        # Normalizers are only weakly monotone: raw scores below the k-th
        # can normalize to the same value, and those ties rank by concept id.
        fetch = k
        while True:
            raw = self.metric.most_similar(query, fetch, exclude=exclude, state=state)
            scores = normalizer.normalize_array(np.array([s for _, s in raw], dtype=np.float64))
            if len(raw) < fetch or scores[-1] < scores[k - 1]:
                break
            fetch *= 2

        results = [
            SimilarityResult(id=cid, raw=r, score=float(score))
            for (cid, r), score in zip(raw, scores)
        ]
        return ResultList(results, k)

    def cosimilarity(
        self,
        rows: Sequence[int],
        cols: Sequence[int],
        state: Any = None,
    ) -> CosimilarityMatrix:
        """
        Normalized |rows| x |cols| relatedness matrix.

        The size ceiling is checked before the metric state is even read.

        Raises:
            CapacityExceededError: If |rows| x |cols| exceeds max_result_matrix_cells
            NotBuiltError, NotFittedError, NotFoundError
        """
        self.check_cells(len(rows), len(cols))
        state = state if state is not None else self.snapshot()
        normalizer = state.normalizer(NormalizerRole.similarity)
        self._require_concepts(set(rows) | set(cols), state)

        logger.debug("Cosimilarity %s/%s: %dx%d", self.name, self.language, len(rows), len(cols))
        raw = self.metric.cosimilarity(list(rows), list(cols), state=state)
        return CosimilarityMatrix(rows, cols, normalizer.normalize_array(raw))

    def __repr__(self) -> str:
        return f"QueryEngine({self.metric!r})"
