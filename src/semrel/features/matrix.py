"""
Feature matrices and the handles that serve them.

A FeatureMatrix maps concept ids to FeatureVectors for one (metric,
language) pair. It is immutable once constructed and keeps an inverted
index (dimension -> rows) so that a query vector can be scored against
every concept by touching only the postings of its own dimensions.

MetricHandle holds the currently served MetricState (matrix plus fitted
normalizers). Rebuilds swap in a whole new state by reference, so a query
that grabbed a state keeps a consistent view until it finishes.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, Mapping

import numpy as np

from ..core.errors import NotBuiltError, NotFittedError, NotFoundError
from ..core.models import FeatureVector
from ..core.types import NormalizerRole
from ..normalizers import Normalizer

logger = logging.getLogger(__name__)


class FeatureMatrix:
    """Immutable concept id -> FeatureVector mapping with an inverted index."""

    def __init__(
        self,
        metric: str,
        language: str,
        vectors: Mapping[int, FeatureVector],
        version: str,
        labels: Mapping[int, str] | None = None,
        created_at: datetime | None = None,
    ):
        self.metric = metric
        self.language = language
        self.version = version
        self.created_at = created_at or datetime.now(timezone.utc)

        ids = np.array(sorted(int(i) for i in vectors), dtype=np.int64)
        ids.flags.writeable = False
        self._ids = ids
        self._vectors = tuple(vectors[int(i)] for i in ids)
        self._rows = {int(cid): row for row, cid in enumerate(ids)}
        self._labels = dict(labels or {})

        self._norms = np.array([v.norm for v in self._vectors], dtype=np.float64)
        self._sizes = np.array([len(v) for v in self._vectors], dtype=np.int64)
        self._build_postings()

    def _build_postings(self) -> None:
        if not self._vectors or not self._sizes.sum():
            self._post_dims = np.empty(0, dtype=np.int64)
            self._post_ptr = np.zeros(1, dtype=np.int64)
            self._post_rows = np.empty(0, dtype=np.int64)
            self._post_weights = np.empty(0, dtype=np.float64)
            return

        rows = np.repeat(np.arange(len(self._vectors), dtype=np.int64), self._sizes)
        dims = np.concatenate([v.dims for v in self._vectors])
        weights = np.concatenate([v.weights for v in self._vectors])

        order = np.argsort(dims, kind="stable")
        dims, rows, weights = dims[order], rows[order], weights[order]
        unique, starts = np.unique(dims, return_index=True)

        self._post_dims = unique
        self._post_ptr = np.append(starts, len(dims)).astype(np.int64)
        self._post_rows = rows
        self._post_weights = weights

    # =========================================================================
    # Lookup
    # =========================================================================

    @property
    def ids(self) -> np.ndarray:
        """Concept ids in ascending order (row order)."""
        return self._ids

    @property
    def norms(self) -> np.ndarray:
        return self._norms

    @property
    def sizes(self) -> np.ndarray:
        """Number of non-zero dimensions per row."""
        return self._sizes

    def __len__(self) -> int:
        return len(self._ids)

    def __contains__(self, concept_id: object) -> bool:
        return concept_id in self._rows

    def row(self, concept_id: int) -> int:
        try:
            return self._rows[concept_id]
        except KeyError:
            raise NotFoundError("Concept", concept_id, f"{self.metric}/{self.language}") from None

    def vector(self, concept_id: int) -> FeatureVector:
        """
        Get the feature vector of a concept.

        Raises:
            NotFoundError: If the concept is not in this matrix
        """
        return self._vectors[self.row(concept_id)]

    def label(self, concept_id: int) -> str | None:
        return self._labels.get(concept_id)

    @property
    def labels(self) -> dict[int, str]:
        return dict(self._labels)

    def items(self) -> Iterable[tuple[int, FeatureVector]]:
        return zip((int(i) for i in self._ids), self._vectors)

    # =========================================================================
    # Bulk scoring
    # =========================================================================

    def _accumulate(self, query: FeatureVector, use_weights: bool) -> np.ndarray:
        scores = np.zeros(len(self._ids), dtype=np.float64)
        if query.is_empty() or not len(self._post_dims):
            return scores

        hits = np.searchsorted(self._post_dims, query.dims)
        hits = np.minimum(hits, len(self._post_dims) - 1)
        matched = self._post_dims[hits] == query.dims

        for slot, weight in zip(hits[matched], query.weights[matched]):
            start, end = self._post_ptr[slot], self._post_ptr[slot + 1]
            rows = self._post_rows[start:end]
            if use_weights:
                scores[rows] += weight * self._post_weights[start:end]
            else:
                scores[rows] += 1.0
        return scores

    def dot_all(self, query: FeatureVector) -> np.ndarray:
        """Dot product of `query` with every row."""
        return self._accumulate(query, use_weights=True)

    def overlap_all(self, query: FeatureVector) -> np.ndarray:
        """Shared-dimension count of `query` with every row."""
        return self._accumulate(query, use_weights=False)

    # =========================================================================
    # Serialization helpers
    # =========================================================================

    def to_arrays(self) -> dict[str, np.ndarray]:
        """CSR-style arrays: ids, indptr, dims, weights."""
        indptr = np.zeros(len(self._ids) + 1, dtype=np.int64)
        np.cumsum(self._sizes, out=indptr[1:])
        if self._vectors:
            dims = np.concatenate([v.dims for v in self._vectors])
            weights = np.concatenate([v.weights for v in self._vectors])
        else:
            dims = np.empty(0, dtype=np.int64)
            weights = np.empty(0, dtype=np.float64)
        return {"ids": np.asarray(self._ids), "indptr": indptr, "dims": dims, "weights": weights}

    @classmethod
    def from_arrays(
        cls,
        metric: str,
        language: str,
        version: str,
        arrays: Mapping[str, np.ndarray],
        labels: Mapping[int, str] | None = None,
        created_at: datetime | None = None,
    ) -> FeatureMatrix:
        ids, indptr = arrays["ids"], arrays["indptr"]
        dims, weights = arrays["dims"], arrays["weights"]
        vectors = {
            int(cid): FeatureVector.from_arrays(
                dims[indptr[row] : indptr[row + 1]], weights[indptr[row] : indptr[row + 1]]
            )
            for row, cid in enumerate(ids)
        }
        return cls(metric, language, vectors, version, labels=labels, created_at=created_at)

    def __repr__(self) -> str:
        return (
            f"FeatureMatrix(metric={self.metric!r}, language={self.language!r}, "
            f"version={self.version!r}, concepts={len(self)})"
        )


# =============================================================================
# Served state
# =============================================================================


@dataclass(frozen=True)
class MetricState:
    """A built matrix together with the normalizers fitted for it."""

    matrix: FeatureMatrix
    normalizers: Mapping[NormalizerRole, Normalizer] = field(default_factory=dict)

    def normalizer(self, role: NormalizerRole | str) -> Normalizer:
        """
        Get the fitted normalizer for a query shape.

        Raises:
            NotFittedError: If no fitted normalizer exists for the role
        """
        role = NormalizerRole(role)
        normalizer = self.normalizers.get(role)
        if normalizer is None or not normalizer.fitted:
            raise NotFittedError(
                f"No fitted {role.value} normalizer for "
                f"{self.matrix.metric}/{self.matrix.language} ({self.matrix.version})"
            )
        return normalizer


class MetricHandle:
    """
    Reference to the MetricState currently served for (metric, language).

    Readers call current()/require() once per query; swap() replaces the
    reference atomically and never mutates the old state.
    """

    def __init__(self, metric: str, language: str, state: MetricState | None = None):
        self.metric = metric
        self.language = language
        self._state = state
        self._lock = threading.Lock()

    def current(self) -> MetricState | None:
        return self._state

    def require(self) -> MetricState:
        """
        Get the served state.

        Raises:
            NotBuiltError: If nothing has been built yet
        """
        state = self._state
        if state is None:
            raise NotBuiltError(self.metric, self.language)
        return state

    def is_built(self) -> bool:
        return self._state is not None

    def swap(self, state: MetricState) -> MetricState | None:
        """Serve `state` from now on; returns the previous state."""
        if state.matrix.metric != self.metric or state.matrix.language != self.language:
            raise ValueError(
                f"Cannot serve {state.matrix.metric}/{state.matrix.language} "
                f"from handle {self.metric}/{self.language}"
            )
        with self._lock:
            previous, self._state = self._state, state
        logger.info(
            "Swapped %s/%s to version %s (was %s)",
            self.metric,
            self.language,
            state.matrix.version,
            previous.matrix.version if previous else None,
        )
        return previous
