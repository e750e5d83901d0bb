"""
Data model for semantic relatedness.

These types are shared by every layer:
- FeatureVector: immutable sparse vector (dimension id -> weight)
- SimilarityResult / ResultList: ranked mostSimilar output
- CosimilarityMatrix: dense rows x cols score grid
- EnsembleWeight: one (sub-metric, coefficient) entry of an ensemble
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, Iterator, Mapping, Sequence

import numpy as np


@dataclass(frozen=True)
class Concept:
    """An addressable article or resolved phrase."""

    id: int
    label: str | None = None


class FeatureVector:
    """
    Sparse, immutable feature vector.

    Dimensions are kept sorted so that dot products reduce to an
    intersection of two sorted id arrays. Zero weights are dropped;
    absent dimensions are implicitly zero.
    """

    __slots__ = ("_dims", "_weights", "_norm")

    def __init__(self, weights: Mapping[int, float] | None = None):
        items = sorted(
            (int(dim), float(w)) for dim, w in (weights or {}).items() if w != 0.0
        )
        dims = np.fromiter((d for d, _ in items), dtype=np.int64, count=len(items))
        values = np.fromiter((w for _, w in items), dtype=np.float64, count=len(items))
        self._set(dims, values)

    def _set(self, dims: np.ndarray, values: np.ndarray) -> None:
        dims.flags.writeable = False
        values.flags.writeable = False
        self._dims = dims
        self._weights = values
        self._norm = float(np.sqrt(np.dot(values, values))) if len(values) else 0.0

    @classmethod
    def from_arrays(cls, dims: Sequence[int], weights: Sequence[float]) -> FeatureVector:
        """
        Build a vector from parallel dimension / weight arrays.

        Duplicate dimensions are summed.

        Args:
            dims: Dimension ids (any order)
            weights: Weight per dimension

        Returns:
            FeatureVector
        """
        dims_arr = np.asarray(dims, dtype=np.int64)
        weights_arr = np.asarray(weights, dtype=np.float64)
        if dims_arr.shape != weights_arr.shape:
            raise ValueError("dims and weights must have the same length")

        unique, inverse = np.unique(dims_arr, return_inverse=True)
        summed = np.zeros(len(unique), dtype=np.float64)
        np.add.at(summed, inverse, weights_arr)
        keep = summed != 0.0

        vector = cls.__new__(cls)
        vector._set(unique[keep].copy(), summed[keep].copy())
        return vector

    @classmethod
    def from_members(cls, members: Iterable[int], weight: float = 1.0) -> FeatureVector:
        """Binary vector over a set of members (links, categories)."""
        dims = sorted(set(int(m) for m in members))
        return cls.from_arrays(dims, [weight] * len(dims))

    @classmethod
    def weighted_sum(cls, parts: Iterable[tuple[FeatureVector, float]]) -> FeatureVector:
        """Linear combination sum(weight * vector)."""
        dims: list[np.ndarray] = []
        weights: list[np.ndarray] = []
        for vector, weight in parts:
            dims.append(vector.dims)
            weights.append(vector.weights * weight)
        if not dims:
            return cls()
        return cls.from_arrays(np.concatenate(dims), np.concatenate(weights))

    # =========================================================================
    # Accessors
    # =========================================================================

    @property
    def dims(self) -> np.ndarray:
        return self._dims

    @property
    def weights(self) -> np.ndarray:
        return self._weights

    @property
    def norm(self) -> float:
        return self._norm

    def is_empty(self) -> bool:
        return len(self._dims) == 0

    def get(self, dim: int, default: float = 0.0) -> float:
        i = int(np.searchsorted(self._dims, dim))
        if i < len(self._dims) and self._dims[i] == dim:
            return float(self._weights[i])
        return default

    def to_dict(self) -> dict[int, float]:
        return {int(d): float(w) for d, w in zip(self._dims, self._weights)}

    def __len__(self) -> int:
        return len(self._dims)

    def __iter__(self) -> Iterator[int]:
        return (int(d) for d in self._dims)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, FeatureVector):
            return NotImplemented
        return np.array_equal(self._dims, other._dims) and np.array_equal(
            self._weights, other._weights
        )

    def __hash__(self) -> int:
        return hash((self._dims.tobytes(), self._weights.tobytes()))

    def __repr__(self) -> str:
        preview = ", ".join(f"{d}: {w:g}" for d, w in list(self.to_dict().items())[:5])
        more = ", ..." if len(self) > 5 else ""
        return f"FeatureVector({{{preview}{more}}})"

    # =========================================================================
    # Similarity primitives
    # =========================================================================

    def dot(self, other: FeatureVector) -> float:
        """Dot product over shared dimensions."""
        if self.is_empty() or other.is_empty():
            return 0.0
        _, i, j = np.intersect1d(
            self._dims, other._dims, assume_unique=True, return_indices=True
        )
        return float(np.dot(self._weights[i], other._weights[j]))

    def cosine(self, other: FeatureVector) -> float:
        """Cosine similarity; 0.0 when either vector is all-zero."""
        if self._norm == 0.0 or other._norm == 0.0:
            return 0.0
        return self.dot(other) / (self._norm * other._norm)

    def overlap(self, other: FeatureVector) -> int:
        """Number of shared dimensions."""
        if self.is_empty() or other.is_empty():
            return 0
        return len(np.intersect1d(self._dims, other._dims, assume_unique=True))


# =============================================================================
# Results
# =============================================================================


@dataclass(frozen=True)
class SimilarityResult:
    """One scored neighbour."""

    id: int
    raw: float
    score: float


def rank_key(result: SimilarityResult) -> tuple[float, int]:
    """Sort key: normalized score descending, concept id ascending."""
    return (-result.score, result.id)


class ResultList(Sequence[SimilarityResult]):
    """
    Ranked, bounded list of SimilarityResult.

    Always sorted by normalized score descending with ties broken by
    ascending concept id, holds at most `k` results and no duplicate ids.
    """

    def __init__(self, results: Iterable[SimilarityResult], k: int):
        if k < 0:
            raise ValueError(f"k must be non-negative, got {k}")
        seen: set[int] = set()
        unique = []
        for r in sorted(results, key=rank_key):
            if r.id in seen:
                continue
            seen.add(r.id)
            unique.append(r)
        self._results = tuple(unique[:k])
        self.k = k

    def __getitem__(self, index):  # type: ignore[override]
        return self._results[index]

    def __len__(self) -> int:
        return len(self._results)

    def ids(self) -> list[int]:
        return [r.id for r in self._results]

    def scores(self) -> list[float]:
        return [r.score for r in self._results]

    def __repr__(self) -> str:
        body = ", ".join(f"{r.id}:{r.score:.4f}" for r in self._results)
        return f"ResultList(k={self.k}, [{body}])"


class CosimilarityMatrix:
    """Dense |rows| x |cols| score grid with cell[i][j] = score(rows[i], cols[j])."""

    def __init__(self, rows: Sequence[int], cols: Sequence[int], values: np.ndarray):
        values = np.asarray(values, dtype=np.float64)
        if values.shape != (len(rows), len(cols)):
            raise ValueError(
                f"values shape {values.shape} does not match ({len(rows)}, {len(cols)})"
            )
        values.flags.writeable = False
        self.rows = tuple(int(r) for r in rows)
        self.cols = tuple(int(c) for c in cols)
        self.values = values

    @property
    def shape(self) -> tuple[int, int]:
        return self.values.shape  # type: ignore[return-value]

    def cell(self, i: int, j: int) -> float:
        return float(self.values[i, j])

    def tolist(self) -> list[list[float]]:
        return self.values.tolist()


# =============================================================================
# Ensembles
# =============================================================================


@dataclass(frozen=True)
class EnsembleWeight:
    """A sub-metric reference with its coefficient."""

    metric: str
    coefficient: float

    def __post_init__(self):
        if not math.isfinite(self.coefficient):
            raise ValueError(f"coefficient for {self.metric} must be finite")
