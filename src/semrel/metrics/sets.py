"""
Set-based metrics over link and category features.

Feature vectors are treated as sets of their non-zero dimensions
(linked concept ids, category ids); weights are ignored.

Measures:
- jaccard: |A & B| / |A | B|
- dice:    2 |A & B| / (|A| + |B|)

Two empty sets score 0.0.
"""

from __future__ import annotations

import numpy as np

from ..core.errors import ConfigurationError
from ..core.models import FeatureVector
from ..core.types import MetricKind
from ..features.matrix import FeatureMatrix, MetricHandle
from .base import MatrixMetric

SET_MEASURES = ("jaccard", "dice")


class SetMetric(MatrixMetric):
    """Overlap measure over feature dimension sets."""

    def __init__(
        self,
        name: str,
        language: str,
        handle: MetricHandle | None = None,
        workers: int = 1,
        measure: str = "jaccard",
    ):
        super().__init__(name, language, handle, workers)
        if measure not in SET_MEASURES:
            raise ConfigurationError(
                f"Unknown set measure {measure!r}; expected one of {SET_MEASURES}"
            )
        self.measure = measure

    def score_pair(self, a: FeatureVector, b: FeatureVector) -> float:
        shared = a.overlap(b)
        if self.measure == "jaccard":
            union = len(a) + len(b) - shared
            return shared / union if union else 0.0
        total = len(a) + len(b)
        return 2.0 * shared / total if total else 0.0

    def score_rows(self, matrix: FeatureMatrix, query: FeatureVector) -> np.ndarray:
        shared = matrix.overlap_all(query)
        if self.measure == "jaccard":
            denom = (matrix.sizes + len(query) - shared).astype(np.float64)
            numer = shared
        else:
            denom = (matrix.sizes + len(query)).astype(np.float64)
            numer = 2.0 * shared
        return np.divide(numer, denom, out=np.zeros_like(shared), where=denom > 0)


class LinkMetric(SetMetric):
    """Relatedness from shared inlinks / outlinks."""

    kind = MetricKind.link


class CategoryMetric(SetMetric):
    """Relatedness from shared category membership."""

    kind = MetricKind.category
