"""
Vector-based metric: cosine similarity of feature vectors.

Serves text-derived (ESA-style term weights) and embedding feature
matrices alike; only the feature source differs.
"""

import numpy as np

from ..core.models import FeatureVector
from ..core.types import MetricKind
from ..features.matrix import FeatureMatrix
from .base import MatrixMetric


class VectorMetric(MatrixMetric):
    """Cosine similarity; 0.0 when either vector is all-zero."""

    kind = MetricKind.vector

    def score_pair(self, a: FeatureVector, b: FeatureVector) -> float:
        return a.cosine(b)

    def score_rows(self, matrix: FeatureMatrix, query: FeatureVector) -> np.ndarray:
        dots = matrix.dot_all(query)
        denom = matrix.norms * query.norm
        return np.divide(dots, denom, out=np.zeros_like(dots), where=denom > 0)
