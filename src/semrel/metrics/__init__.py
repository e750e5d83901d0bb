"""
Semantic relatedness metrics.

Variants:
- VectorMetric:   cosine over weighted feature vectors (text, embeddings)
- LinkMetric:     set overlap over link features
- CategoryMetric: set overlap over category features
- EnsembleMetric: weighted sum of normalized sub-metric scores
"""

from __future__ import annotations

from ..core.errors import ConfigurationError
from ..core.types import MetricKind
from ..features.matrix import MetricHandle
from .base import MatrixMetric, SRMetric, TopK, top_k
from .ensemble import EnsembleMember, EnsembleMetric, EnsembleState
from .sets import CategoryMetric, LinkMetric, SetMetric
from .vector import VectorMetric

MATRIX_METRICS: dict[MetricKind, type[MatrixMetric]] = {
    MetricKind.vector: VectorMetric,
    MetricKind.link: LinkMetric,
    MetricKind.category: CategoryMetric,
}


def create_matrix_metric(
    kind: MetricKind | str,
    name: str,
    language: str,
    handle: MetricHandle | None = None,
    workers: int = 1,
) -> MatrixMetric:
    """
    Create a matrix-backed metric of the given kind.

    Raises:
        ConfigurationError: For unknown kinds, or for `ensemble` (use EnsembleMetric)
    """
    try:
        kind = MetricKind(kind)
    except ValueError:
        raise ConfigurationError(f"Unknown metric kind: {kind!r}") from None
    if kind not in MATRIX_METRICS:
        raise ConfigurationError(f"Metric kind '{kind.value}' is not backed by a feature matrix")
    return MATRIX_METRICS[kind](name, language, handle=handle, workers=workers)


__all__ = [
    "CategoryMetric",
    "EnsembleMember",
    "EnsembleMetric",
    "EnsembleState",
    "LinkMetric",
    "MATRIX_METRICS",
    "MatrixMetric",
    "SRMetric",
    "SetMetric",
    "TopK",
    "VectorMetric",
    "create_matrix_metric",
    "top_k",
]
