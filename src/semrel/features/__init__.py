"""
Feature matrices: in-memory form, on-disk store and feature sources.

The builder lives in semrel.features.builder and is imported from there,
since it depends on the metrics package.
"""

from .matrix import FeatureMatrix, MetricHandle, MetricState
from .sources import (
    EmbeddingFeatureSource,
    FeatureSource,
    JsonlFeatureSource,
    MappingFeatureSource,
    MemberSetFeatureSource,
)
from .store import FeatureMatrixStore, Manifest

__all__ = [
    "EmbeddingFeatureSource",
    "FeatureMatrix",
    "FeatureMatrixStore",
    "FeatureSource",
    "JsonlFeatureSource",
    "Manifest",
    "MappingFeatureSource",
    "MemberSetFeatureSource",
    "MetricHandle",
    "MetricState",
]
