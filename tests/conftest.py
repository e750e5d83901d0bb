"""
Pytest configuration for semrel tests.

The shared corpus is the three-concept scenario:

    A (1) = {t1: 1, t2: 1}
    B (2) = {t1: 1, t2: 0.5}
    C (3) = {t3: 1}

with term dimensions t1=1, t2=2, t3=3. Raw cosine: sim(A, B) ~ 0.949,
sim(A, C) = sim(B, C) = 0.
"""

from __future__ import annotations

import math

import pytest

from semrel.core.models import FeatureVector
from semrel.core.types import NormalizerRole
from semrel.features.matrix import FeatureMatrix, MetricHandle, MetricState
from semrel.features.sources import MappingFeatureSource
from semrel.features.store import FeatureMatrixStore
from semrel.metrics import VectorMetric
from semrel.normalizers import IdentityNormalizer

A, B, C = 1, 2, 3
COS_AB = 1.5 / (math.sqrt(2.0) * math.sqrt(1.25))

SCENARIO_FEATURES = {
    A: {1: 1.0, 2: 1.0},
    B: {1: 1.0, 2: 0.5},
    C: {3: 1.0},
}

SCENARIO_LABELS = {A: "Jazz", B: "Blues", C: "Algebra"}


def identity_state(matrix: FeatureMatrix) -> MetricState:
    """State serving `matrix` with pass-through normalizers for every role."""
    return MetricState(
        matrix=matrix,
        normalizers={role: IdentityNormalizer.passthrough() for role in NormalizerRole},
    )


@pytest.fixture
def scenario_vectors() -> dict[int, FeatureVector]:
    return {cid: FeatureVector(weights) for cid, weights in SCENARIO_FEATURES.items()}


@pytest.fixture
def scenario_matrix(scenario_vectors) -> FeatureMatrix:
    return FeatureMatrix("esa", "simple", scenario_vectors, "v1", labels=SCENARIO_LABELS)


@pytest.fixture
def scenario_source() -> MappingFeatureSource:
    return MappingFeatureSource(SCENARIO_FEATURES)


@pytest.fixture
def vector_metric(scenario_matrix) -> VectorMetric:
    """Cosine metric already serving the scenario with identity normalizers."""
    handle = MetricHandle("esa", "simple", identity_state(scenario_matrix))
    return VectorMetric("esa", "simple", handle=handle)


@pytest.fixture
def store(tmp_path) -> FeatureMatrixStore:
    return FeatureMatrixStore(tmp_path / "sr")
