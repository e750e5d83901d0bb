"""
Tests for the feature matrix store, builder and build coordinator.
"""

import threading
import time
from unittest.mock import patch

import numpy as np
import pytest

from semrel.core.errors import BuildIOError
from semrel.core.models import Concept, FeatureVector
from semrel.core.types import BuildMode, MetricKind, NormalizerRole
from semrel.features.builder import BuildCoordinator, BuildStatus, FeatureMatrixBuilder
from semrel.features.matrix import FeatureMatrix
from semrel.features.store import LATEST_FILE, FeatureMatrixStore
from semrel.metrics import LinkMetric, VectorMetric
from semrel.normalizers import PercentileNormalizer
from conftest import A, B, C, SCENARIO_FEATURES, SCENARIO_LABELS


def make_builder(store, source, metric=None, **kwargs):
    metric = metric or VectorMetric("esa", "simple")
    kwargs.setdefault("sample_size", 200)
    return FeatureMatrixBuilder(metric, source, store, PercentileNormalizer(), **kwargs)


def publish_scenario(store, scenario_vectors):
    version = store.new_version("esa", "simple")
    matrix = FeatureMatrix("esa", "simple", scenario_vectors, version, labels=SCENARIO_LABELS)
    normalizers = {
        NormalizerRole.similarity: PercentileNormalizer().fit([0.0, 0.5, 1.0], version=version)
    }
    store.publish(matrix, normalizers)
    return matrix


class FailingSource:
    def contribution(self, concept_id):
        raise OSError("index unavailable")


# =============================================================================
# Store
# =============================================================================


class TestFeatureMatrixStore:
    """Versioned publish / load."""

    def test_nothing_published(self, store):
        assert store.load("esa", "simple") is None
        assert store.latest_version("esa", "simple") is None
        assert store.keys() == []

    def test_publish_and_load(self, store, scenario_vectors):
        matrix = publish_scenario(store, scenario_vectors)

        state = store.load("esa", "simple")
        assert state.matrix.version == matrix.version
        assert list(state.matrix.ids) == [A, B, C]
        assert state.matrix.vector(B) == scenario_vectors[B]
        assert state.matrix.label(A) == "Jazz"
        assert state.normalizer(NormalizerRole.similarity).normalize(1.0) == pytest.approx(1.0)
        assert NormalizerRole.most_similar not in state.normalizers
        assert store.keys() == [("esa", "simple")]

    def test_manifest_records_kind(self, store, scenario_vectors):
        matrix = FeatureMatrix("outlink", "simple", scenario_vectors, store.new_version("outlink", "simple"))
        store.publish(matrix, kind=MetricKind.link)
        manifest = store.manifest("outlink", "simple")
        assert manifest.kind == "link"
        assert manifest.num_concepts == 3

    def test_versions_increase(self, store, scenario_vectors):
        first = publish_scenario(store, scenario_vectors)
        second = publish_scenario(store, scenario_vectors)
        assert second.version > first.version
        assert store.versions("esa", "simple") == [first.version, second.version]
        assert store.latest_version("esa", "simple") == second.version

    def test_incomplete_latest_falls_back(self, store, scenario_vectors):
        matrix = publish_scenario(store, scenario_vectors)
        (store.key_dir("esa", "simple") / LATEST_FILE).write_text("20990101T000000000000Z")
        assert store.latest_version("esa", "simple") == matrix.version

    def test_failed_publish_keeps_previous_version(self, store, scenario_vectors):
        previous = publish_scenario(store, scenario_vectors)

        with patch("os.rename", side_effect=OSError("disk full")):
            with pytest.raises(BuildIOError):
                publish_scenario(store, scenario_vectors)

        assert store.latest_version("esa", "simple") == previous.version
        assert store.versions("esa", "simple") == [previous.version]
        leftovers = [p for p in store.key_dir("esa", "simple").iterdir() if p.name.startswith(".tmp")]
        assert leftovers == []

    def test_prune_keeps_newest(self, store, scenario_vectors):
        versions = [publish_scenario(store, scenario_vectors).version for _ in range(3)]
        removed = store.prune("esa", "simple", keep=1)
        assert removed == versions[:2]
        assert store.versions("esa", "simple") == versions[2:]


# =============================================================================
# Builder
# =============================================================================


class TestFeatureMatrixBuilder:
    """Assemble, fit, publish, swap."""

    def test_build_serves_new_version(self, store, scenario_source):
        builder = make_builder(store, scenario_source)
        result = builder.build([A, B, C])

        assert result.status is BuildStatus.COMPLETED
        assert result.concepts_processed == 3
        assert result.concepts_stored == 3
        assert result.errors == []
        assert store.latest_version("esa", "simple") == result.version

        metric = builder.metric
        assert metric.is_built()
        assert metric.state().matrix.version == result.version
        ranked = metric.most_similar(A, 2, exclude={A})
        assert [cid for cid, _ in ranked] == [B, C]

    def test_fits_roles_for_build_mode(self, store, scenario_source):
        builder = make_builder(store, scenario_source, build_mode=BuildMode.similarity)
        builder.build([A, B, C])
        normalizers = builder.metric.state().normalizers
        assert set(normalizers) == {NormalizerRole.similarity}
        assert normalizers[NormalizerRole.similarity].fitted

    def test_cosimilarity_mode_fits_pair_normalizer(self, store, scenario_source):
        builder = make_builder(store, scenario_source, build_mode=BuildMode.cosimilarity)
        builder.build([A, B, C])
        assert set(builder.metric.state().normalizers) == set(NormalizerRole)

    def test_both_roles_fitted(self, store, scenario_source):
        builder = make_builder(store, scenario_source)
        builder.build([A, B, C])
        state = builder.metric.state()
        assert set(state.normalizers) == set(NormalizerRole)
        assert all(n.version == state.matrix.version for n in state.normalizers.values())

    def test_deterministic(self, tmp_path, scenario_source):
        results = []
        for name in ("one", "two"):
            builder = make_builder(FeatureMatrixStore(tmp_path / name), scenario_source, seed=7)
            builder.build([A, B, C])
            results.append(builder.metric.state())

        xs = np.linspace(0.0, 1.0, 11)
        for role in NormalizerRole:
            np.testing.assert_array_equal(
                results[0].normalizer(role).normalize_array(xs),
                results[1].normalizer(role).normalize_array(xs),
            )
        assert results[0].matrix.to_arrays()["weights"].tolist() == results[1].matrix.to_arrays()["weights"].tolist()

    def test_labels_from_concepts(self, store, scenario_source):
        builder = make_builder(store, scenario_source)
        builder.build([Concept(A, "Jazz"), Concept(B, "Blues"), C])
        matrix = builder.metric.state().matrix
        assert matrix.label(A) == "Jazz"
        assert matrix.label(C) is None

    def test_repeat_contributions_summed(self, store, scenario_source):
        builder = make_builder(store, scenario_source)
        builder.build([A, A, B])
        matrix = builder.metric.state().matrix
        assert matrix.vector(A) == FeatureVector({1: 2.0, 2: 2.0})
        assert len(matrix) == 2

    def test_missing_concepts_skipped(self, store, scenario_source):
        result = make_builder(store, scenario_source).build([A, B, C, 99])
        assert result.concepts_processed == 4
        assert result.concepts_stored == 3

    def test_rebuild_current_concepts(self, store, scenario_source):
        builder = make_builder(store, scenario_source)
        first = builder.build([Concept(A, "Jazz"), B, C])
        second = builder.build()
        assert second.status is BuildStatus.COMPLETED
        assert second.version > first.version
        assert builder.metric.state().matrix.label(A) == "Jazz"
        assert second.concepts_stored == 3

    def test_cancelled_build_publishes_nothing(self, store, scenario_source):
        builder = make_builder(store, scenario_source)
        first = builder.build([A, B, C])

        event = threading.Event()
        event.set()
        result = builder.build([A, B], cancel_event=event)

        assert result.status is BuildStatus.CANCELLED
        assert result.version is None
        assert store.versions("esa", "simple") == [first.version]
        assert builder.metric.state().matrix.version == first.version

    def test_source_failure(self, store):
        result = make_builder(store, FailingSource()).build([A])
        assert result.status is BuildStatus.FAILED
        assert result.errors[0].startswith("BUILD_IO_ERROR")
        assert not result.to_dict()["version"]

    def test_empty_corpus_fails(self, store, scenario_source):
        result = make_builder(store, scenario_source).build([])
        assert result.status is BuildStatus.FAILED
        assert result.errors[0].startswith("NORMALIZATION_ERROR")
        assert store.latest_version("esa", "simple") is None

    def test_publish_failure_keeps_serving_previous(self, store, scenario_source):
        builder = make_builder(store, scenario_source)
        first = builder.build([A, B, C])

        with patch("os.rename", side_effect=OSError("read-only file system")):
            result = builder.build([A, B])

        assert result.status is BuildStatus.FAILED
        assert result.errors[0].startswith("BUILD_IO_ERROR")
        assert builder.metric.state().matrix.version == first.version
        assert len(builder.metric.state().matrix) == 3

    def test_keep_versions_prunes(self, store, scenario_source):
        builder = make_builder(store, scenario_source, keep_versions=1)
        builder.build([A, B, C])
        last = builder.build([A, B, C])
        assert store.versions("esa", "simple") == [last.version]

    def test_fitted_template_rejected(self, store, scenario_source):
        with pytest.raises(ValueError):
            FeatureMatrixBuilder(
                VectorMetric("esa", "simple"),
                scenario_source,
                store,
                PercentileNormalizer().fit([0.1]),
            )


# =============================================================================
# Coordinator
# =============================================================================


class SlowSource:
    """Source that records how many builds read from it at once."""

    def __init__(self, features, delay=0.01):
        self.features = features
        self.delay = delay
        self.active = 0
        self.peak = 0
        self._lock = threading.Lock()

    def contribution(self, concept_id):
        with self._lock:
            self.active += 1
            self.peak = max(self.peak, self.active)
        time.sleep(self.delay)
        with self._lock:
            self.active -= 1
        weights = self.features.get(concept_id)
        return None if weights is None else FeatureVector(weights)


class BlockingSource:
    """Source that blocks on its first read until released."""

    def __init__(self, features):
        self.features = features
        self.started = threading.Event()
        self.release = threading.Event()

    def contribution(self, concept_id):
        if not self.started.is_set():
            self.started.set()
            self.release.wait(timeout=5)
        return FeatureVector(self.features[concept_id])


class TestBuildCoordinator:
    """Bounded pool, per-key exclusion, cancellation."""

    def test_run_all_independent_keys(self, store, scenario_source):
        link_source = SlowSource({cid: {d: 1.0 for d in w} for cid, w in SCENARIO_FEATURES.items()}, 0.0)
        jobs = [
            (make_builder(store, scenario_source), [A, B, C]),
            (make_builder(store, link_source, metric=LinkMetric("outlink", "simple")), [A, B, C]),
        ]
        with BuildCoordinator(max_workers=2) as coordinator:
            results = coordinator.run_all(jobs)

        assert [r.key for r in results] == [("esa", "simple"), ("outlink", "simple")]
        assert all(r.status is BuildStatus.COMPLETED for r in results)
        assert store.manifest("outlink", "simple").kind == "link"

    def test_same_key_never_overlaps(self, store):
        source = SlowSource(SCENARIO_FEATURES)
        metric = VectorMetric("esa", "simple")
        builders = [make_builder(store, source, metric=metric) for _ in range(3)]

        with BuildCoordinator(max_workers=3) as coordinator:
            results = coordinator.run_all((b, [A, B, C]) for b in builders)

        assert source.peak == 1
        assert all(r.status is BuildStatus.COMPLETED for r in results)
        assert len({r.version for r in results}) == 3

    def test_cancel_running_build(self, store):
        source = BlockingSource(SCENARIO_FEATURES)
        builder = make_builder(store, source, cancel_check_interval=1)

        with BuildCoordinator(max_workers=1) as coordinator:
            future = coordinator.submit(builder, [A, B, C])
            assert source.started.wait(timeout=5)
            assert coordinator.cancel("esa", "simple")
            source.release.set()
            result = future.result(timeout=5)

        assert result.status is BuildStatus.CANCELLED
        assert store.latest_version("esa", "simple") is None
        assert not builder.metric.is_built()

    def test_cancel_unknown_key(self):
        with BuildCoordinator(max_workers=1) as coordinator:
            assert not coordinator.cancel("esa", "simple")
