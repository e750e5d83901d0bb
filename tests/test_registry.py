"""
Tests for the per-language registry and its construction from settings.
"""

import pytest

from semrel.core.config import Settings
from semrel.core.errors import ConfigurationError, NotFoundError
from semrel.core.models import EnsembleWeight
from semrel.core.types import MetricKind
from semrel.features.builder import BuildStatus, FeatureMatrixBuilder
from semrel.features.sources import MemberSetFeatureSource
from semrel.metrics import EnsembleMetric, LinkMetric, VectorMetric
from semrel.normalizers import PercentileNormalizer
from semrel.registry import SRRegistry, build_ensemble, load_registry
from conftest import A, B, C

LINKS = {A: [10, 11], B: [10], C: [12]}


def build(store, metric, source):
    builder = FeatureMatrixBuilder(metric, source, store, PercentileNormalizer(), sample_size=50)
    result = builder.build([A, B, C])
    assert result.status is BuildStatus.COMPLETED
    return result


@pytest.fixture
def built_store(store, scenario_source):
    build(store, VectorMetric("esa", "simple"), scenario_source)
    build(store, LinkMetric("outlink", "simple"), MemberSetFeatureSource(LINKS))
    return store


def settings_for(store, **overrides):
    return Settings(feature_matrix_location=store.root, **overrides)


class TestSRRegistry:
    def test_register_and_lookup(self, vector_metric):
        registry = SRRegistry(max_most_similar_k=5)
        engine = registry.register(vector_metric)
        assert registry.engine("simple", "esa") is engine
        assert engine.max_most_similar_k == 5
        assert registry.languages() == ["simple"]
        assert registry.metric("simple", "esa") is vector_metric

    def test_duplicate_registration(self, vector_metric):
        registry = SRRegistry()
        registry.register(vector_metric)
        with pytest.raises(ConfigurationError):
            registry.register(vector_metric)

    def test_unknown_metric_or_language(self, vector_metric):
        registry = SRRegistry()
        registry.register(vector_metric)
        with pytest.raises(NotFoundError):
            registry.engine("simple", "outlink")
        with pytest.raises(NotFoundError):
            registry.engine("en", "esa")

    def test_resolvers_share_language_dictionary(self, vector_metric):
        registry = SRRegistry()
        registry.register(vector_metric)
        registry.register(VectorMetric("other", "simple"))
        esa = registry.resolver("simple", "esa")
        other = registry.resolver("simple", "other")
        assert registry.resolver("simple", "esa") is esa
        assert esa.dictionary is other.dictionary is registry.phrase_dictionary("simple")

    def test_refresh_swaps_to_latest(self, built_store, scenario_source):
        metric = VectorMetric("esa", "simple")
        registry = SRRegistry(store=built_store)
        registry.register(metric)

        assert registry.refresh() == [("esa", "simple")]
        first = metric.state().matrix.version
        assert registry.refresh() == []

        build(built_store, VectorMetric("esa", "simple"), scenario_source)
        assert registry.refresh("simple") == [("esa", "simple")]
        assert metric.state().matrix.version > first

    def test_status(self, vector_metric):
        registry = SRRegistry()
        registry.register(vector_metric)
        registry.register(LinkMetric("outlink", "simple"))
        rows = {row["metric"]: row for row in registry.status()}
        assert rows["esa"]["version"] == "v1"
        assert rows["outlink"] == {
            "metric": "outlink",
            "language": "simple",
            "kind": "link",
            "built": False,
            "version": None,
            "concepts": None,
        }


class TestBuildEnsemble:
    def test_unknown_sub_metric(self, vector_metric):
        registry = SRRegistry()
        registry.register(vector_metric)
        with pytest.raises(ConfigurationError):
            build_ensemble(registry, "ensemble", "simple", [EnsembleWeight("inlink", 1.0)])

    def test_nested_ensemble_rejected(self, vector_metric):
        registry = SRRegistry()
        registry.register(vector_metric)
        registry.register(build_ensemble(registry, "inner", "simple", [EnsembleWeight("esa", 1.0)]))
        with pytest.raises(ConfigurationError):
            build_ensemble(registry, "outer", "simple", [EnsembleWeight("inner", 1.0)])


class TestLoadRegistry:
    """Registry construction from settings and the store."""

    def test_loads_published_metrics_with_their_kind(self, built_store):
        registry = load_registry(settings_for(built_store), store=built_store)
        kinds = {m.name: m.kind for m in registry.metrics("simple")}
        assert kinds == {"esa": MetricKind.vector, "outlink": MetricKind.link}
        assert registry.engine("simple", "esa").most_similar(A, 2).ids() == [A, B]

    def test_configured_metric_missing_from_store(self, store):
        registry = load_registry(settings_for(store, metric_name="cat", metric_kind="category"), store=store)
        metric = registry.metric("simple", "cat")
        assert metric.kind is MetricKind.category
        assert not metric.is_built()

    def test_ensemble_from_settings(self, built_store):
        settings = settings_for(
            built_store,
            metric_name="ensemble",
            metric_kind="ensemble",
            ensemble_weights=[
                {"metric": "esa", "coefficient": 0.45},
                {"metric": "outlink", "coefficient": 0.12},
            ],
            exclude_query_concept=True,
        )
        registry = load_registry(settings, store=built_store)
        ensemble = registry.metric("simple", "ensemble")
        assert isinstance(ensemble, EnsembleMetric)
        assert [m.name for m in ensemble.declared] == ["esa", "outlink"]
        assert registry.engine("simple", "ensemble").most_similar(A, 1).ids() == [B]

    def test_ensemble_with_unpublished_member(self, built_store):
        settings = settings_for(
            built_store,
            metric_name="ensemble",
            metric_kind="ensemble",
            ensemble_weights=[{"metric": "inlink", "coefficient": 1.0}],
        )
        with pytest.raises(ConfigurationError):
            load_registry(settings, store=built_store)

    def test_other_languages_ignored(self, built_store):
        registry = load_registry(settings_for(built_store, language="en"), store=built_store)
        assert [m.name for m in registry.metrics("en")] == ["esa"]
        assert not registry.metric("en", "esa").is_built()
        assert registry.metrics("simple") == []
