"""
Per-language resource registry.

Holds, for each language, the metrics, their query engines, phrase
resolvers and the shared phrase id dictionary. One registry is built at
process start (CLI command, API factory) and passed to whatever needs it;
there is no module-level instance.

Usage:
    settings = get_settings()
    registry = load_registry(settings)
    engine = registry.engine("simple", "esa")
    engine.most_similar(42, k=10)
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Iterable

from .core.config import Settings
from .core.errors import ConfigurationError, NotFoundError
from .core.models import EnsembleWeight
from .core.types import EnsembleMode, MetricKind
from .features.matrix import MetricHandle
from .features.store import FeatureMatrixStore
from .metrics import EnsembleMember, EnsembleMetric, MatrixMetric, SRMetric, create_matrix_metric
from .phrases.creators import PhraseCreator
from .phrases.dictionary import PhraseIdDictionary
from .phrases.resolver import PhraseResolver
from .query.engine import (
    DEFAULT_MAX_MOST_SIMILAR_K,
    DEFAULT_MAX_RESULT_MATRIX_CELLS,
    QueryEngine,
)

logger = logging.getLogger(__name__)


@dataclass
class LanguageResources:
    """Everything served for one language."""

    language: str
    metrics: dict[str, SRMetric] = field(default_factory=dict)
    engines: dict[str, QueryEngine] = field(default_factory=dict)
    resolvers: dict[str, PhraseResolver] = field(default_factory=dict)
    creators: list[PhraseCreator] = field(default_factory=list)
    phrases: PhraseIdDictionary = field(default_factory=PhraseIdDictionary)


class SRRegistry:
    """
    Explicit language -> resources mapping.

    Args:
        store: Store used by refresh() to load published versions
        max_result_matrix_cells: Passed to every QueryEngine
        max_most_similar_k: Passed to every QueryEngine
        exclude_query_concept: Passed to every QueryEngine
    """

    def __init__(
        self,
        store: FeatureMatrixStore | None = None,
        max_result_matrix_cells: int = DEFAULT_MAX_RESULT_MATRIX_CELLS,
        max_most_similar_k: int = DEFAULT_MAX_MOST_SIMILAR_K,
        exclude_query_concept: bool = False,
    ):
        self.store = store
        self.max_result_matrix_cells = max_result_matrix_cells
        self.max_most_similar_k = max_most_similar_k
        self.exclude_query_concept = exclude_query_concept
        self._lock = threading.Lock()
        self._languages: dict[str, LanguageResources] = {}

    def _resources(self, language: str) -> LanguageResources:
        with self._lock:
            if language not in self._languages:
                self._languages[language] = LanguageResources(language)
            return self._languages[language]

    # =========================================================================
    # Registration
    # =========================================================================

    def register(self, metric: SRMetric) -> QueryEngine:
        """
        Serve a metric and create its engine.

        Raises:
            ConfigurationError: If the language already has a metric of that name
        """
        resources = self._resources(metric.language)
        with self._lock:
            if metric.name in resources.metrics:
                raise ConfigurationError(
                    f"Metric '{metric.name}' is already registered for {metric.language}"
                )
            engine = QueryEngine(
                metric,
                max_result_matrix_cells=self.max_result_matrix_cells,
                max_most_similar_k=self.max_most_similar_k,
                exclude_query_concept=self.exclude_query_concept,
            )
            resources.metrics[metric.name] = metric
            resources.engines[metric.name] = engine
        logger.info("Registered %s metric %s/%s", metric.kind.value, metric.name, metric.language)
        return engine

    def add_phrase_creator(self, language: str, creator: PhraseCreator) -> None:
        """Fallback creator used by resolvers of this language created afterwards."""
        self._resources(language).creators.append(creator)

    # =========================================================================
    # Lookup
    # =========================================================================

    def languages(self) -> list[str]:
        return sorted(self._languages)

    def metrics(self, language: str) -> list[SRMetric]:
        resources = self._languages.get(language)
        return list(resources.metrics.values()) if resources else []

    def metric(self, language: str, name: str) -> SRMetric:
        """
        Get a registered metric.

        Raises:
            NotFoundError: If no such metric is registered for the language
        """
        resources = self._languages.get(language)
        if resources is None or name not in resources.metrics:
            raise NotFoundError("Metric", name, language)
        return resources.metrics[name]

    def engine(self, language: str, name: str) -> QueryEngine:
        self.metric(language, name)
        return self._languages[language].engines[name]

    def phrase_dictionary(self, language: str) -> PhraseIdDictionary:
        return self._resources(language).phrases

    def resolver(self, language: str, name: str) -> PhraseResolver:
        """Phrase resolver for a metric, sharing the language's phrase id dictionary."""
        engine = self.engine(language, name)
        resources = self._languages[language]
        with self._lock:
            if name not in resources.resolvers:
                resources.resolvers[name] = PhraseResolver(
                    engine, creators=resources.creators, dictionary=resources.phrases
                )
            return resources.resolvers[name]

    # =========================================================================
    # Store integration
    # =========================================================================

    def refresh(self, language: str | None = None) -> list[tuple[str, str]]:
        """
        Swap every matrix-backed metric to the store's latest complete version.

        Returns:
            (metric, language) keys that now serve a newer version
        """
        if self.store is None:
            return []
        swapped = []
        for lang in [language] if language else self.languages():
            for metric in self.metrics(lang):
                if not isinstance(metric, MatrixMetric):
                    continue
                latest = self.store.latest_version(metric.name, lang)
                current = metric.handle.current()
                if latest is None or (current is not None and current.matrix.version == latest):
                    continue
                state = self.store.load(metric.name, lang, latest)
                if state is not None:
                    metric.handle.swap(state)
                    swapped.append((metric.name, lang))
        return swapped

    def status(self) -> list[dict]:
        """Serving status of every registered metric."""
        rows = []
        for language in self.languages():
            for metric in self.metrics(language):
                row = {
                    "metric": metric.name,
                    "language": language,
                    "kind": metric.kind.value,
                    "built": metric.is_built(),
                    "version": None,
                    "concepts": None,
                }
                if isinstance(metric, MatrixMetric) and metric.is_built():
                    matrix = metric.state().matrix
                    row["version"] = matrix.version
                    row["concepts"] = len(matrix)
                rows.append(row)
        return rows


# =============================================================================
# Construction from settings
# =============================================================================


def build_ensemble(
    registry: SRRegistry,
    name: str,
    language: str,
    weights: Iterable[EnsembleWeight],
    mode: EnsembleMode | str = EnsembleMode.exact,
    shortlist_size: int = 200,
    shortlist_metric: str | None = None,
) -> EnsembleMetric:
    """
    Assemble an ensemble from metrics already registered for the language.

    Raises:
        ConfigurationError: If a weight names an unknown or non-matrix metric
    """
    members = []
    for weight in weights:
        try:
            metric = registry.metric(language, weight.metric)
        except NotFoundError:
            raise ConfigurationError(
                f"Ensemble '{name}' references unknown sub-metric '{weight.metric}' ({language})"
            ) from None
        if not isinstance(metric, MatrixMetric):
            raise ConfigurationError(f"Ensemble '{name}' cannot nest ensemble '{weight.metric}'")
        members.append(EnsembleMember(metric, weight.coefficient))
    return EnsembleMetric(
        name,
        language,
        members,
        mode=mode,
        shortlist_size=shortlist_size,
        shortlist_metric=shortlist_metric,
    )


def load_registry(settings: Settings, store: FeatureMatrixStore | None = None) -> SRRegistry:
    """
    Build a registry from settings and the published feature matrices.

    Every (metric, language) the store holds for the configured language is
    loaded and served under its recorded kind. The configured metric is then
    registered: as an ensemble over those metrics, or as an (unbuilt) matrix
    metric if the store does not have it yet.

    Raises:
        ConfigurationError: If an ensemble references an unknown sub-metric
    """
    store = store or FeatureMatrixStore(settings.feature_matrix_location)
    registry = SRRegistry(
        store=store,
        max_result_matrix_cells=settings.max_result_matrix_cells,
        max_most_similar_k=settings.max_most_similar_k,
        exclude_query_concept=settings.exclude_query_concept,
    )

    language = settings.language
    for metric_name, lang in store.keys():
        if lang != language:
            continue
        manifest = store.manifest(metric_name, lang)
        handle = MetricHandle(metric_name, lang, store.load(metric_name, lang))
        registry.register(
            create_matrix_metric(
                manifest.kind,
                metric_name,
                lang,
                handle=handle,
                workers=settings.cosimilarity_workers,
            )
        )

    if settings.metric_kind is MetricKind.ensemble:
        registry.register(
            build_ensemble(
                registry,
                settings.metric_name,
                language,
                settings.weights(),
                mode=settings.ensemble_mode,
                shortlist_size=settings.shortlist_size,
                shortlist_metric=settings.shortlist_metric,
            )
        )
    else:
        try:
            registry.metric(language, settings.metric_name)
        except NotFoundError:
            registry.register(
                create_matrix_metric(
                    settings.metric_kind,
                    settings.metric_name,
                    language,
                    workers=settings.cosimilarity_workers,
                )
            )

    logger.info(
        "Loaded registry for %s: %s",
        language,
        ", ".join(m.name for m in registry.metrics(language)) or "no metrics",
    )
    return registry
