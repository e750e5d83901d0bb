"""
Feature matrix builder.

Training-time batch job for one (metric, language) key:

1. Pull a contribution from the feature source for every corpus concept
   and assemble the vectors (repeat contributions are summed).
2. Fit the normalizers selected by the build mode from seeded samples.
3. Publish the matrix and normalizers to the store as a new version.
4. Swap the metric's handle so new queries see the new version.

Nothing becomes visible until step 3 completes. A failure or cancellation
at any earlier point leaves the previously served version untouched.

BuildCoordinator runs many builders on a bounded thread pool while
keeping builds of the same key mutually exclusive.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable, Union

import numpy as np

from ..core.errors import BuildCancelledError, BuildIOError, SRError
from ..core.models import Concept, FeatureVector
from ..core.types import BuildMode, NormalizerRole, roles_for_build_mode
from ..metrics.base import MatrixMetric
from ..normalizers import Normalizer
from .matrix import FeatureMatrix, MetricState
from .sources import FeatureSource
from .store import FeatureMatrixStore

logger = logging.getLogger(__name__)

CorpusItem = Union[int, Concept]

PROGRESS_INTERVAL = 100_000
DEFAULT_NEIGHBOURS = 10


class BuildStatus(Enum):
    """Build outcome."""

    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class BuildResult:
    """Result of one builder run."""

    metric: str
    language: str
    status: BuildStatus
    started_at: datetime
    completed_at: datetime | None = None
    duration_seconds: float = 0.0
    concepts_processed: int = 0
    concepts_stored: int = 0
    version: str | None = None
    errors: list[str] = field(default_factory=list)

    @property
    def key(self) -> tuple[str, str]:
        return (self.metric, self.language)

    def to_dict(self) -> dict:
        """Convert to dictionary for logging and CLI output."""
        return {
            "metric": self.metric,
            "language": self.language,
            "status": self.status.value,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
            "concepts_processed": self.concepts_processed,
            "concepts_stored": self.concepts_stored,
            "version": self.version,
            "errors": self.errors,
        }


class FeatureMatrixBuilder:
    """
    Builds and publishes the feature matrix of one matrix-backed metric.

    Args:
        metric: Metric whose handle receives the new state
        source: Feature source supplying per-concept contributions
        store: Persistent store to publish into
        normalizer: Unfitted normalizer used as the template for every role
        build_mode: Which normalizer roles to fit
        sample_size: Scores sampled per normalizer
        seed: RNG seed for sampling; identical inputs give identical builds
        cancel_check_interval: Concepts processed between cancellation checks
        neighbours: Top neighbour scores sampled per concept for most_similar
        keep_versions: Complete versions kept after publishing (None keeps all)
    """

    def __init__(
        self,
        metric: MatrixMetric,
        source: FeatureSource,
        store: FeatureMatrixStore,
        normalizer: Normalizer,
        build_mode: BuildMode | str = BuildMode.both,
        sample_size: int = 5000,
        seed: int = 42,
        cancel_check_interval: int = 1000,
        neighbours: int = DEFAULT_NEIGHBOURS,
        keep_versions: int | None = None,
    ):
        if normalizer.fitted:
            raise ValueError("Builder needs an unfitted normalizer template")
        self.metric = metric
        self.source = source
        self.store = store
        self.normalizer = normalizer
        self.build_mode = BuildMode(build_mode)
        self.sample_size = sample_size
        self.seed = seed
        self.cancel_check_interval = max(1, cancel_check_interval)
        self.neighbours = neighbours
        self.keep_versions = keep_versions

    @property
    def key(self) -> tuple[str, str]:
        return (self.metric.name, self.metric.language)

    # =========================================================================
    # Public entry point
    # =========================================================================

    def build(
        self,
        corpus: Iterable[CorpusItem] | None = None,
        cancel_event: threading.Event | None = None,
    ) -> BuildResult:
        """
        Run a complete build.

        Args:
            corpus: Concept ids or Concepts to include. None rebuilds the
                concepts of the currently served matrix with fresh values.
            cancel_event: Set from another thread to cancel cooperatively

        Returns:
            BuildResult; failures are reported in the result, not raised
        """
        metric, language = self.key
        started = datetime.now(timezone.utc)
        start_time = time.time()
        result = BuildResult(metric, language, BuildStatus.FAILED, started_at=started)

        logger.info("Starting build of %s/%s (mode=%s)", metric, language, self.build_mode.value)
        try:
            if corpus is None:
                corpus = self._current_corpus()
            matrix, processed = self.assemble(corpus, cancel_event)
            result.concepts_processed = processed
            result.concepts_stored = len(matrix)

            normalizers = self.fit_normalizers(matrix)
            self._check_cancelled(cancel_event)
            self.publish(matrix, normalizers)

            result.version = matrix.version
            result.status = BuildStatus.COMPLETED
        except BuildCancelledError as e:
            result.status = BuildStatus.CANCELLED
            result.errors.append(e.message)
            logger.info("Build of %s/%s cancelled; partial output discarded", metric, language)
        except SRError as e:
            result.errors.append(f"{e.code}: {e.message}")
            logger.error("Build of %s/%s failed: %s", metric, language, e.message)

        result.completed_at = datetime.now(timezone.utc)
        result.duration_seconds = time.time() - start_time
        if result.status is BuildStatus.COMPLETED:
            logger.info(
                "Completed build of %s/%s: %d concepts in %.2fs (version %s)",
                metric,
                language,
                result.concepts_stored,
                result.duration_seconds,
                result.version,
            )
        return result

    # =========================================================================
    # Steps
    # =========================================================================

    def _current_corpus(self) -> list[Concept]:
        state = self.metric.handle.current()
        if state is None:
            return []
        matrix = state.matrix
        return [Concept(int(cid), matrix.label(int(cid))) for cid in matrix.ids]

    def _check_cancelled(self, cancel_event: threading.Event | None) -> None:
        if cancel_event is not None and cancel_event.is_set():
            metric, language = self.key
            raise BuildCancelledError(f"Build of {metric}/{language} was cancelled")

    def assemble(
        self,
        corpus: Iterable[CorpusItem],
        cancel_event: threading.Event | None = None,
    ) -> tuple[FeatureMatrix, int]:
        """
        Pull contributions and assemble a new, unpublished FeatureMatrix.

        Returns:
            (matrix, number of corpus items processed)

        Raises:
            BuildCancelledError: If cancel_event was set at a checkpoint
            BuildIOError: If the feature source failed with an OSError
        """
        metric, language = self.key
        parts: dict[int, list[FeatureVector]] = {}
        labels: dict[int, str] = {}
        processed = 0

        for item in corpus:
            if processed % self.cancel_check_interval == 0:
                self._check_cancelled(cancel_event)

            concept = item if isinstance(item, Concept) else Concept(int(item))
            try:
                contribution = self.source.contribution(concept.id)
            except OSError as e:
                raise BuildIOError(
                    f"Feature source failed for concept {concept.id} of {metric}/{language}",
                    detail=str(e),
                ) from e

            processed += 1
            if processed % PROGRESS_INTERVAL == 0:
                logger.info("%s/%s: processed %d concepts", metric, language, processed)

            if contribution is None:
                continue
            parts.setdefault(concept.id, []).append(contribution)
            if concept.label:
                labels[concept.id] = concept.label

        self._check_cancelled(cancel_event)

        vectors = {
            cid: chunks[0] if len(chunks) == 1 else FeatureVector.weighted_sum((v, 1.0) for v in chunks)
            for cid, chunks in parts.items()
        }
        version = self.store.new_version(metric, language)
        return FeatureMatrix(metric, language, vectors, version, labels=labels), processed

    def fit_normalizers(self, matrix: FeatureMatrix) -> dict[NormalizerRole, Normalizer]:
        """
        Fit one normalizer per role selected by the build mode.

        Samples are drawn with a generator seeded from `seed`, so the same
        matrix always yields the same normalizers.

        Raises:
            NormalizationError: If the matrix is empty
        """
        fitted = {}
        for role in roles_for_build_mode(self.build_mode):
            rng = np.random.default_rng([self.seed, list(NormalizerRole).index(role)])
            if role is NormalizerRole.similarity:
                sample = self._pair_sample(matrix, rng)
            else:
                sample = self._neighbour_sample(matrix, rng)
            fitted[role] = self.normalizer.fit(sample, version=matrix.version)
            logger.info(
                "Fitted %s normalizer for %s/%s on %d scores",
                role.value,
                matrix.metric,
                matrix.language,
                len(sample),
            )
        return fitted

    def _pair_sample(self, matrix: FeatureMatrix, rng: np.random.Generator) -> list[float]:
        """Raw scores of random distinct concept pairs."""
        n = len(matrix)
        if n == 0:
            return []
        if n == 1:
            vector = matrix.vector(int(matrix.ids[0]))
            return [self.metric.score_pair(vector, vector)]

        a = rng.integers(0, n, size=self.sample_size)
        b = rng.integers(0, n - 1, size=self.sample_size)
        b = np.where(b >= a, b + 1, b)
        ids = matrix.ids
        return [
            self.metric.score_pair(matrix.vector(int(ids[i])), matrix.vector(int(ids[j])))
            for i, j in zip(a.tolist(), b.tolist())
        ]

    def _neighbour_sample(self, matrix: FeatureMatrix, rng: np.random.Generator) -> list[float]:
        """Top neighbour scores of randomly chosen concepts."""
        n = len(matrix)
        if n == 0:
            return []
        per_concept = max(1, min(self.neighbours, n - 1 if n > 1 else 1))
        count = min(n, max(1, self.sample_size // per_concept))
        rows = np.sort(rng.choice(n, size=count, replace=False))

        sample: list[float] = []
        for row in rows.tolist():
            scores = self.metric.score_rows(matrix, matrix.vector(int(matrix.ids[row])))
            if n > 1:
                scores = np.delete(scores, row)
            sample.extend(np.sort(scores)[::-1][:per_concept].tolist())
        return sample

    def publish(self, matrix: FeatureMatrix, normalizers: dict[NormalizerRole, Normalizer]) -> None:
        """
        Persist the new version and serve it.

        Raises:
            BuildIOError: If the store could not publish; nothing is swapped
        """
        self.store.publish(matrix, normalizers, kind=self.metric.kind)
        self.metric.handle.swap(MetricState(matrix=matrix, normalizers=normalizers))
        if self.keep_versions is not None:
            self.store.prune(matrix.metric, matrix.language, self.keep_versions)


# =============================================================================
# Worker pool
# =============================================================================


class BuildCoordinator:
    """
    Runs builders on a bounded thread pool.

    Builds of different (metric, language) keys run independently; builds
    of the same key wait on a per-key lock so they never overlap.

    Example:
        with BuildCoordinator(max_workers=4) as coordinator:
            futures = [coordinator.submit(b, corpus) for b in builders]
            results = [f.result() for f in futures]
    """

    def __init__(self, max_workers: int = 4):
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="semrel-build")
        self._guard = threading.Lock()
        self._locks: dict[tuple[str, str], threading.Lock] = {}
        self._events: dict[tuple[str, str], set[threading.Event]] = {}

    def _key_lock(self, key: tuple[str, str]) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(key, threading.Lock())

    def submit(
        self,
        builder: FeatureMatrixBuilder,
        corpus: Iterable[CorpusItem] | None = None,
    ) -> Future[BuildResult]:
        """Queue a build; the future resolves to its BuildResult."""
        key = builder.key
        event = threading.Event()
        with self._guard:
            self._events.setdefault(key, set()).add(event)

        def run() -> BuildResult:
            try:
                with self._key_lock(key):
                    return builder.build(corpus, cancel_event=event)
            finally:
                with self._guard:
                    self._events.get(key, set()).discard(event)

        return self._executor.submit(run)

    def run_all(self, jobs: Iterable[tuple[FeatureMatrixBuilder, Any]]) -> list[BuildResult]:
        """Submit (builder, corpus) pairs and wait for all results, in job order."""
        futures = [self.submit(builder, corpus) for builder, corpus in jobs]
        return [f.result() for f in futures]

    def cancel(self, metric: str, language: str) -> bool:
        """
        Cancel every queued or running build of a key.

        Returns:
            True if any build was signalled
        """
        with self._guard:
            events = list(self._events.get((metric, language), ()))
        for event in events:
            event.set()
        if events:
            logger.info("Cancelling %d build(s) of %s/%s", len(events), metric, language)
        return bool(events)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def __enter__(self) -> BuildCoordinator:
        return self

    def __exit__(self, *exc) -> None:
        self.shutdown()
