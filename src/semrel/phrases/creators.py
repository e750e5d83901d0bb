"""
Phrase vector creators.

A creator turns a normalized phrase into a query the metric can score:
either a concept id, or a vector in the metric's feature space (one per
sub-metric for ensembles). Returning None means the creator cannot
handle the phrase and the next creator in a chain is tried.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Iterable, Protocol, Sequence

from ..core.models import FeatureVector
from ..metrics.base import MatrixMetric, SRMetric
from ..metrics.ensemble import EnsembleMetric

logger = logging.getLogger(__name__)

# phrase -> [(concept_id, weight)]
WeightedResolver = Callable[[str], Iterable[tuple[int, float]]]


class PhraseCreator(Protocol):
    def create(self, phrase: str, metric: SRMetric, state: Any) -> Any | None:
        ...


class KnownPhraseCreator:
    """Phrases already mapped to a concept are queried by that concept's id."""

    def __init__(self, lookup: Callable[[str], int | None]):
        self.lookup = lookup

    def create(self, phrase: str, metric: SRMetric, state: Any) -> int | None:
        concept_id = self.lookup(phrase)
        if concept_id is None or not metric.contains(concept_id, state):
            return None
        return concept_id


class WeightedConceptCreator:
    """
    Vector built from the concepts an external resolver associates with
    the phrase, e.g. anchor-text link counts:

        vector = sum(weight_i * vector(concept_i))

    Concepts missing from a matrix are skipped for that matrix.
    """

    def __init__(self, resolve: WeightedResolver):
        self.resolve = resolve

    @staticmethod
    def _combine(
        candidates: Sequence[tuple[int, float]], metric: MatrixMetric, state: Any
    ) -> FeatureVector | None:
        parts = [
            (state.matrix.vector(cid), weight)
            for cid, weight in candidates
            if cid in state.matrix
        ]
        return FeatureVector.weighted_sum(parts) if parts else None

    def create(self, phrase: str, metric: SRMetric, state: Any) -> Any | None:
        candidates = list(self.resolve(phrase))
        if not candidates:
            return None

        if isinstance(metric, EnsembleMetric):
            vectors = {}
            for member, member_state in zip(metric.members, state.members):
                vector = self._combine(candidates, member.metric, member_state)
                if vector is not None:
                    vectors[member.name] = vector
            return vectors or None

        if isinstance(metric, MatrixMetric):
            return self._combine(candidates, metric, state)

        logger.warning("Cannot build phrase vectors for %r", metric)
        return None


class ChainedPhraseCreator:
    """Tries creators in order; the first non-None query wins."""

    def __init__(self, creators: Iterable[PhraseCreator]):
        self.creators = list(creators)

    def create(self, phrase: str, metric: SRMetric, state: Any) -> Any | None:
        for creator in self.creators:
            query = creator.create(phrase, metric, state)
            if query is not None:
                return query
        return None
