"""
Ensemble metric.

Combines sub-metrics with coefficients:

    similarity(a, b) = sum_i coefficient_i * normalize_i(sub_i.similarity(a, b))

Each sub-score is normalized with the sub-metric's own fitted similarity
normalizer before weighting, since raw scales are not comparable.

A concept is known to the ensemble if any sub-metric knows it. A
sub-metric that lacks one of the two concepts contributes no term.
Terms are summed in sub-metric name order, so the result does not depend
on the order the ensemble was declared in.

mostSimilar modes:
- exact:     score every concept known to any sub-metric.
- shortlist: take the `shortlist_size` best raw candidates of one
             sub-metric (the configured shortlist metric, else the first
             declared member), then re-score only those with the full
             ensemble. This is an approximation and must be opted into.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Collection, Mapping, Sequence, Union

import numpy as np

from ..core.errors import ConfigurationError, NotFittedError, NotFoundError
from ..core.models import FeatureVector
from ..core.types import EnsembleMode, MetricKind, NormalizerRole
from ..features.matrix import MetricState
from ..normalizers import IdentityNormalizer, Normalizer
from .base import MatrixMetric, SRMetric, top_k

logger = logging.getLogger(__name__)

# An ensemble query is a concept id or one vector per sub-metric name.
EnsembleQuery = Union[int, Mapping[str, FeatureVector]]


@dataclass(frozen=True)
class EnsembleMember:
    """A sub-metric and its coefficient."""

    metric: MatrixMetric
    coefficient: float

    @property
    def name(self) -> str:
        return self.metric.name


@dataclass(frozen=True)
class EnsembleState:
    """Consistent snapshot of every sub-metric plus the ensemble's own normalizers."""

    members: tuple[MetricState, ...]
    member_normalizers: tuple[Normalizer, ...]
    normalizers: Mapping[NormalizerRole, Normalizer] = field(default_factory=dict)

    def normalizer(self, role: NormalizerRole | str) -> Normalizer:
        role = NormalizerRole(role)
        normalizer = self.normalizers.get(role)
        if normalizer is None or not normalizer.fitted:
            raise NotFittedError(f"No fitted {role.value} normalizer for ensemble")
        return normalizer


class EnsembleMetric(SRMetric):
    """Weighted combination of normalized sub-metric scores."""

    kind = MetricKind.ensemble

    def __init__(
        self,
        name: str,
        language: str,
        members: Sequence[EnsembleMember],
        mode: EnsembleMode | str = EnsembleMode.exact,
        shortlist_size: int = 200,
        shortlist_metric: str | None = None,
        normalizers: Mapping[NormalizerRole, Normalizer] | None = None,
    ):
        super().__init__(name, language)
        if not members:
            raise ConfigurationError(f"Ensemble '{name}' needs at least one sub-metric")

        names = [m.name for m in members]
        if len(set(names)) != len(names):
            raise ConfigurationError(f"Ensemble '{name}' lists a sub-metric twice: {names}")
        for member in members:
            if not isinstance(member.metric, MatrixMetric):
                raise ConfigurationError(
                    f"Ensemble '{name}' member '{member.name}' must be a matrix-backed metric"
                )
            if member.metric.language != language:
                raise ConfigurationError(
                    f"Ensemble '{name}' ({language}) cannot use '{member.name}' "
                    f"({member.metric.language})"
                )
            if not math.isfinite(member.coefficient):
                raise ConfigurationError(f"Coefficient for '{member.name}' must be finite")

        self.mode = EnsembleMode(mode)
        if self.mode is EnsembleMode.shortlist and shortlist_size < 1:
            raise ConfigurationError("shortlist_size must be at least 1")
        if shortlist_metric is not None and shortlist_metric not in names:
            raise ConfigurationError(
                f"Shortlist metric '{shortlist_metric}' is not a member of ensemble '{name}'"
            )

        self.declared = tuple(members)
        self.members = tuple(sorted(members, key=lambda m: m.name))
        self.shortlist_size = shortlist_size
        self.shortlist_metric = shortlist_metric or members[0].name
        self._normalizers = dict(
            normalizers
            or {role: IdentityNormalizer.passthrough() for role in NormalizerRole}
        )

    # =========================================================================
    # State
    # =========================================================================

    def state(self) -> EnsembleState:
        states = tuple(m.metric.state() for m in self.members)
        normalizers = tuple(s.normalizer(NormalizerRole.similarity) for s in states)
        return EnsembleState(states, normalizers, self._normalizers)

    def is_built(self) -> bool:
        return all(m.metric.is_built() for m in self.members)

    def contains(self, concept_id: int, state: EnsembleState | None = None) -> bool:
        state = state or self.state()
        return any(concept_id in s.matrix for s in state.members)

    def _require(self, concept_id: int, state: EnsembleState) -> None:
        if not self.contains(concept_id, state):
            raise NotFoundError("Concept", concept_id, f"{self.name}/{self.language}")

    def _member_query(
        self, query: EnsembleQuery, member: EnsembleMember, state: MetricState
    ) -> int | FeatureVector | None:
        if isinstance(query, Mapping):
            return query.get(member.name)
        return query if query in state.matrix else None

    # =========================================================================
    # Queries
    # =========================================================================

    def similarity(self, a: int, b: int, state: EnsembleState | None = None) -> float:
        state = state or self.state()
        self._require(a, state)
        self._require(b, state)

        terms = []
        for member, ms, nz in zip(self.members, state.members, state.member_normalizers):
            if a in ms.matrix and b in ms.matrix:
                raw = member.metric.similarity(a, b, state=ms)
                terms.append(member.coefficient * nz.normalize(raw))
        return math.fsum(terms)

    def _score_query_against(
        self, query: EnsembleQuery, candidate: int, state: EnsembleState
    ) -> float:
        terms = []
        for member, ms, nz in zip(self.members, state.members, state.member_normalizers):
            member_query = self._member_query(query, member, ms)
            if member_query is None or candidate not in ms.matrix:
                continue
            vector = member.metric.query_vector(member_query, ms)
            raw = member.metric.score_pair(vector, ms.matrix.vector(candidate))
            terms.append(member.coefficient * nz.normalize(raw))
        return math.fsum(terms)

    def most_similar(
        self,
        query: EnsembleQuery,
        k: int,
        exclude: Collection[int] = (),
        state: EnsembleState | None = None,
    ) -> list[tuple[int, float]]:
        if isinstance(query, FeatureVector):
            raise TypeError(
                "Ensemble queries take a concept id or a mapping of sub-metric name to vector"
            )
        state = state or self.state()
        if not isinstance(query, Mapping):
            self._require(query, state)

        if self.mode is EnsembleMode.shortlist:
            return self._most_similar_shortlist(query, k, exclude, state)
        return self._most_similar_exact(query, k, exclude, state)

    def _most_similar_exact(
        self,
        query: EnsembleQuery,
        k: int,
        exclude: Collection[int],
        state: EnsembleState,
    ) -> list[tuple[int, float]]:
        universe = np.unique(np.concatenate([s.matrix.ids for s in state.members]))
        totals = np.zeros(len(universe), dtype=np.float64)

        for member, ms, nz in zip(self.members, state.members, state.member_normalizers):
            member_query = self._member_query(query, member, ms)
            if member_query is None:
                continue
            ids, raw = member.metric.score_all(member_query, ms)
            positions = np.searchsorted(universe, ids)
            totals[positions] += member.coefficient * nz.normalize_array(raw)

        return top_k(universe, totals, k, exclude)

    def _most_similar_shortlist(
        self,
        query: EnsembleQuery,
        k: int,
        exclude: Collection[int],
        state: EnsembleState,
    ) -> list[tuple[int, float]]:
        index = next(i for i, m in enumerate(self.members) if m.name == self.shortlist_metric)
        member, ms = self.members[index], state.members[index]

        member_query = self._member_query(query, member, ms)
        if member_query is None:
            logger.debug("Shortlist metric %s has no vector for the query", member.name)
            return []

        candidates = member.metric.most_similar(
            member_query, max(k, self.shortlist_size), exclude=exclude, state=ms
        )
        ids = np.array([cid for cid, _ in candidates], dtype=np.int64)
        scores = np.array(
            [self._score_query_against(query, int(cid), state) for cid in ids],
            dtype=np.float64,
        )
        return top_k(ids, scores, k, exclude)

    def cosimilarity(
        self,
        rows: Sequence[int],
        cols: Sequence[int],
        state: EnsembleState | None = None,
    ) -> np.ndarray:
        state = state or self.state()
        for concept_id in list(rows) + list(cols):
            self._require(concept_id, state)

        terms = []
        for member, ms, nz in zip(self.members, state.members, state.member_normalizers):
            row_idx = [i for i, r in enumerate(rows) if r in ms.matrix]
            col_idx = [j for j, c in enumerate(cols) if c in ms.matrix]
            if not row_idx or not col_idx:
                continue
            raw = member.metric.cosimilarity(
                [rows[i] for i in row_idx], [cols[j] for j in col_idx], state=ms
            )
            term = np.zeros((len(rows), len(cols)), dtype=np.float64)
            term[np.ix_(row_idx, col_idx)] = member.coefficient * nz.normalize_array(raw)
            terms.append(term)

        out = np.zeros((len(rows), len(cols)), dtype=np.float64)
        for i in range(len(rows)):
            for j in range(len(cols)):
                out[i, j] = math.fsum(term[i, j] for term in terms)
        return out
