"""
Feature sources.

A feature source supplies the raw per-concept contribution a builder turns
into a FeatureVector: term weights from a text index, outlink / inlink
sets, category memberships, or a precomputed embedding. How those values
are computed lives outside semrel; these adapters only shape them.

Returning None means the source has nothing for the concept, and the
concept is left out of the matrix. An empty contribution is kept as an
empty vector.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Iterable, Iterator, Mapping, Protocol, Sequence, runtime_checkable

import numpy as np

from ..core.models import Concept, FeatureVector

logger = logging.getLogger(__name__)


@runtime_checkable
class FeatureSource(Protocol):
    """Anything that can produce a concept's feature contribution."""

    def contribution(self, concept_id: int) -> FeatureVector | None:
        ...


class MappingFeatureSource:
    """Weighted features held in memory: {concept_id: {dim: weight}}."""

    def __init__(self, features: Mapping[int, Mapping[int, float]]):
        self._features = {int(k): dict(v) for k, v in features.items()}

    def contribution(self, concept_id: int) -> FeatureVector | None:
        weights = self._features.get(concept_id)
        return None if weights is None else FeatureVector(weights)

    def concept_ids(self) -> list[int]:
        return sorted(self._features)


class MemberSetFeatureSource:
    """
    Set-valued features: {concept_id: [member ids]}.

    Used for link graphs (members are linked concept ids) and category
    membership (members are category ids). Each member becomes a
    dimension of weight 1.0.
    """

    def __init__(self, members: Mapping[int, Iterable[int]]):
        self._members = {int(k): tuple(v) for k, v in members.items()}

    def contribution(self, concept_id: int) -> FeatureVector | None:
        members = self._members.get(concept_id)
        return None if members is None else FeatureVector.from_members(members)

    def concept_ids(self) -> list[int]:
        return sorted(self._members)


class EmbeddingFeatureSource:
    """
    Dense embeddings from an externally trained model.

    Args:
        ids: Concept id per embedding row
        embeddings: (N, D) array; row i is the embedding of ids[i]
    """

    def __init__(self, ids: Sequence[int], embeddings: np.ndarray):
        embeddings = np.asarray(embeddings, dtype=np.float64)
        if embeddings.ndim != 2 or embeddings.shape[0] != len(ids):
            raise ValueError(
                f"embeddings must be shaped ({len(ids)}, D), got {embeddings.shape}"
            )
        self._rows = {int(cid): i for i, cid in enumerate(ids)}
        self._embeddings = embeddings
        self._dims = np.arange(embeddings.shape[1], dtype=np.int64)

    def contribution(self, concept_id: int) -> FeatureVector | None:
        row = self._rows.get(concept_id)
        if row is None:
            return None
        return FeatureVector.from_arrays(self._dims, self._embeddings[row])

    def concept_ids(self) -> list[int]:
        return sorted(self._rows)


class JsonlFeatureSource:
    """
    Features read from a JSON-lines file, one concept per line:

        {"id": 7, "label": "Jazz", "features": {"12": 0.8, "40": 0.1}}
        {"id": 8, "label": "Blues", "members": [3, 7, 19]}

    Lines with "members" become binary vectors. Malformed lines are
    skipped with a warning.
    """

    def __init__(self, path: Path | str):
        self.path = Path(path)
        self._vectors: dict[int, FeatureVector] = {}
        self._labels: dict[int, str] = {}
        self._load()

    def _load(self) -> None:
        with self.path.open(encoding="utf-8") as f:
            for line_no, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    record = json.loads(line)
                    concept_id = int(record["id"])
                    if "members" in record:
                        vector = FeatureVector.from_members(int(m) for m in record["members"])
                    else:
                        vector = FeatureVector(
                            {int(d): float(w) for d, w in record.get("features", {}).items()}
                        )
                except (ValueError, KeyError, TypeError) as e:
                    logger.warning("Skipping malformed line %d in %s: %s", line_no, self.path, e)
                    continue
                self._vectors[concept_id] = vector
                if record.get("label"):
                    self._labels[concept_id] = str(record["label"])

        logger.info("Read %d concepts from %s", len(self._vectors), self.path)

    def contribution(self, concept_id: int) -> FeatureVector | None:
        return self._vectors.get(concept_id)

    def concepts(self) -> Iterator[Concept]:
        """The file's concepts in id order, usable as a build corpus."""
        for concept_id in sorted(self._vectors):
            yield Concept(id=concept_id, label=self._labels.get(concept_id))
