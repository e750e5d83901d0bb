"""
Core enums for semrel.

String enums so values round-trip through settings, JSON manifests and
query parameters unchanged.
"""

from enum import Enum


class MetricKind(str, Enum):
    """Metric variants."""

    vector = "vector"
    link = "link"
    category = "category"
    ensemble = "ensemble"


class NormalizerType(str, Enum):
    """Supported normalizers."""

    identity = "identity"
    percentile = "percentile"
    loess = "loess"


class PercentileConvention(str, Enum):
    """How the percentile normalizer counts ties and the sample boundary.

    weak:      fraction of the sample <= x
    exclusive: fraction of the other samples < x, i.e. |{s < x}| / (n - 1)
    """

    weak = "weak"
    exclusive = "exclusive"


class BuildMode(str, Enum):
    """Which normalizers a build fits."""

    similarity = "similarity"
    cosimilarity = "cosimilarity"
    both = "both"


class NormalizerRole(str, Enum):
    """Query shape a fitted normalizer serves.

    similarity:   pairwise similarity(A, B) and cosimilarity cells
    most_similar: mostSimilar results
    """

    similarity = "similarity"
    most_similar = "most_similar"


class EnsembleMode(str, Enum):
    """Ensemble mostSimilar strategy."""

    exact = "exact"
    shortlist = "shortlist"


def roles_for_build_mode(mode: BuildMode | str) -> tuple[NormalizerRole, ...]:
    """
    Normalizer roles fitted by a build in the given mode.

    Cosimilarity cells are pairwise similarities, so a cosimilarity build
    fits the pair normalizer alongside the neighbour one.
    """
    mode = BuildMode(mode)
    if mode is BuildMode.similarity:
        return (NormalizerRole.similarity,)
    return (NormalizerRole.similarity, NormalizerRole.most_similar)
