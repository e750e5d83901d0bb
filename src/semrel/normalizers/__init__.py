"""
Score normalizers.

Usage:
    from semrel.normalizers import create_normalizer

    normalizer = create_normalizer("percentile").fit(sample_scores)
    normalizer.normalize(0.42)
"""

from typing import Any

from ..core.errors import ConfigurationError
from ..core.types import NormalizerType, PercentileConvention
from .base import IdentityNormalizer, Normalizer, NormalizerModel
from .loess import DEFAULT_SPAN, LoessNormalizer
from .percentile import PercentileNormalizer


def create_normalizer(
    normalizer_type: NormalizerType | str,
    convention: PercentileConvention | str = PercentileConvention.weak,
    span: float = DEFAULT_SPAN,
) -> Normalizer:
    """
    Create an unfitted normalizer.

    Raises:
        ConfigurationError: If the type is unknown
    """
    try:
        kind = NormalizerType(normalizer_type)
    except ValueError:
        raise ConfigurationError(f"Unknown normalizer type: {normalizer_type!r}") from None

    if kind is NormalizerType.identity:
        return IdentityNormalizer()
    if kind is NormalizerType.percentile:
        return PercentileNormalizer(convention=convention)
    return LoessNormalizer(span=span)


def normalizer_from_model(model: NormalizerModel) -> Normalizer:
    """Rebuild a normalizer from its persisted model."""
    try:
        kind = NormalizerType(model.type)
    except ValueError:
        raise ConfigurationError(f"Unknown normalizer type in model: {model.type!r}") from None

    if not model.fitted:
        return create_normalizer(kind, **_unfitted_options(kind, model.params))
    if kind is NormalizerType.identity:
        return IdentityNormalizer(fitted=True, version=model.version)
    if kind is NormalizerType.percentile:
        return PercentileNormalizer.from_params(model.params, version=model.version)
    return LoessNormalizer.from_params(model.params, version=model.version)


def _unfitted_options(kind: NormalizerType, params: dict[str, Any]) -> dict[str, Any]:
    if kind is NormalizerType.percentile and "convention" in params:
        return {"convention": params["convention"]}
    if kind is NormalizerType.loess and "span" in params:
        return {"span": params["span"]}
    return {}


__all__ = [
    "IdentityNormalizer",
    "LoessNormalizer",
    "Normalizer",
    "NormalizerModel",
    "PercentileNormalizer",
    "create_normalizer",
    "normalizer_from_model",
]
