"""
Configuration management for semrel.

Uses Pydantic settings for type-safe configuration with environment variable support.
All settings can be overridden via environment variables prefixed with SEMREL_,
e.g. SEMREL_NORMALIZER_TYPE=loess or SEMREL_MAX_RESULT_MATRIX_CELLS=250000.

Settings are read at process entry points (CLI, API factory) and handed to
components explicitly; nothing in the core looks them up on its own.
"""

import math
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError
from .models import EnsembleWeight
from .types import BuildMode, EnsembleMode, MetricKind, NormalizerType, PercentileConvention


class EnsembleWeightSetting(BaseModel):
    """One (metric, coefficient) entry of `ensemble_weights`."""

    metric: str
    coefficient: float

    def to_weight(self) -> EnsembleWeight:
        return EnsembleWeight(metric=self.metric, coefficient=self.coefficient)


class Settings(BaseSettings):
    """
    semrel settings with environment variable support.

    Ensemble weights are given as JSON, e.g.
    SEMREL_ENSEMBLE_WEIGHTS='[{"metric": "esa", "coefficient": 0.45}]'
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="SEMREL_",
        extra="ignore",
        env_nested_delimiter="__",
    )

    # ==========================================================================
    # Metric selection
    # ==========================================================================
    metric_name: str = "esa"
    language: str = "simple"
    metric_kind: MetricKind = MetricKind.vector

    # ==========================================================================
    # Normalization
    # ==========================================================================
    normalizer_type: NormalizerType = NormalizerType.percentile
    percentile_convention: PercentileConvention = PercentileConvention.weak
    loess_span: float = Field(default=0.3, gt=0.0, le=1.0)
    normalizer_sample_size: int = Field(default=5000, ge=1)
    normalizer_seed: int = 42

    # ==========================================================================
    # Ensembles
    # ==========================================================================
    ensemble_weights: list[EnsembleWeightSetting] = Field(default_factory=list)
    ensemble_mode: EnsembleMode = EnsembleMode.exact
    shortlist_size: int = Field(default=200, description="Candidates re-scored in shortlist mode")
    shortlist_metric: Optional[str] = Field(
        default=None,
        description="Sub-metric generating the shortlist (default: first ensemble member)",
    )

    # ==========================================================================
    # Feature matrices and builds
    # ==========================================================================
    feature_matrix_location: Path = Path("dat/sr")
    build_mode: BuildMode = BuildMode.both
    build_workers: int = Field(default=4, ge=1, le=64)
    cancel_check_interval: int = Field(default=1000, ge=1)
    keep_versions: int = Field(default=3, ge=1, description="Complete versions kept after a publish")

    # ==========================================================================
    # Query limits
    # ==========================================================================
    max_result_matrix_cells: int = Field(default=1_000_000, ge=1)
    max_most_similar_k: int = Field(default=10_000, ge=1)
    exclude_query_concept: bool = False
    cosimilarity_workers: int = Field(default=1, ge=1, le=64)

    # ==========================================================================
    # Evaluation
    # ==========================================================================
    evaluation_workers: int = Field(
        default=4, ge=1, le=64, description="Threads registering bundle phrases"
    )

    @field_validator("normalizer_type", mode="before")
    @classmethod
    def _known_normalizer(cls, value):
        try:
            return NormalizerType(value)
        except ValueError:
            raise ConfigurationError(f"Unknown normalizer type: {value!r}") from None

    @model_validator(mode="after")
    def _check_combination(self) -> "Settings":
        validate_combination(self)
        return self

    def weights(self) -> list[EnsembleWeight]:
        """Ensemble weights as core EnsembleWeight values."""
        return [w.to_weight() for w in self.ensemble_weights]


def validate_combination(settings: Settings) -> None:
    """
    Reject metric / normalizer / ensemble combinations that cannot work.

    Raises:
        ConfigurationError: On an invalid combination
    """
    if settings.metric_kind is MetricKind.ensemble and not settings.ensemble_weights:
        raise ConfigurationError("Ensemble metric requires at least one ensemble weight")

    names = [w.metric for w in settings.ensemble_weights]
    for weight in settings.ensemble_weights:
        if not math.isfinite(weight.coefficient):
            raise ConfigurationError(f"Coefficient for '{weight.metric}' must be finite")

    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
        raise ConfigurationError(f"Ensemble references metrics more than once: {duplicates}")

    if settings.metric_name in names:
        raise ConfigurationError(
            f"Ensemble '{settings.metric_name}' cannot contain itself as a sub-metric"
        )

    if settings.ensemble_mode is EnsembleMode.shortlist:
        if settings.shortlist_size < 1:
            raise ConfigurationError("shortlist_size must be at least 1 in shortlist mode")
        if settings.shortlist_metric and settings.shortlist_metric not in names:
            raise ConfigurationError(
                f"shortlist_metric '{settings.shortlist_metric}' is not an ensemble member"
            )


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once per process.
    """
    return Settings()
