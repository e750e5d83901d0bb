"""
Core module for semrel.

This module provides the foundational components:
- Configuration management (config.py)
- Error taxonomy (errors.py)
- Data models (models.py)
- Enums (types.py)

Usage:
    from semrel.core import Settings, get_settings
    from semrel.core import FeatureVector, ResultList, CosimilarityMatrix
    from semrel.core import NotFoundError, NotBuiltError, CapacityExceededError
"""

# Configuration
from .config import EnsembleWeightSetting, Settings, get_settings, validate_combination

# Errors
from .errors import (
    BuildCancelledError,
    BuildIOError,
    CapacityExceededError,
    ConfigurationError,
    NormalizationError,
    NotBuiltError,
    NotFittedError,
    NotFoundError,
    SRError,
)

# Models
from .models import (
    Concept,
    CosimilarityMatrix,
    EnsembleWeight,
    FeatureVector,
    ResultList,
    SimilarityResult,
)

# Types
from .types import (
    BuildMode,
    EnsembleMode,
    MetricKind,
    NormalizerRole,
    NormalizerType,
    PercentileConvention,
    roles_for_build_mode,
)

__all__ = [
    # Config
    "EnsembleWeightSetting",
    "Settings",
    "get_settings",
    "validate_combination",
    # Errors
    "BuildCancelledError",
    "BuildIOError",
    "CapacityExceededError",
    "ConfigurationError",
    "NormalizationError",
    "NotBuiltError",
    "NotFittedError",
    "NotFoundError",
    "SRError",
    # Models
    "Concept",
    "CosimilarityMatrix",
    "EnsembleWeight",
    "FeatureVector",
    "ResultList",
    "SimilarityResult",
    # Types
    "BuildMode",
    "EnsembleMode",
    "MetricKind",
    "NormalizerRole",
    "NormalizerType",
    "PercentileConvention",
    "roles_for_build_mode",
]
