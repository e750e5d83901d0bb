"""
Normalizer base class and persisted model.

A normalizer maps raw, metric-specific scores onto a comparable [0, 1]
scale. Lifecycle is one-way: an unfitted instance produces a *new* fitted
instance from fit(); nothing is ever refitted in place.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, ClassVar, Iterable

import msgspec
import numpy as np

from ..core.errors import NormalizationError, NotFittedError
from ..core.types import NormalizerType

logger = logging.getLogger(__name__)


class NormalizerModel(msgspec.Struct, frozen=True):
    """Serialized normalizer parameters, stored beside the feature matrix."""

    type: str
    fitted: bool
    params: dict[str, Any] = {}
    version: str | None = None

    def encode(self) -> bytes:
        return msgspec.json.encode(self)

    @classmethod
    def decode(cls, data: bytes) -> NormalizerModel:
        return msgspec.json.decode(data, type=cls)


class Normalizer(ABC):
    """
    Base normalizer.

    Subclasses implement `_fit` (sorted, finite sample -> fitted instance)
    and `_normalize_array`. Both `normalize` and `normalize_array` refuse to
    run before fitting.
    """

    type: ClassVar[NormalizerType]

    def __init__(self, fitted: bool = False, version: str | None = None):
        self._fitted = fitted
        self.version = version

    @property
    def fitted(self) -> bool:
        return self._fitted

    def fit(self, sample: Iterable[float], version: str | None = None) -> Normalizer:
        """
        Fit a new normalizer from a sample of raw scores.

        Args:
            sample: Raw scores observed for the metric
            version: Version tag recorded on the fitted instance

        Returns:
            A new, fitted normalizer of the same type

        Raises:
            NormalizationError: If the sample is empty or contains non-finite values
        """
        values = np.asarray(list(sample), dtype=np.float64)
        if values.size == 0:
            raise NormalizationError(f"Cannot fit {self.type.value} normalizer on an empty sample")
        if not np.all(np.isfinite(values)):
            raise NormalizationError(
                f"Cannot fit {self.type.value} normalizer: sample contains non-finite scores"
            )
        fitted = self._fit(np.sort(values))
        fitted.version = version
        logger.debug("Fitted %s normalizer on %d scores", self.type.value, values.size)
        return fitted

    def normalize(self, raw: float) -> float:
        """Normalize a single raw score."""
        return float(self.normalize_array(np.asarray([raw], dtype=np.float64))[0])

    def normalize_array(self, raw: np.ndarray) -> np.ndarray:
        """Normalize an array of raw scores element-wise."""
        if not self._fitted:
            raise NotFittedError(
                f"{self.type.value} normalizer must be fitted before normalizing"
            )
        return self._normalize_array(np.asarray(raw, dtype=np.float64))

    @abstractmethod
    def _fit(self, sorted_sample: np.ndarray) -> Normalizer:
        ...

    @abstractmethod
    def _normalize_array(self, raw: np.ndarray) -> np.ndarray:
        ...

    def _params(self) -> dict[str, Any]:
        return {}

    def to_model(self) -> NormalizerModel:
        return NormalizerModel(
            type=self.type.value,
            fitted=self._fitted,
            params=self._params() if self._fitted else {},
            version=self.version,
        )

    def __repr__(self) -> str:
        state = "fitted" if self._fitted else "unfitted"
        return f"{type(self).__name__}({state}, version={self.version!r})"


class IdentityNormalizer(Normalizer):
    """Leaves scores unchanged."""

    type = NormalizerType.identity

    @classmethod
    def passthrough(cls) -> IdentityNormalizer:
        """A fitted identity normalizer that needs no sample."""
        return cls(fitted=True)

    def _fit(self, sorted_sample: np.ndarray) -> Normalizer:
        return IdentityNormalizer(fitted=True)

    def _normalize_array(self, raw: np.ndarray) -> np.ndarray:
        return raw.copy()
