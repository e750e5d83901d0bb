"""
Percentile normalizer.

Maps a raw score to its empirical percentile rank within the fitting
sample using binary search over the sorted sample.

Conventions (see PercentileConvention):
- weak:      |{s <= x}| / n. Members of the sample reproduce their
             empirical percentile rank; the minimum maps to 1/n.
- exclusive: |{s < x}| / (n - 1), clamped to [0, 1]. The smallest sample
             maps to 0.0 and the largest to 1.0. With a single-element
             sample, x maps to 1.0 above it and 0.0 otherwise.

Both are monotonic, so rankings for one metric agree before and after
normalization.
"""

from __future__ import annotations

from typing import Any

import numpy as np

from ..core.types import NormalizerType, PercentileConvention
from .base import Normalizer


class PercentileNormalizer(Normalizer):
    """Empirical percentile rank normalizer."""

    type = NormalizerType.percentile

    def __init__(
        self,
        convention: PercentileConvention | str = PercentileConvention.weak,
        sample: np.ndarray | None = None,
        version: str | None = None,
    ):
        super().__init__(fitted=sample is not None, version=version)
        self.convention = PercentileConvention(convention)
        self._sample = sample
        if sample is not None:
            sample.flags.writeable = False

    @property
    def sample_size(self) -> int:
        return 0 if self._sample is None else len(self._sample)

    def _fit(self, sorted_sample: np.ndarray) -> Normalizer:
        return PercentileNormalizer(convention=self.convention, sample=sorted_sample)

    def _normalize_array(self, raw: np.ndarray) -> np.ndarray:
        sample = self._sample
        n = len(sample)

        if self.convention is PercentileConvention.weak:
            return np.searchsorted(sample, raw, side="right") / n

        if n == 1:
            return np.where(raw > sample[0], 1.0, 0.0)
        below = np.searchsorted(sample, raw, side="left")
        return np.clip(below / (n - 1), 0.0, 1.0)

    def _params(self) -> dict[str, Any]:
        return {"convention": self.convention.value, "sample": self._sample.tolist()}

    @classmethod
    def from_params(cls, params: dict[str, Any], version: str | None = None) -> PercentileNormalizer:
        return cls(
            convention=params.get("convention", PercentileConvention.weak.value),
            sample=np.asarray(params["sample"], dtype=np.float64),
            version=version,
        )
