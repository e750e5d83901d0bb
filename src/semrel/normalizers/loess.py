"""
Loess normalizer.

Fits a local regression curve of empirical percentile rank against raw
score, then evaluates it for new scores. The fitted curve is stored as
knots (distinct sample scores and their smoothed ranks):

1. Sort the sample; each distinct score gets rank |{s <= x}| / n.
2. Smooth the ranks with tricube-weighted local linear regression
   (bandwidth = `span` fraction of the distinct scores).
3. Force monotonicity with a running maximum, clip to [0, 1].
4. normalize(x) interpolates linearly between knots; scores outside the
   sample range take the end knot values.
"""

from __future__ import annotations

import math
from typing import Any

import numpy as np

from ..core.types import NormalizerType
from .base import Normalizer

DEFAULT_SPAN = 0.3


def _loess(x: np.ndarray, y: np.ndarray, span: float) -> np.ndarray:
    """
    Local linear regression evaluated at each x.

    Args:
        x: Distinct, ascending predictor values
        y: Responses aligned with x
        span: Fraction of points in each local neighbourhood

    Returns:
        Smoothed responses aligned with x
    """
    m = len(x)
    q = min(m, max(2, int(math.ceil(span * m))))
    fitted = np.empty(m, dtype=np.float64)

    for i, x0 in enumerate(x):
        dx = x - x0
        dist = np.abs(dx)
        h = np.partition(dist, q - 1)[q - 1]
        if h <= 0.0:
            fitted[i] = y[i]
            continue
        u = np.clip(dist / h, 0.0, 1.0)
        w = (1.0 - u**3) ** 3

        sw = w.sum()
        swx = np.dot(w, dx)
        swxx = np.dot(w, dx * dx)
        swy = np.dot(w, y)
        swxy = np.dot(w, dx * y)
        denom = sw * swxx - swx * swx
        if abs(denom) < 1e-12:
            fitted[i] = swy / sw
        else:
            fitted[i] = (swxx * swy - swx * swxy) / denom

    return fitted


class LoessNormalizer(Normalizer):
    """Monotone local-regression normalizer."""

    type = NormalizerType.loess

    def __init__(
        self,
        span: float = DEFAULT_SPAN,
        knots_x: np.ndarray | None = None,
        knots_y: np.ndarray | None = None,
        version: str | None = None,
    ):
        super().__init__(fitted=knots_x is not None, version=version)
        if not 0.0 < span <= 1.0:
            raise ValueError(f"span must be in (0, 1], got {span}")
        self.span = span
        self._knots_x = knots_x
        self._knots_y = knots_y

    def _fit(self, sorted_sample: np.ndarray) -> Normalizer:
        n = len(sorted_sample)
        distinct = np.unique(sorted_sample)
        ranks = np.searchsorted(sorted_sample, distinct, side="right") / n

        if len(distinct) == 1:
            curve = np.ones(1, dtype=np.float64)
        else:
            curve = _loess(distinct, ranks, self.span)
            curve = np.clip(np.maximum.accumulate(curve), 0.0, 1.0)

        return LoessNormalizer(span=self.span, knots_x=distinct, knots_y=curve)

    def _normalize_array(self, raw: np.ndarray) -> np.ndarray:
        if len(self._knots_x) == 1:
            return np.where(raw < self._knots_x[0], 0.0, 1.0)
        values = np.interp(raw, self._knots_x, self._knots_y)
        return np.clip(values, 0.0, 1.0)

    def _params(self) -> dict[str, Any]:
        return {
            "span": self.span,
            "knots_x": self._knots_x.tolist(),
            "knots_y": self._knots_y.tolist(),
        }

    @classmethod
    def from_params(cls, params: dict[str, Any], version: str | None = None) -> LoessNormalizer:
        return cls(
            span=params.get("span", DEFAULT_SPAN),
            knots_x=np.asarray(params["knots_x"], dtype=np.float64),
            knots_y=np.asarray(params["knots_y"], dtype=np.float64),
            version=version,
        )
