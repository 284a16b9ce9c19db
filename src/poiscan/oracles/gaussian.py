# src/poiscan/oracles/gaussian.py
"""Reference oracle: mean of a Gaussian with known width, optionally bounded below.

Observations are x_i ~ N(mu, width); the sample mean is sufficient, so every
statistic reduces to ``xbar`` and ``s = width / sqrt(n)``:

- mu_hat = clip(xbar) to the current domain
- NLL(mu) = (xbar - mu)^2 / (2 s^2)   (data-only constant dropped)
- t_mu   = ((xbar - mu)^2 - (xbar - mu_hat)^2) / s^2    (two-sided, Feldman-Cousins ordering)
- q_mu   = t_mu if mu_hat <= mu else 0                   (one-sided, upper limits)
- q0     = t_0  if mu_hat > 0   else 0                   (discovery)

Toys draw sample means directly from N(mu, s). Each POI value gets its own
generator keyed on (seed, poi_value), so results do not depend on worker
count or evaluation order.
"""

from __future__ import annotations

import math
from typing import Any, Tuple

import numpy as np

from poiscan.io.seeds import DEFAULT_SEED, point_rng

from .base import FitSummary, Oracle

_SIGNAL_STREAM = 0
_BACKGROUND_STREAM = 1
_NULL_STREAM = 2


class GaussianMeanOracle(Oracle):
    """Gaussian mean with known width on a bounded POI domain."""

    name = "gaussian"

    def __init__(
        self,
        width: float = 1.0,
        poi_low: float = -8.0,
        poi_high: float = 8.0,
        seed: int = DEFAULT_SEED,
    ) -> None:
        if not (math.isfinite(width) and width > 0):
            raise ValueError(f"width must be finite and > 0, got {width}")
        self.width = float(width)
        self.seed = int(seed)
        self._low = 0.0
        self._high = 0.0
        self.set_domain_bounds(poi_low, poi_high)

    def __repr__(self) -> str:
        return f"GaussianMeanOracle(width={self.width}, poi_low={self._low}, poi_high={self._high}, seed={self.seed})"

    # domain

    def domain_bounds(self) -> Tuple[float, float]:
        return self._low, self._high

    def set_domain_bounds(self, low: float, high: float) -> None:
        low, high = float(low), float(high)
        if not low < high:
            raise ValueError(f"domain requires low < high, got [{low}, {high}]")
        self._low, self._high = low, high

    # sufficient statistics

    def _summary(self, data: Any) -> Tuple[float, float]:
        """(xbar, s) for ``data``."""
        arr = np.atleast_1d(np.asarray(data, dtype=float))
        if arr.size == 0:
            raise ValueError("dataset is empty")
        if not np.all(np.isfinite(arr)):
            raise ValueError("dataset contains non-finite values")
        return float(arr.mean()), self.width / math.sqrt(arr.size)

    def _clip(self, x: Any) -> Any:
        return np.clip(x, self._low, self._high)

    def _t(self, xbar: Any, mu: float, s: float) -> Any:
        """Two-sided profile statistic, vectorized over ``xbar``."""
        mu_hat = self._clip(xbar)
        return ((xbar - mu) ** 2 - (xbar - mu_hat) ** 2) / (s * s)

    def _q0(self, xbar: Any, s: float) -> Any:
        mu_hat = self._clip(xbar)
        t0 = ((xbar - 0.0) ** 2 - (xbar - mu_hat) ** 2) / (s * s)
        return np.where(mu_hat > 0.0, t0, 0.0)

    # Oracle API

    def fit(self, data: Any) -> FitSummary:
        xbar, s = self._summary(data)
        mu_hat = float(self._clip(xbar))
        nll = (xbar - mu_hat) ** 2 / (2.0 * s * s)
        return FitSummary(poi_hat=mu_hat, poi_error=s, nll=nll)

    def test_statistic(self, data: Any, poi_value: float) -> float:
        xbar, s = self._summary(data)
        if float(self._clip(xbar)) > poi_value:
            return 0.0
        return float(self._t(xbar, poi_value, s))

    def profile_statistic(self, data: Any, poi_value: float) -> float:
        xbar, s = self._summary(data)
        return float(self._t(xbar, poi_value, s))

    def pvalues_toys(self, data: Any, poi_value: float, n_toys: int) -> Tuple[float, float]:
        if n_toys <= 0:
            raise ValueError(f"n_toys must be > 0, got {n_toys}")
        xbar, s = self._summary(data)
        t_obs = float(self._t(xbar, poi_value, s))

        rng_sb = point_rng(self.seed, poi_value, _SIGNAL_STREAM)
        toys_sb = rng_sb.normal(poi_value, s, size=n_toys)
        p_sb = float(np.mean(self._t(toys_sb, poi_value, s) >= t_obs))

        mu_b = float(self._clip(0.0))
        rng_b = point_rng(self.seed, poi_value, _BACKGROUND_STREAM)
        toys_b = rng_b.normal(mu_b, s, size=n_toys)
        p_b = float(np.mean(self._t(toys_b, poi_value, s) >= t_obs))
        return p_sb, p_b

    def asimov_dataset(self, data: Any, poi_value: float) -> np.ndarray:
        arr = np.atleast_1d(np.asarray(data, dtype=float))
        return np.full(max(arr.size, 1), float(poi_value))

    def discovery_statistic(self, data: Any) -> float:
        xbar, s = self._summary(data)
        return float(self._q0(xbar, s))

    def sample_null_statistics(self, data: Any, n_toys: int) -> np.ndarray:
        if n_toys <= 0:
            raise ValueError(f"n_toys must be > 0, got {n_toys}")
        _, s = self._summary(data)
        rng = point_rng(self.seed, 0.0, _NULL_STREAM)
        toys = rng.normal(float(self._clip(0.0)), s, size=n_toys)
        return np.asarray(self._q0(toys, s), dtype=float)
