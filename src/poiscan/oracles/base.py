# src/poiscan/oracles/base.py
"""Base oracle interface: the statistical engine the interval algorithms query."""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Optional, Tuple, TypeVar

from poiscan.core.errors import (
    CapabilityNotImplemented,
    OracleEvaluationFailed,
    PoiScanError,
)

T = TypeVar("T")

__all__ = ["FitSummary", "Oracle", "scoped_domain", "guarded_call", "finite_value"]


@dataclass(frozen=True)
class FitSummary:
    """Unconditional fit result.

    Attributes
    ----------
    poi_hat:
        Best-fit POI value inside the current domain.
    poi_error:
        Estimated fit uncertainty on the POI (non-negative).
    nll:
        Negative log-likelihood at the best fit (up to a data-only constant).
    """

    poi_hat: float
    poi_error: float
    nll: float

    def __post_init__(self) -> None:
        for name in ("poi_hat", "poi_error", "nll"):
            v = getattr(self, name)
            if not isinstance(v, (int, float)) or not math.isfinite(v):
                raise ValueError(f"FitSummary.{name} must be finite, got {v!r}")
        if self.poi_error < 0:
            raise ValueError("FitSummary.poi_error must be >= 0")


class Oracle(ABC):
    """Abstract statistical engine for a single parameter of interest.

    The oracle owns the model; every call takes the dataset explicitly.
    Optional capabilities raise NotImplementedError unless overridden.
    """

    name: str = "oracle"

    @abstractmethod
    def domain_bounds(self) -> Tuple[float, float]:
        """Current admissible POI range ``(low, high)``."""
        raise NotImplementedError

    @abstractmethod
    def set_domain_bounds(self, low: float, high: float) -> None:
        """Replace the admissible POI range. Use through ``scoped_domain``."""
        raise NotImplementedError

    @abstractmethod
    def fit(self, data: Any) -> FitSummary:
        """Unconditional fit of the POI."""
        raise NotImplementedError

    @abstractmethod
    def test_statistic(self, data: Any, poi_value: float) -> float:
        """One-sided q_mu; exactly 0 when the best fit exceeds ``poi_value``."""
        raise NotImplementedError

    @abstractmethod
    def pvalues_toys(self, data: Any, poi_value: float, n_toys: int) -> Tuple[float, float]:
        """``(p_sb, p_b)`` from toy ensembles ordered by the Feldman-Cousins statistic."""
        raise NotImplementedError

    @abstractmethod
    def asimov_dataset(self, data: Any, poi_value: float) -> Any:
        """Dataset reproducing the model expectation at ``poi_value``."""
        raise NotImplementedError

    # optional capabilities

    def profile_statistic(self, data: Any, poi_value: float) -> float:
        """Two-sided profile likelihood ratio t_mu = 2 (NLL(mu) - NLL(mu_hat))."""
        raise NotImplementedError(f"{self.name} does not provide a profile statistic")

    def discovery_statistic(self, data: Any) -> float:
        """One-sided discovery statistic q0."""
        raise NotImplementedError(f"{self.name} does not provide a discovery statistic")

    def sample_null_statistics(self, data: Any, n_toys: int) -> Any:
        """q0 evaluated on ``n_toys`` pseudo-datasets generated at POI = 0."""
        raise NotImplementedError(f"{self.name} cannot sample the null distribution")


@contextmanager
def scoped_domain(oracle: Oracle, low: float, high: float) -> Iterator[Oracle]:
    """Temporarily set the oracle domain; the previous bounds come back on every exit path."""
    previous = guarded_call("domain_bounds", oracle.domain_bounds)
    guarded_call("set_domain_bounds", oracle.set_domain_bounds, low, high)
    try:
        yield oracle
    finally:
        guarded_call("set_domain_bounds", oracle.set_domain_bounds, *previous)


def guarded_call(what: str, fn: Callable[..., T], *args: Any, poi_value: Optional[float] = None) -> T:
    """Invoke an oracle method, reporting any failure as OracleEvaluationFailed."""
    try:
        return fn(*args)
    except PoiScanError:
        raise
    except NotImplementedError as e:
        raise CapabilityNotImplemented(str(e) or f"{what} is not supported") from e
    except Exception as e:
        where = "" if poi_value is None else f" at poi={poi_value:.6g}"
        raise OracleEvaluationFailed(f"{what} failed{where}: {e}", poi_value=poi_value) from e


def finite_value(what: str, value: Any, *, poi_value: Optional[float] = None) -> float:
    """``float(value)`` if finite, else OracleEvaluationFailed."""
    try:
        f = float(value)
    except (TypeError, ValueError) as e:
        raise OracleEvaluationFailed(f"{what} returned a non-numeric value {value!r}", poi_value=poi_value) from e
    if not math.isfinite(f):
        where = "" if poi_value is None else f" at poi={poi_value:.6g}"
        raise OracleEvaluationFailed(f"{what} returned {f}{where}", poi_value=poi_value)
    return f
