"""
Module: significance
Purpose: Discovery p-value and significance of the POI against the null (POI = 0)

- Asymptotic: p = 1 - Phi(sqrt(q0)), Z = sqrt(q0).
- With toys: p = fraction of null toys with q0 >= observed, Z = Phi^-1(1 - p).
  A zero count is reported as the bound p < 1 / (toys + 1); Z is computed
  from p clipped to [1 / (toys + 1), 1 - 1 / (toys + 1)].
"""

from __future__ import annotations

import math
from typing import Any, Optional

import numpy as np
from scipy.stats import norm

from poiscan.core.errors import InvalidArgumentError, OracleEvaluationFailed
from poiscan.core.logging import ChainedJSONLLogger, audit_context, resolve_logger
from poiscan.core.models import SignificanceResult
from poiscan.oracles.base import Oracle, finite_value, guarded_call

__all__ = ["significance", "sampling_distribution"]


def sampling_distribution(oracle: Oracle, data: Any, toys: int = 1000) -> np.ndarray:
    """Null distribution of the discovery statistic q0 from ``toys`` pseudo-experiments."""
    if toys <= 0:
        raise InvalidArgumentError(f"toys must be > 0, got {toys}")
    raw = guarded_call("sample_null_statistics", oracle.sample_null_statistics, data, toys)
    arr = np.asarray(raw, dtype=float).ravel()
    if arr.size != toys:
        raise OracleEvaluationFailed(f"sample_null_statistics returned {arr.size} values, expected {toys}")
    if not np.all(np.isfinite(arr)):
        raise OracleEvaluationFailed("sample_null_statistics returned non-finite values")
    return arr


def significance(
    oracle: Oracle,
    data: Any,
    toys: int = -1,
    *,
    logger: Optional[ChainedJSONLLogger] = None,
) -> SignificanceResult:
    """Discovery significance of ``data``; ``toys <= 0`` selects the asymptotic formula."""
    log = resolve_logger(logger)
    with audit_context(log, "significance", oracle=getattr(oracle, "name", type(oracle).__name__), toys=toys):
        q0 = finite_value("discovery_statistic", guarded_call("discovery_statistic", oracle.discovery_statistic, data))
        q0 = max(q0, 0.0)

        is_bound = False
        if toys <= 0:
            z = math.sqrt(q0)
            p = float(norm.sf(z))
        else:
            null = sampling_distribution(oracle, data, toys)
            n_extreme = int(np.count_nonzero(null >= q0))
            if n_extreme == 0:
                p = 1.0 / (toys + 1)
                is_bound = True
            else:
                p = n_extreme / toys
            # p = 1 (every toy at least as extreme) would give Z = -inf
            z = float(norm.isf(min(p, 1.0 - 1.0 / (toys + 1))))

        result = SignificanceResult(p_value=p, z=z, q0=q0, toys=toys, p_value_is_bound=is_bound)
        log.log_event(
            "significance",
            fields={"p_value": p, "z": z, "q0": q0, "toys": toys, "p_value_is_bound": is_bound},
            level="info",
            message=f"p-value {'< ' if is_bound else ''}{p:.6g} (Z = {z:.3f})",
        )
    return result
