"""
Module: bisection
Purpose: Asymptotic CLs / CL(s+b) upper limit by bisection on the POI axis

Asymptotic formulae (arXiv:1007.1727)
-------------------------------------
q_mu   = 2 (NLL(mu) - NLL(mu_hat)) if mu_hat <= mu else 0     (eq. 14)
CL_sb  = 1 - Phi(sqrt(q_mu))                                   (eq. 59)
CL_b   = 1 - Phi(sqrt(q_mu) - mu / sigma)                      (eq. 57, mu' = 0)
sigma  = mu_eval / sqrt(q_mu_A(mu_eval))                       (eq. 54, Asimov data at mu' = 0)

The search interval [low, high] is halved until the relative residual
|alpha - ratio| / alpha drops to ``precision`` or ``max_iterations`` steps
were taken, ratio = CL_sb / CL_b (CLs) or CL_sb (CL(s+b)), alpha = 1 - conf.
The last midpoint is the limit.

While the search runs the oracle domain is widened to [-max, max] when its
minimum is non-negative, so the unconditional fit may go below zero; the
original domain is restored on every exit path.
"""

from __future__ import annotations

import math
from typing import Any, List, Optional

from scipy.stats import norm

from poiscan.core.errors import CapabilityNotImplemented, InternalConsistencyError
from poiscan.core.logging import ChainedJSONLLogger, audit_context, resolve_logger
from poiscan.core.models import (
    IntervalMethod,
    IntervalResult,
    ScanPoint,
    ScanRange,
    SolverConfig,
    resolve_config,
)
from poiscan.core.scan import ScanResult
from poiscan.oracles.base import Oracle, finite_value, guarded_call, scoped_domain

from .feldman_cousins import clamp_axis

__all__ = ["BisectionSolver", "solve", "evaluate_q_mu", "estimate_sigma"]


def evaluate_q_mu(oracle: Oracle, data: Any, poi_value: float) -> float:
    """One-sided q_mu from the oracle, checked finite and non-negative."""
    q = finite_value(
        "test_statistic",
        guarded_call("test_statistic", oracle.test_statistic, data, poi_value, poi_value=poi_value),
        poi_value=poi_value,
    )
    if q < 0.0:
        # numerical noise from two separate minimizations
        if q > -1e-9:
            return 0.0
        raise InternalConsistencyError(f"negative test statistic q_mu={q:.6g} at poi={poi_value:.6g}")
    return q


def estimate_sigma(oracle: Oracle, data: Any, mu_prime: float = 0.0) -> float:
    """Width of the asymptotic q_mu distribution from the Asimov dataset at ``mu_prime``."""
    summary = guarded_call("fit", oracle.fit, data)
    _, dom_high = guarded_call("domain_bounds", oracle.domain_bounds)
    asimov = guarded_call("asimov_dataset", oracle.asimov_dataset, data, mu_prime, poi_value=mu_prime)

    mu_eval = min(dom_high, mu_prime + summary.poi_error)
    q_a = evaluate_q_mu(oracle, asimov, mu_eval)
    if q_a <= 0.0:
        raise InternalConsistencyError(
            f"Asimov q_mu is {q_a:.6g} at mu={mu_eval:.6g}; sigma is undefined"
        )
    sigma = (mu_eval - mu_prime) / math.sqrt(q_a)
    if not (sigma > 0.0 and math.isfinite(sigma)):
        raise InternalConsistencyError(f"non-positive sigma {sigma:.6g} from Asimov dataset")
    return sigma


class BisectionSolver:
    """Upper-limit search bound to one SolverConfig."""

    def __init__(self, config: Optional[SolverConfig] = None, logger: Optional[ChainedJSONLLogger] = None) -> None:
        self.config = config if config is not None else SolverConfig()
        self.logger = resolve_logger(logger)

    def solve(self, oracle: Oracle, data: Any) -> IntervalResult:
        """Search the upper limit for ``data``.

        Raises
        ------
        CapabilityNotImplemented
            ``toys > 0`` (checked before the oracle is touched).
        InvalidArgumentError
            The axis does not overlap the (widened) oracle domain.
        OracleEvaluationFailed
            A fit or test-statistic evaluation failed.
        InternalConsistencyError
            sigma <= 0 or CL_b <= 0.
        """
        cfg = self.config
        if not cfg.asymptotic:
            raise CapabilityNotImplemented(
                f"toy-based upper limits are not supported (toys={cfg.toys}); use toys <= 0"
            )

        dom_low, dom_high = guarded_call("domain_bounds", oracle.domain_bounds)
        work_low = -dom_high if dom_low >= 0 else dom_low

        method = IntervalMethod.ASYMPTOTIC_CLS if cfg.use_cls else IntervalMethod.ASYMPTOTIC_CLSB
        with scoped_domain(oracle, work_low, dom_high):
            low, high = clamp_axis(cfg.low, cfg.high, oracle)
            axis = ScanRange(low=low, high=high)
            with audit_context(
                self.logger,
                method.value,
                oracle=getattr(oracle, "name", type(oracle).__name__),
                config_hash=cfg.blake3_hash(),
                axis=[low, high],
            ):
                limit, iterations, trace, residuals = self._bisect(oracle, data, low, high)
                result = IntervalResult(
                    lower=low,
                    upper=limit,
                    trace=trace.points(),
                    iterations=iterations,
                    confidence_level=cfg.confidence_level,
                    method=method,
                    axis=axis,
                    residuals=tuple(residuals),
                )
                self.logger.log_event(
                    "upper_limit",
                    fields={
                        "method": method.value,
                        "limit": limit,
                        "iterations": iterations,
                        "residual": residuals[-1],
                    },
                    level="info",
                    message=f"found limit {limit:.6g} after {iterations} iterations",
                )
        return result

    def _bisect(self, oracle: Oracle, data: Any, low: float, high: float):
        cfg = self.config
        alpha = cfg.target_p_value
        trace = ScanResult()
        residuals: List[float] = []

        iteration = 0
        mid = 0.5 * (low + high)
        residual = math.inf
        while iteration < cfg.max_iterations and residual > cfg.precision:
            iteration += 1
            mid = 0.5 * (low + high)
            sqrt_q = math.sqrt(evaluate_q_mu(oracle, data, mid))
            cl_sb = float(norm.sf(sqrt_q))

            cl_b: Optional[float] = None
            ratio = cl_sb
            if cfg.use_cls:
                sigma = estimate_sigma(oracle, data, 0.0)
                cl_b = float(norm.sf(sqrt_q - mid / sigma))
                if not cl_b > 0.0:
                    raise InternalConsistencyError(f"CL(b) = {cl_b:.6g} at poi={mid:.6g}")
                ratio = cl_sb / cl_b

            if ratio > alpha:
                low = mid
            else:
                high = mid
            residual = abs(alpha - ratio) / alpha
            residuals.append(residual)

            # CLs ratio may exceed 1 on the far side of the fit; only p-values are recorded
            trace.add(ScanPoint(poi_value=mid, p_value_sb=cl_sb, p_value_b=cl_b))
            if cl_b is None:
                self.logger.trace(f"poi = {mid:.6g}: CL(s+b) = {cl_sb:.6g}", level="info")
            else:
                self.logger.trace(
                    f"poi = {mid:.6g}: CL(s+b) = {cl_sb:.6g} and CL(b) = {cl_b:.6g} --> CL(s) = {ratio:.6g}",
                    level="info",
                )
        return mid, iteration, trace, residuals


def solve(
    oracle: Oracle,
    data: Any,
    config: Optional[SolverConfig] = None,
    *,
    logger: Optional[ChainedJSONLLogger] = None,
    **overrides: Any,
) -> IntervalResult:
    """Compute an asymptotic upper limit; keyword overrides are validated into a SolverConfig first."""
    cfg = resolve_config(SolverConfig, config, overrides)
    return BisectionSolver(cfg, logger).solve(oracle, data)
