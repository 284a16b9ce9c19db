"""
Module: likelihood
Purpose: Profile-likelihood interval on the POI (Wilks' theorem, one degree of freedom)

The interval is {mu : t_mu <= chi2.ppf(conf, 1)} with t_mu the two-sided
profile likelihood ratio. Each bound is the root of t_mu - threshold between
the best fit and the corresponding domain edge (``scipy.optimize.brentq``);
when the statistic stays below threshold all the way to an edge, that edge
is the bound.
"""

from __future__ import annotations

from typing import Any, Optional

from scipy import optimize
from scipy.stats import chi2

from poiscan.core.errors import OracleEvaluationFailed
from poiscan.core.logging import ChainedJSONLLogger, audit_context, resolve_logger
from poiscan.core.models import (
    IntervalMethod,
    IntervalResult,
    LikelihoodConfig,
    ScanPoint,
    ScanRange,
    resolve_config,
)
from poiscan.core.scan import ScanResult
from poiscan.oracles.base import Oracle, finite_value, guarded_call

__all__ = ["likelihood_interval", "wilks_threshold"]


def wilks_threshold(confidence_level: float) -> float:
    """Critical value of a chi-square(1) statistic at ``confidence_level``."""
    return float(chi2.ppf(confidence_level, df=1))


def _profile(oracle: Oracle, data: Any, mu: float) -> float:
    t = finite_value(
        "profile_statistic",
        guarded_call("profile_statistic", oracle.profile_statistic, data, mu, poi_value=mu),
        poi_value=mu,
    )
    return max(t, 0.0)


def _root(oracle: Oracle, data: Any, inner: float, edge: float, threshold: float, cfg: LikelihoodConfig) -> float:
    """Bound between the best fit ``inner`` and domain ``edge``."""
    if inner == edge or _profile(oracle, data, edge) <= threshold:
        return edge

    def objective(mu: float) -> float:
        return _profile(oracle, data, mu) - threshold

    a, b = (edge, inner) if edge < inner else (inner, edge)
    try:
        return float(optimize.brentq(objective, a, b, xtol=cfg.xtol, maxiter=cfg.maxiter))
    except (ValueError, RuntimeError) as e:
        raise OracleEvaluationFailed(f"root search for the likelihood bound in [{a:.6g}, {b:.6g}] failed: {e}") from e


def likelihood_interval(
    oracle: Oracle,
    data: Any,
    config: Optional[LikelihoodConfig] = None,
    *,
    logger: Optional[ChainedJSONLLogger] = None,
    **overrides: Any,
) -> IntervalResult:
    """Profile-likelihood interval for ``data`` inside the oracle's current domain."""
    cfg = resolve_config(LikelihoodConfig, config, overrides)
    log = resolve_logger(logger)
    threshold = wilks_threshold(cfg.confidence_level)

    with audit_context(
        log,
        "profile_likelihood",
        oracle=getattr(oracle, "name", type(oracle).__name__),
        config_hash=cfg.blake3_hash(),
    ):
        dom_low, dom_high = guarded_call("domain_bounds", oracle.domain_bounds)
        summary = guarded_call("fit", oracle.fit, data)
        mu_hat = min(max(summary.poi_hat, dom_low), dom_high)

        lower = _root(oracle, data, mu_hat, dom_low, threshold, cfg)
        upper = _root(oracle, data, mu_hat, dom_high, threshold, cfg)

        trace = ScanResult()
        for mu in (mu_hat, lower, upper):
            t = _profile(oracle, data, mu)
            trace.add(ScanPoint(poi_value=mu, p_value_sb=float(chi2.sf(t, df=1))))

        result = IntervalResult(
            lower=lower,
            upper=upper,
            trace=trace.points(),
            iterations=0,
            confidence_level=cfg.confidence_level,
            method=IntervalMethod.PROFILE_LIKELIHOOD,
            axis=ScanRange(low=dom_low, high=dom_high),
        )
        log.log_event(
            "interval",
            fields={"method": result.method.value, "lower": lower, "upper": upper, "poi_hat": mu_hat},
            level="info",
            message=f"{cfg.confidence_level:g} CL likelihood interval [{lower:.6g}, {upper:.6g}] around {mu_hat:.6g}",
        )
    return result
