"""
Module: feldman_cousins
Purpose: Feldman-Cousins interval construction by adaptive (or fixed) grid scan of an oracle

Algorithm (adaptive mode)
-------------------------
1. The active ranges start as the axis bounds clamped to the oracle domain.
2. For iteration k = 1..max_iterations:
   a. each active range is scanned on an inclusive linspace grid
      (``points_per_iteration`` points on the first iteration, two fewer
      afterwards since the range endpoints are already known);
   b. adjacent points (A, B) of the merged result bracket the target when
      (p_sb(A) - alpha) * (p_sb(B) - alpha) < 0, alpha = 1 - conf;
   c. every bracket becomes the range [A + step, B - step] for the next
      iteration, step = (B - A) / (points_per_iteration - 1).
   Regions without a bracket are dropped; the loop ends early when nothing
   is left to refine. Ranges built on the last iteration are not scanned.
3. Bounds come from the outermost accepted region of the merged result
   (see ``poiscan.core.scan.derive_bounds``).

Fixed mode scans ``int((high - low) / step + 0.5) + 1`` equally spaced points once.

Per-point evaluations are independent; with ``max_workers > 1`` they run on a
thread or process pool and are merged into the shared result under its lock.
"""

from __future__ import annotations

from concurrent.futures import Executor as _PoolExecutor
from concurrent.futures import ProcessPoolExecutor, ThreadPoolExecutor, as_completed
from contextlib import contextmanager
from typing import Any, Iterator, List, Optional, Tuple

import numpy as np

from poiscan.core.errors import InvalidArgumentError, OracleEvaluationFailed
from poiscan.core.logging import ChainedJSONLLogger, audit_context, resolve_logger
from poiscan.core.models import (
    Executor,
    IntervalMethod,
    IntervalResult,
    ScanConfig,
    ScanPoint,
    ScanRange,
    resolve_config,
)
from poiscan.core.scan import ScanResult, derive_bounds
from poiscan.oracles.base import Oracle, finite_value, guarded_call

__all__ = ["AdaptiveScanner", "scan", "clamp_axis", "fixed_grid_size"]


# -------------------------
# Helpers
# -------------------------


def clamp_axis(low: float, high: float, oracle: Oracle) -> Tuple[float, float]:
    """Intersect [low, high] with the oracle domain; InvalidArgumentError if they do not overlap."""
    dom_low, dom_high = guarded_call("domain_bounds", oracle.domain_bounds)
    if not low < dom_high:
        raise InvalidArgumentError(f"axis low {low} is not below the domain maximum {dom_high}")
    if not high > dom_low:
        raise InvalidArgumentError(f"axis high {high} is not above the domain minimum {dom_low}")
    lo, hi = max(low, dom_low), min(high, dom_high)
    if not lo < hi:
        raise InvalidArgumentError(f"clamped axis [{lo}, {hi}] is empty")
    return lo, hi


def fixed_grid_size(low: float, high: float, step: float) -> int:
    """Number of points of a fixed scan: round((high - low) / step) + 1."""
    return int((high - low) / step + 0.5) + 1


# -------------------------
# Parallel-safe worker (must be top-level for ProcessPool pickling)
# -------------------------


def _evaluate_point(oracle: Oracle, data: Any, poi_value: float, n_toys: int) -> ScanPoint:
    p_sb, p_b = guarded_call(
        "pvalues_toys", oracle.pvalues_toys, data, poi_value, n_toys, poi_value=poi_value
    )
    p_sb = finite_value("pvalues_toys (p_sb)", p_sb, poi_value=poi_value)
    p_b = finite_value("pvalues_toys (p_b)", p_b, poi_value=poi_value)
    if not (0.0 <= p_sb <= 1.0 and 0.0 <= p_b <= 1.0):
        raise OracleEvaluationFailed(
            f"pvalues_toys returned p-values outside [0,1] at poi={poi_value:.6g}: ({p_sb}, {p_b})",
            poi_value=poi_value,
        )
    return ScanPoint(poi_value=poi_value, p_value_sb=p_sb, p_value_b=p_b)


@contextmanager
def _worker_pool(config: ScanConfig) -> Iterator[Optional[_PoolExecutor]]:
    if config.max_workers <= 1:
        yield None
        return
    pool_cls = ThreadPoolExecutor if config.executor is Executor.THREAD else ProcessPoolExecutor
    with pool_cls(max_workers=config.max_workers) as pool:
        yield pool


# -------------------------
# Scanner
# -------------------------


class AdaptiveScanner:
    """Feldman-Cousins interval scanner bound to one configuration.

    >>> scanner = AdaptiveScanner(ScanConfig(low=0.0, high=5.0, confidence_level=0.95))
    >>> result = scanner.scan(oracle, data)   # doctest: +SKIP
    """

    def __init__(self, config: Optional[ScanConfig] = None, logger: Optional[ChainedJSONLLogger] = None) -> None:
        self.config = config if config is not None else ScanConfig()
        self.logger = resolve_logger(logger)

    def _scan_range(
        self,
        oracle: Oracle,
        data: Any,
        low: float,
        high: float,
        n_points: int,
        result: ScanResult,
        pool: Optional[_PoolExecutor],
    ) -> int:
        """Evaluate ``n_points`` grid points in [low, high] not already in ``result``."""
        grid = [float(x) for x in np.linspace(low, high, n_points)]
        todo = [x for x in grid if x not in result]
        self.logger.trace(f"scan [{low:.6g} ... {high:.6g}] with {n_points} points", level="info")

        toys = self.config.toys_per_point
        if pool is None:
            added = [_evaluate_point(oracle, data, x, toys) for x in todo]
        else:
            futs = [pool.submit(_evaluate_point, oracle, data, x, toys) for x in todo]
            added = []
            try:
                for fut in as_completed(futs):
                    added.append(fut.result())
            except BaseException:
                for f in futs:
                    f.cancel()
                raise
        n_new = result.merge(added)

        if self.logger.enabled("debug"):
            for p in sorted(added, key=lambda q: q.poi_value):
                self.logger.trace(
                    f"  poi={p.poi_value:.6g} p_sb={p.p_value_sb:.6g} p_b={p.p_value_b:.6g}",
                    level="debug",
                )
        return n_new

    def _refine_ranges(self, result: ScanResult, alpha: float) -> List[Tuple[float, float]]:
        n = self.config.points_per_iteration
        ranges: List[Tuple[float, float]] = []
        for a, b in result.brackets(alpha):
            step = (b.poi_value - a.poi_value) / (n - 1)
            lo, hi = a.poi_value + step, b.poi_value - step
            if lo < hi:
                ranges.append((lo, hi))
        return ranges

    def _run_adaptive(
        self,
        oracle: Oracle,
        data: Any,
        low: float,
        high: float,
        result: ScanResult,
        pool: Optional[_PoolExecutor],
    ) -> int:
        cfg = self.config
        alpha = cfg.target_p_value
        ranges: List[Tuple[float, float]] = [(low, high)]
        iterations = 0
        iteration = 1
        while iteration <= cfg.max_iterations:
            n_points = cfg.points_per_iteration if iteration == 1 else cfg.points_per_iteration - 2
            planned = n_points * len(ranges)
            if iteration > 1 and cfg.max_points is not None and len(result) + planned > cfg.max_points:
                self.logger.trace(
                    f"stopping before iteration {iteration}: {len(result)} + {planned} points exceeds max_points={cfg.max_points}",
                    level="warning",
                )
                break

            self.logger.trace(f"iteration {iteration} with {len(ranges)} range(s)", level="info")
            for lo, hi in ranges:
                self._scan_range(oracle, data, lo, hi, n_points, result, pool)
            iterations = iteration

            ranges = self._refine_ranges(result, alpha)
            if not ranges:
                self.logger.trace(
                    f"no range brackets p-value {alpha:.6g} after iteration {iteration}", level="info"
                )
                break
            iteration += 1
        return iterations

    def scan(self, oracle: Oracle, data: Any) -> IntervalResult:
        """Construct the interval for ``data``; see the module docstring for the algorithm.

        Raises
        ------
        InvalidArgumentError
            The axis does not overlap the oracle domain.
        OracleEvaluationFailed
            Any per-point evaluation failed (the whole call is aborted).
        InternalConsistencyError
            The finished scan never brackets the target p-value.
        """
        cfg = self.config
        alpha = cfg.target_p_value
        low, high = clamp_axis(cfg.low, cfg.high, oracle)

        result = ScanResult()
        with audit_context(
            self.logger,
            "feldman_cousins",
            oracle=getattr(oracle, "name", type(oracle).__name__),
            config_hash=cfg.blake3_hash(),
            axis=[low, high],
        ):
            with _worker_pool(cfg) as pool:
                if cfg.adaptive:
                    iterations = self._run_adaptive(oracle, data, low, high, result, pool)
                else:
                    n_points = fixed_grid_size(low, high, cfg.step)
                    if cfg.max_points is not None:
                        n_points = min(n_points, cfg.max_points)
                    n_points = max(n_points, 2)
                    self._scan_range(oracle, data, low, high, n_points, result, pool)
                    iterations = 1

            lower, upper, degenerate = derive_bounds(result.points(), alpha, low, high)
            interval = IntervalResult(
                lower=lower,
                upper=upper,
                trace=result.points(),
                iterations=iterations,
                confidence_level=cfg.confidence_level,
                method=IntervalMethod.FELDMAN_COUSINS,
                axis=ScanRange(low=low, high=high),
                degenerate=degenerate,
            )
            self.logger.log_event(
                "interval",
                fields={
                    "method": interval.method.value,
                    "lower": lower,
                    "upper": upper,
                    "points": len(result),
                    "iterations": iterations,
                    "degenerate": degenerate,
                },
                level="info",
                message=(
                    f"{cfg.confidence_level:g} CL interval [{lower:.6g}, {upper:.6g}]"
                    f" from {len(result)} points in {iterations} iteration(s)"
                    + (" (degenerate)" if degenerate else "")
                ),
            )
        return interval


def scan(
    oracle: Oracle,
    data: Any,
    config: Optional[ScanConfig] = None,
    *,
    logger: Optional[ChainedJSONLLogger] = None,
    **overrides: Any,
) -> IntervalResult:
    """Run a Feldman-Cousins scan; keyword overrides are validated into a ScanConfig first."""
    cfg = resolve_config(ScanConfig, config, overrides)
    return AdaptiveScanner(cfg, logger).scan(oracle, data)
