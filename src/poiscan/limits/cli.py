# src/poiscan/limits/cli.py
"""
poiscan CLI

Subcommands:
  - gauss-limits    Compare likelihood, Feldman-Cousins, CL(s+b) and CLs results
                    for a unit Gaussian mean over a range of observations
  - upper-limit     One asymptotic upper limit (JSON)
  - fc-interval     One Feldman-Cousins interval (JSON)
  - significance    Discovery significance of one observation (JSON)
  - verify-audit    Verify the tamper-evident JSONL record chain

Examples:
  poiscan gauss-limits -l -3 -u 3 -p 60 -c 0.95 --plot limits.png
  poiscan upper-limit --x 0.0 --no-cls
  poiscan fc-interval --x 3.0 -c 0.95 --jobs 4
  poiscan verify-audit --audit runs/limits.jsonl
"""

from __future__ import annotations

import argparse
import csv
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import numpy as np

from poiscan.core.errors import PoiScanError
from poiscan.core.logging import ChainedJSONLLogger, LoggingError, Verbosity
from poiscan.core.models import (
    Executor,
    LikelihoodConfig,
    ScanConfig,
    SolverConfig,
    resolve_config,
    validated,
)
from poiscan.io.seeds import DEFAULT_SEED, set_seed
from poiscan.limits import atlas, audit
from poiscan.limits.bisection import BisectionSolver
from poiscan.limits.feldman_cousins import AdaptiveScanner
from poiscan.limits.io import load_configs
from poiscan.limits.likelihood import likelihood_interval
from poiscan.limits.significance import significance
from poiscan.oracles.gaussian import GaussianMeanOracle

# POI range of the Gaussian oracle used by the front end
_MU_MAX = 10.0


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------

def _verbosity(text: str) -> Verbosity:
    try:
        return Verbosity.parse(text)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from None


def _bounded_oracle(seed: int) -> GaussianMeanOracle:
    return GaussianMeanOracle(width=1.0, poi_low=0.0, poi_high=_MU_MAX, seed=seed)


def _unbounded_oracle(seed: int) -> GaussianMeanOracle:
    return GaussianMeanOracle(width=1.0, poi_low=-_MU_MAX, poi_high=_MU_MAX, seed=seed)


def _logger(args: argparse.Namespace) -> ChainedJSONLLogger:
    return ChainedJSONLLogger(getattr(args, "audit", None), args.verbosity, default_seed=args.seed)


def _overrides(args: argparse.Namespace, mapping: Dict[str, str]) -> Dict[str, Any]:
    """CLI attribute -> config field, for flags that were actually given."""
    out: Dict[str, Any] = {}
    for attr, field in mapping.items():
        val = getattr(args, attr, None)
        if val is not None:
            out[field] = val
    return out


def _print_json(obj: Any) -> None:
    print(json.dumps(obj, indent=2, sort_keys=True))


def _write_csv(rows: List[Dict[str, float]], path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    keys = list(rows[0].keys()) if rows else ["x"]
    with path.open("w", newline="", encoding="utf-8") as f:
        w = csv.DictWriter(f, fieldnames=keys)
        w.writeheader()
        for r in rows:
            w.writerow(r)


# -----------------------------------------------------------------------------
# Subcommands
# -----------------------------------------------------------------------------

def _cmd_gauss_limits(args: argparse.Namespace) -> int:
    seed = set_seed(args.seed)
    logger = _logger(args)
    conf = args.conf

    if args.fixed_scan:
        fc_cfg = validated(
            ScanConfig,
            confidence_level=conf,
            adaptive=False,
            step=args.fc_step,
            toys_per_point=args.fc_toys if args.fc_toys is not None else 10000,
            max_workers=args.jobs,
            executor=args.executor,
        )
    else:
        fc_cfg = validated(
            ScanConfig,
            confidence_level=conf,
            low=-100.0,
            high=100.0,
            points_per_iteration=args.fc_points,
            max_iterations=args.fc_iterations,
            toys_per_point=args.fc_toys if args.fc_toys is not None else 50000,
            max_workers=args.jobs,
            executor=args.executor,
        )
    lh_cfg = validated(LikelihoodConfig, confidence_level=conf)

    rows: List[Dict[str, float]] = []
    for x in np.linspace(args.lower, args.upper, args.points + 1):
        x = float(x)
        data = [x]
        lh = likelihood_interval(_unbounded_oracle(seed), data, lh_cfg, logger=logger)
        blh = likelihood_interval(_bounded_oracle(seed), data, lh_cfg, logger=logger)

        scan_cfg = fc_cfg if not args.fixed_scan else resolve_config(ScanConfig, fc_cfg, {"low": x - 3.0, "high": x + 4.0})
        fc = AdaptiveScanner(scan_cfg, logger).scan(_bounded_oracle(seed), data)

        clsb = BisectionSolver(
            validated(SolverConfig, confidence_level=conf, low=x, high=x + 4.0, use_cls=False), logger
        ).solve(_bounded_oracle(seed), data)
        cls = BisectionSolver(
            validated(SolverConfig, confidence_level=conf, low=x, high=x + 4.0, use_cls=True), logger
        ).solve(_bounded_oracle(seed), data)

        rows.append({
            "x": x,
            "lh_lower": lh.lower,
            "lh_upper": lh.upper,
            "blh_lower": blh.lower,
            "blh_upper": blh.upper,
            "fc_lower": 0.0 if fc.degenerate else fc.lower,
            "fc_upper": fc.upper,
            "clsb": clsb.upper,
            "cls": cls.upper,
        })

    for line in atlas.table_rows(rows):
        print(line)
    if args.csv:
        _write_csv(rows, Path(args.csv))
        print(f"Wrote {len(rows)} rows to {args.csv}")
    if args.plot:
        Path(args.plot).parent.mkdir(parents=True, exist_ok=True)
        atlas.plot_limits(rows, args.plot, conf)
        print(f"Wrote figure to {args.plot}")
    return 0


def _cmd_upper_limit(args: argparse.Namespace) -> int:
    set_seed(args.seed)
    logger = _logger(args)
    _, base, _ = load_configs(args.config)
    cfg = resolve_config(SolverConfig, base, _overrides(args, {
        "conf": "confidence_level",
        "low": "low",
        "high": "high",
        "precision": "precision",
        "max_iterations": "max_iterations",
        "toys": "toys",
        "cls": "use_cls",
    }))
    result = BisectionSolver(cfg, logger).solve(_bounded_oracle(args.seed), [args.x])
    if logger.path is not None:
        logger.log(audit.make_record(cfg, result, oracle="gaussian", observation={"x": args.x}), level="info")
    _print_json(result.model_dump(mode="json"))
    return 0


def _cmd_fc_interval(args: argparse.Namespace) -> int:
    set_seed(args.seed)
    logger = _logger(args)
    base, _, _ = load_configs(args.config)
    cfg = resolve_config(ScanConfig, base, _overrides(args, {
        "conf": "confidence_level",
        "low": "low",
        "high": "high",
        "points": "points_per_iteration",
        "iterations": "max_iterations",
        "toys": "toys_per_point",
        "step": "step",
        "max_points": "max_points",
        "jobs": "max_workers",
        "executor": "executor",
        "fixed_scan": "adaptive",
    }))
    result = AdaptiveScanner(cfg, logger).scan(_bounded_oracle(args.seed), [args.x])
    if logger.path is not None:
        logger.log(audit.make_record(cfg, result, oracle="gaussian", observation={"x": args.x}), level="info")
    _print_json(result.model_dump(mode="json"))
    return 0


def _cmd_significance(args: argparse.Namespace) -> int:
    set_seed(args.seed)
    logger = _logger(args)
    result = significance(_bounded_oracle(args.seed), [args.x], toys=args.toys, logger=logger)
    _print_json(result.model_dump(mode="json"))
    return 0


def _cmd_verify_audit(args: argparse.Namespace) -> int:
    try:
        n = audit.verify_chain(args.audit)
    except (RuntimeError, ValueError, FileNotFoundError) as e:
        print(f"audit chain FAILED: {e}", file=sys.stderr)
        return 1
    print(f"audit chain OK ({n} records)")
    return 0


# -----------------------------------------------------------------------------
# Parser
# -----------------------------------------------------------------------------

def _add_common(p: argparse.ArgumentParser) -> None:
    p.add_argument("-v", "--verbosity", type=_verbosity, default=Verbosity.SILENT,
                   help="Trace level 0..4 or silent|error|warning|info|debug (default: 0).")
    p.add_argument("--seed", type=int, default=DEFAULT_SEED, help="Seed for toy generation.")
    p.add_argument("--audit", default=None, help="Append records to this JSONL chain.")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="poiscan", description="Confidence intervals and limits on a parameter of interest.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    g = subparsers.add_parser("gauss-limits", help="Limit comparison for a unit Gaussian mean.")
    g.add_argument("-l", "--lower", type=float, default=-3.0, help="Lowest observation (default: -3).")
    g.add_argument("-u", "--upper", type=float, default=3.0, help="Highest observation (default: 3).")
    g.add_argument("-p", "--points", type=int, default=61, help="Number of steps between lower and upper (default: 61).")
    g.add_argument("-c", "--conf", type=float, default=0.95, help="Confidence level (default: 0.95).")
    g.add_argument("--fc-toys", type=int, default=None, help="Toys per FC point (default: 50000 adaptive, 10000 fixed).")
    g.add_argument("--fc-iterations", type=int, default=3, help="Adaptive FC iterations (default: 3).")
    g.add_argument("--fc-points", type=int, default=5, help="Adaptive FC points per iteration (default: 5).")
    g.add_argument("--fixed-scan", action="store_true", help="Fixed FC grid on [x-3, x+4] instead of adaptive refinement.")
    g.add_argument("--fc-step", type=float, default=0.1, help="Fixed-scan grid step (default: 0.1).")
    g.add_argument("--jobs", type=int, default=1, help="Parallel workers for FC points.")
    g.add_argument("--executor", choices=[e.value for e in Executor], default=Executor.THREAD.value)
    g.add_argument("--csv", default=None, help="Write the table as CSV.")
    g.add_argument("--plot", default=None, help="Write a PNG comparison plot.")
    _add_common(g)
    g.set_defaults(func=_cmd_gauss_limits)

    ul = subparsers.add_parser("upper-limit", help="Asymptotic CLs / CL(s+b) upper limit for one observation.")
    ul.add_argument("--x", type=float, required=True, help="Observed value.")
    ul.add_argument("--cls", action=argparse.BooleanOptionalAction, default=None, help="CLs (default) or CL(s+b).")
    ul.add_argument("-c", "--conf", type=float, default=None)
    ul.add_argument("--low", type=float, default=None)
    ul.add_argument("--high", type=float, default=None)
    ul.add_argument("--precision", type=float, default=None)
    ul.add_argument("--max-iterations", type=int, default=None)
    ul.add_argument("--toys", type=int, default=None)
    ul.add_argument("--config", default=None, help="YAML config with a 'solver' section.")
    _add_common(ul)
    ul.set_defaults(func=_cmd_upper_limit)

    fc = subparsers.add_parser("fc-interval", help="Feldman-Cousins interval for one observation.")
    fc.add_argument("--x", type=float, required=True, help="Observed value.")
    fc.add_argument("-c", "--conf", type=float, default=None)
    fc.add_argument("--low", type=float, default=None)
    fc.add_argument("--high", type=float, default=None)
    fc.add_argument("--points", type=int, default=None)
    fc.add_argument("--iterations", type=int, default=None)
    fc.add_argument("--toys", type=int, default=None)
    fc.add_argument("--fixed-scan", action="store_false", default=None, help="Scan a fixed grid with --step.")
    fc.add_argument("--step", type=float, default=None)
    fc.add_argument("--max-points", type=int, default=None)
    fc.add_argument("--jobs", type=int, default=None)
    fc.add_argument("--executor", choices=[e.value for e in Executor], default=None)
    fc.add_argument("--config", default=None, help="YAML config with a 'scan' section.")
    _add_common(fc)
    fc.set_defaults(func=_cmd_fc_interval)

    s = subparsers.add_parser("significance", help="Discovery significance of one observation.")
    s.add_argument("--x", type=float, required=True, help="Observed value.")
    s.add_argument("--toys", type=int, default=-1, help="Null toys (<= 0: asymptotic).")
    _add_common(s)
    s.set_defaults(func=_cmd_significance)

    va = subparsers.add_parser("verify-audit", help="Verify a JSONL record chain.")
    va.add_argument("--audit", required=True, help="Path to JSONL chain.")
    va.set_defaults(func=_cmd_verify_audit)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command == "gauss-limits":
        if not 0.0 < args.conf < 1.0:
            parser.error("confidence level must lie in (0, 1)")
        if not args.lower < args.upper:
            parser.error("lower observation must be below upper")
        if not (-5.0 < args.lower < 5.0 and -5.0 < args.upper < 5.0):
            parser.error("observations must lie in (-5, 5)")
        if args.points < 1:
            parser.error("points must be >= 1")
    try:
        return int(args.func(args))
    except (PoiScanError, LoggingError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
