"""
Module: atlas
Purpose: Reference curves for the Gaussian-mean problem and the limit comparison plot
Dependencies: numpy, scipy.stats, matplotlib
"""
from __future__ import annotations

from typing import Any, Dict, List, Mapping, Sequence

import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt  # noqa: E402
import numpy as np  # noqa: E402
from scipy.stats import norm  # noqa: E402

__all__ = [
    "FC95_UPPER_X",
    "FC95_UPPER",
    "FC95_LOWER_X",
    "FC95_LOWER",
    "clsb_limit",
    "cls_limit",
    "fc95_band",
    "plot_limits",
    "table_rows",
]

# Feldman & Cousins, Phys. Rev. D57 (1998) 3873, Table X: 95% CL for a
# Gaussian mean bounded at zero, unit width.
FC95_UPPER_X = np.round(np.arange(-3.0, 3.0 + 1e-9, 0.2), 10)
FC95_UPPER = np.array([
    0.42, 0.45, 0.48, 0.52, 0.56, 0.62, 0.68, 0.76, 0.86, 0.97,
    1.10, 1.25, 1.41, 1.58, 1.77, 1.96, 2.16, 2.36, 2.56, 2.76,
    2.96, 3.16, 3.36, 3.56, 3.76, 3.96, 4.16, 4.36, 4.56, 4.76, 4.96,
])
FC95_LOWER_X = np.round(np.arange(1.6, 3.0 + 1e-9, 0.2), 10)
FC95_LOWER = np.array([0.0, 0.16, 0.35, 0.53, 0.69, 0.84, 0.99, 1.14])


def clsb_limit(x: Any, conf: float = 0.95) -> Any:
    """Classical one-sided upper limit x + Phi^-1(conf)."""
    return np.asarray(x, dtype=float) + norm.ppf(conf)


def cls_limit(x: Any, conf: float = 0.95) -> Any:
    """CLs upper limit x + Phi^-1(1 - (1 - conf) Phi(x))."""
    x = np.asarray(x, dtype=float)
    return x + norm.ppf(1.0 - (1.0 - conf) * norm.cdf(x))


def fc95_band(x: Any) -> Dict[str, Any]:
    """Tabulated 95% Feldman-Cousins edges interpolated at ``x`` (lower is 0 below x = 1.6)."""
    x = np.asarray(x, dtype=float)
    upper = np.interp(x, FC95_UPPER_X, FC95_UPPER, left=np.nan, right=np.nan)
    lower = np.where(x < FC95_LOWER_X[0], 0.0, np.interp(x, FC95_LOWER_X, FC95_LOWER, right=np.nan))
    lower = np.where(np.isnan(upper), np.nan, lower)
    return {"lower": lower, "upper": upper}


def plot_limits(rows: Sequence[Mapping[str, float]], outfile: str, conf: float = 0.95) -> str:
    """
    Plot computed intervals/limits against the observation and overlay the
    analytic curves (and the published band when conf == 0.95).

    Each row needs ``x``; optional keys: ``lh_lower``/``lh_upper`` (unbounded
    likelihood), ``blh_lower``/``blh_upper`` (bounded), ``fc_lower``/``fc_upper``,
    ``clsb``, ``cls``.
    """
    xs = np.array([r["x"] for r in rows], dtype=float)

    def col(key: str) -> np.ndarray:
        return np.array([r.get(key, np.nan) for r in rows], dtype=float)

    fig, ax = plt.subplots(figsize=(7.0, 5.0))
    if not np.all(np.isnan(col("fc_upper"))):
        ax.fill_between(xs, col("fc_lower"), col("fc_upper"), color="tab:green", alpha=0.25, label="Feldman-Cousins")
    ax.plot(xs, col("lh_lower"), color="tab:gray", ls=":", label="likelihood")
    ax.plot(xs, col("lh_upper"), color="tab:gray", ls=":")
    ax.plot(xs, col("blh_lower"), color="tab:purple", ls="-.", label=r"likelihood ($\mu \geq 0$)")
    ax.plot(xs, col("blh_upper"), color="tab:purple", ls="-.")
    ax.plot(xs, col("clsb"), "o", ms=3, color="tab:blue", label="CL(s+b)")
    ax.plot(xs, col("cls"), "s", ms=3, color="tab:red", label="CLs")

    grid = np.linspace(xs.min(), xs.max(), 200) if xs.size else np.array([])
    ax.plot(grid, clsb_limit(grid, conf), color="tab:blue", lw=1)
    ax.plot(grid, cls_limit(grid, conf), color="tab:red", lw=1)
    if abs(conf - 0.95) < 1e-12:
        ax.plot(FC95_UPPER_X, FC95_UPPER, "k--", lw=1, label="FC table")
        ax.plot(FC95_LOWER_X, FC95_LOWER, "k--", lw=1)

    ax.set_xlabel("observed x")
    ax.set_ylabel(r"$\mu$")
    ax.set_title(f"{conf:g} CL limits for a Gaussian mean")
    ax.legend(loc="upper left", fontsize="small")
    fig.savefig(outfile, bbox_inches="tight")
    plt.close(fig)
    return outfile


def table_rows(rows: Sequence[Mapping[str, float]]) -> List[str]:
    """Fixed-width text table of the computed rows."""
    keys = ["x", "lh_lower", "lh_upper", "blh_lower", "blh_upper", "fc_lower", "fc_upper", "clsb", "cls"]
    out = ["".join(f"{k:>11s}" for k in keys)]
    for r in rows:
        out.append("".join(f"{float(r.get(k, np.nan)):11.4f}" for k in keys))
    return out
