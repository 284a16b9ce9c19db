# src/poiscan/core/scan.py
"""
Module: scan
Purpose: Ordered accumulation of scan points and derivation of interval bounds

Notes
-----
- ScanResult is keyed by POI value; the first evaluation of a value wins and
  later duplicates are rejected (``add`` returns False).
- Merges are serialized by a re-entrant lock so worker threads may feed the
  same result concurrently.
- A bracket is an adjacent pair (A, B) in ascending POI order with
  ``(p_sb(A) - target) * (p_sb(B) - target) < 0``.
"""

from __future__ import annotations

import threading
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from .errors import InternalConsistencyError
from .models import ScanPoint

__all__ = [
    "DEGENERATE_RTOL",
    "ScanResult",
    "are_equal_rel",
    "interpolate_crossing",
    "derive_bounds",
]

DEGENERATE_RTOL = 1e-4


class ScanResult:
    """Thread-safe, duplicate-free collection of ScanPoints sorted by POI value."""

    def __init__(self, points: Iterable[ScanPoint] = ()) -> None:
        self._lock = threading.RLock()
        self._points: Dict[float, ScanPoint] = {}
        self._sorted: Optional[Tuple[ScanPoint, ...]] = None
        for p in points:
            self.add(p)

    def add(self, point: ScanPoint) -> bool:
        """Insert ``point``; returns False if its POI value is already present."""
        with self._lock:
            if point.poi_value in self._points:
                return False
            self._points[point.poi_value] = point
            self._sorted = None
            return True

    def merge(self, points: Iterable[ScanPoint]) -> int:
        """Add every point in ``points``; returns how many were new."""
        with self._lock:
            return sum(1 for p in points if self.add(p))

    def __len__(self) -> int:
        with self._lock:
            return len(self._points)

    def __contains__(self, poi_value: object) -> bool:
        with self._lock:
            return poi_value in self._points

    def __iter__(self) -> Iterator[ScanPoint]:
        return iter(self.points())

    def get(self, poi_value: float) -> Optional[ScanPoint]:
        with self._lock:
            return self._points.get(poi_value)

    def points(self) -> Tuple[ScanPoint, ...]:
        """Snapshot of all points in ascending POI order."""
        with self._lock:
            if self._sorted is None:
                self._sorted = tuple(sorted(self._points.values(), key=lambda p: p.poi_value))
            return self._sorted

    def values(self) -> List[float]:
        return [p.poi_value for p in self.points()]

    def brackets(self, target: float) -> List[Tuple[ScanPoint, ScanPoint]]:
        """Adjacent pairs whose p-values straddle ``target`` strictly."""
        pts = self.points()
        out: List[Tuple[ScanPoint, ScanPoint]] = []
        for a, b in zip(pts, pts[1:]):
            if (a.p_value_sb - target) * (b.p_value_sb - target) < 0:
                out.append((a, b))
        return out


def are_equal_rel(a: float, b: float, rtol: float = DEGENERATE_RTOL) -> bool:
    """|a - b| <= rtol * max(|a|, |b|)."""
    return abs(a - b) <= rtol * max(abs(a), abs(b))


def interpolate_crossing(a: ScanPoint, b: ScanPoint, target: float) -> float:
    """POI value where the straight line through (a, b) reaches ``target``."""
    dp = b.p_value_sb - a.p_value_sb
    if dp == 0.0:
        return 0.5 * (a.poi_value + b.poi_value)
    t = (target - a.p_value_sb) / dp
    t = min(1.0, max(0.0, t))
    return a.poi_value + t * (b.poi_value - a.poi_value)


def derive_bounds(
    points: Sequence[ScanPoint],
    target: float,
    axis_low: float,
    axis_high: float,
) -> Tuple[float, float, bool]:
    """
    Interval bounds from the outermost accepted region of a finished scan.

    A point is accepted when ``p_sb > target``. The lower bound is the crossing
    just below the first accepted point (``axis_low`` when that point is the
    first one scanned); the upper bound is the crossing just above the last
    accepted point (``axis_high`` when that point is the last one scanned).

    Returns ``(lower, upper, degenerate)``. When the two bounds coincide within
    ``DEGENERATE_RTOL`` the lower bound is reported as ``axis_low``.

    Raises
    ------
    InternalConsistencyError
        If no point is accepted or no adjacent pair brackets ``target``.
    """
    pts = sorted(points, key=lambda p: p.poi_value)
    accepted = [i for i, p in enumerate(pts) if p.p_value_sb > target]
    if not accepted:
        raise InternalConsistencyError(
            f"no scanned point has p-value above {target:.6g}; the interval is empty on this grid"
        )
    n_brackets = sum(
        1 for a, b in zip(pts, pts[1:]) if (a.p_value_sb - target) * (b.p_value_sb - target) < 0
    )
    if n_brackets == 0:
        raise InternalConsistencyError(
            f"scan of [{axis_low:.6g}, {axis_high:.6g}] never brackets p-value {target:.6g}"
        )

    first, last = accepted[0], accepted[-1]
    if first == 0:
        lower = axis_low
    else:
        lower = interpolate_crossing(pts[first - 1], pts[first], target)
    if last == len(pts) - 1:
        upper = axis_high
    else:
        upper = interpolate_crossing(pts[last], pts[last + 1], target)

    lower = max(lower, axis_low)
    upper = min(upper, axis_high)

    degenerate = are_equal_rel(lower, upper)
    if degenerate:
        lower = axis_low
    return lower, upper, degenerate
