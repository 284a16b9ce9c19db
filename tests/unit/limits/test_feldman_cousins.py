from __future__ import annotations

import math

import pytest

from poiscan.core.errors import InternalConsistencyError, InvalidArgumentError, OracleEvaluationFailed
from poiscan.core.models import Executor, IntervalMethod, ScanConfig
from poiscan.limits.feldman_cousins import AdaptiveScanner, clamp_axis, fixed_grid_size, scan
from poiscan.oracles.gaussian import GaussianMeanOracle
from tests._factories import CountingOracle, FailingOracle, values_of


def _fc95(**kw) -> ScanConfig:
    base = dict(confidence_level=0.95, low=0.0, high=8.0, toys_per_point=10000)
    base.update(kw)
    return ScanConfig(**base)


# ---------------------------
# Known intervals (Feldman & Cousins 1998, Table X)
# ---------------------------


def test_null_observation_gives_upper_limit(bounded_oracle):
    res = scan(bounded_oracle, [0.0], _fc95())
    assert res.method is IntervalMethod.FELDMAN_COUSINS
    assert res.lower == 0.0
    assert res.upper == pytest.approx(1.96, abs=0.1)
    assert not res.degenerate


def test_positive_observation_gives_two_sided_interval(bounded_oracle):
    res = scan(bounded_oracle, [3.0], _fc95())
    assert 1.0 < res.lower < 1.3
    assert res.upper == pytest.approx(4.96, abs=0.1)


def test_bounds_stay_on_clamped_axis(bounded_oracle):
    res = scan(bounded_oracle, [0.5], _fc95(low=-50.0, high=50.0))
    assert res.axis is not None
    assert (res.axis.low, res.axis.high) == (0.0, 10.0)
    assert res.axis.low <= res.lower <= res.upper <= res.axis.high
    assert all(res.axis.contains(p.poi_value) for p in res.trace)


def test_interval_widens_with_confidence(bounded_oracle):
    narrow = scan(bounded_oracle, [0.0], _fc95(confidence_level=0.9))
    wide = scan(bounded_oracle, [0.0], _fc95(confidence_level=0.95))
    assert narrow.upper < wide.upper


def test_reruns_are_identical(bounded_oracle):
    a = scan(bounded_oracle, [1.0], _fc95())
    b = scan(GaussianMeanOracle(poi_low=0.0, poi_high=10.0, seed=1337), [1.0], _fc95())
    assert (a.lower, a.upper, a.iterations) == (b.lower, b.upper, b.iterations)
    assert [(p.poi_value, p.p_value_sb, p.p_value_b) for p in a.trace] == [
        (p.poi_value, p.p_value_sb, p.p_value_b) for p in b.trace
    ]


# ---------------------------
# Adaptive refinement
# ---------------------------


def test_adaptive_refinement_runs_all_iterations(bounded_oracle):
    counting = CountingOracle(bounded_oracle)
    res = AdaptiveScanner(_fc95(high=5.0)).scan(counting, [0.0])
    assert res.iterations == 3
    assert len(res.trace) >= 11 + 9 + 9
    # every POI value is evaluated exactly once
    assert len(counting.evaluated) == len(set(counting.evaluated)) == len(res.trace)
    assert values_of(res.trace) == sorted(values_of(res.trace))


def test_single_iteration_scans_the_first_grid_only(bounded_oracle):
    res = scan(bounded_oracle, [0.0], _fc95(high=5.0, max_iterations=1))
    assert res.iterations == 1
    assert values_of(res.trace) == pytest.approx([0.5 * i for i in range(11)])


def test_max_points_stops_refinement(bounded_oracle):
    res = scan(bounded_oracle, [0.0], _fc95(high=5.0, max_points=15))
    assert res.iterations == 1
    assert len(res.trace) == 11


def test_thread_pool_matches_serial_scan(bounded_oracle):
    serial = scan(bounded_oracle, [2.0], _fc95())
    pooled = scan(bounded_oracle, [2.0], _fc95(max_workers=4))
    assert (pooled.lower, pooled.upper) == (serial.lower, serial.upper)
    assert values_of(pooled.trace) == values_of(serial.trace)


def test_process_pool_matches_serial_scan(bounded_oracle):
    kw = dict(high=5.0, toys_per_point=2000, max_iterations=2)
    serial = scan(bounded_oracle, [0.0], _fc95(**kw))
    pooled = scan(bounded_oracle, [0.0], _fc95(max_workers=2, executor=Executor.PROCESS, **kw))
    assert (pooled.lower, pooled.upper) == (serial.lower, serial.upper)


# ---------------------------
# Fixed grid
# ---------------------------


def test_fixed_grid_size():
    assert fixed_grid_size(0.0, 1.0, 0.1) == 11
    assert fixed_grid_size(-3.0, 4.0, 0.1) == 71
    assert fixed_grid_size(0.0, 1.0, 0.3) == 4


def test_fixed_scan_point_count(bounded_oracle):
    counting = CountingOracle(bounded_oracle)
    res = scan(counting, [0.0], _fc95(high=4.0, adaptive=False, step=0.1))
    assert res.iterations == 1
    assert len(res.trace) == len(counting.evaluated) == 41
    assert res.upper == pytest.approx(1.96, abs=0.1)


# ---------------------------
# Errors
# ---------------------------


def test_reversed_axis_fails_before_any_oracle_call(bounded_oracle):
    counting = CountingOracle(bounded_oracle)
    with pytest.raises(InvalidArgumentError):
        scan(counting, [0.0], low=2.0, high=1.0)
    assert counting.total_calls == 0


@pytest.mark.parametrize(
    "overrides",
    [{"confidence_level": 1.0}, {"toys_per_point": 0}, {"points_per_iteration": 3}, {"max_workers": 0}],
)
def test_bad_arguments_raise_invalid_argument(bounded_oracle, overrides):
    counting = CountingOracle(bounded_oracle)
    with pytest.raises(InvalidArgumentError):
        scan(counting, [0.0], **overrides)
    assert counting.total_calls == 0


def test_axis_outside_domain_is_rejected(bounded_oracle):
    counting = CountingOracle(bounded_oracle)
    with pytest.raises(InvalidArgumentError):
        scan(counting, [0.0], _fc95(low=20.0, high=30.0))
    assert counting.evaluated == []


def test_clamp_axis(bounded_oracle):
    assert clamp_axis(-5.0, 5.0, bounded_oracle) == (0.0, 5.0)
    assert clamp_axis(1.0, 50.0, bounded_oracle) == (1.0, 10.0)
    with pytest.raises(InvalidArgumentError):
        clamp_axis(-5.0, 0.0, bounded_oracle)


def test_oracle_failure_aborts_scan(bounded_oracle):
    failing = FailingOracle(bounded_oracle, "pvalues_toys", after=4)
    with pytest.raises(OracleEvaluationFailed) as ei:
        scan(failing, [0.0], _fc95())
    assert ei.value.poi_value is not None
    assert isinstance(ei.value.__cause__, RuntimeError)


def test_oracle_failure_in_thread_pool_propagates(bounded_oracle):
    failing = FailingOracle(bounded_oracle, "pvalues_toys", after=2)
    with pytest.raises(OracleEvaluationFailed):
        scan(failing, [0.0], _fc95(max_workers=3))


@pytest.mark.parametrize("bad", [(math.nan, 0.5), (0.5, math.inf), (1.5, 0.5)])
def test_bad_p_values_are_rejected(bounded_oracle, bad):
    failing = FailingOracle(bounded_oracle, "pvalues_toys", bad_value=bad)
    with pytest.raises(OracleEvaluationFailed):
        scan(failing, [0.0], _fc95())


def test_axis_without_bracket_raises(bounded_oracle):
    # every point on [5, 8] is excluded for x = 0
    with pytest.raises(InternalConsistencyError):
        scan(bounded_oracle, [0.0], _fc95(low=5.0, high=8.0))
