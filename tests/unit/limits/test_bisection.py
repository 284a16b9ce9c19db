from __future__ import annotations

import math

import pytest
from scipy.stats import norm

from poiscan.core.errors import CapabilityNotImplemented, InternalConsistencyError, OracleEvaluationFailed
from poiscan.core.models import IntervalMethod, SolverConfig
from poiscan.limits.atlas import cls_limit
from poiscan.limits.bisection import BisectionSolver, estimate_sigma, evaluate_q_mu, solve
from tests._factories import CountingOracle, FailingOracle


def test_clsb_limit_at_zero(bounded_oracle):
    res = solve(bounded_oracle, [0.0], use_cls=False, precision=0.001, max_iterations=40)
    assert res.method is IntervalMethod.ASYMPTOTIC_CLSB
    assert res.upper == pytest.approx(norm.isf(0.05), abs=0.01)
    # the trace carries no CL(b) in CL(s+b) mode
    assert all(p.p_value_b is None for p in res.trace)


def test_cls_limit_at_zero(bounded_oracle):
    res = solve(bounded_oracle, [0.0], use_cls=True, precision=0.001, max_iterations=40)
    assert res.method is IntervalMethod.ASYMPTOTIC_CLS
    assert res.upper == pytest.approx(1.96, abs=0.01)
    assert all(p.p_value_b is not None for p in res.trace)


@pytest.mark.parametrize("x", [-2.0, -0.5, 1.0, 2.5])
def test_cls_matches_analytic_curve(bounded_oracle, x):
    res = solve(bounded_oracle, [x], SolverConfig(low=x, high=x + 4.0, precision=0.001, max_iterations=40))
    assert res.upper == pytest.approx(float(cls_limit(x)), abs=0.02)


def test_cls_is_more_conservative_than_clsb(bounded_oracle):
    cls = solve(bounded_oracle, [-1.0], use_cls=True)
    clsb = solve(bounded_oracle, [-1.0], use_cls=False)
    assert cls.upper > clsb.upper


def test_lower_is_clamped_axis_low(bounded_oracle):
    res = solve(bounded_oracle, [0.0], low=-50.0, high=50.0)
    # domain is widened to [-10, 10] during the search
    assert res.axis is not None
    assert (res.axis.low, res.axis.high) == (-10.0, 10.0)
    assert res.lower == -10.0


def test_termination_and_residuals(bounded_oracle):
    res = solve(bounded_oracle, [0.0], precision=0.01)
    assert len(res.residuals) == res.iterations
    assert res.residuals[-1] <= 0.01 or res.iterations == 20

    capped = solve(bounded_oracle, [0.0], max_iterations=3)
    assert capped.iterations == 3
    assert len(capped.trace) == 3


def test_sigma_is_estimated_every_cls_iteration(bounded_oracle):
    counting = CountingOracle(bounded_oracle)
    res = solve(counting, [0.0], use_cls=True, max_iterations=6, precision=1e-9)
    assert res.iterations == 6
    assert counting.calls["asimov_dataset"] == 6

    counting = CountingOracle(bounded_oracle)
    solve(counting, [0.0], use_cls=False, max_iterations=6, precision=1e-9)
    assert counting.calls["asimov_dataset"] == 0


def test_toys_are_not_supported(bounded_oracle):
    counting = CountingOracle(bounded_oracle)
    with pytest.raises(CapabilityNotImplemented):
        BisectionSolver(SolverConfig(toys=1000)).solve(counting, [0.0])
    assert counting.total_calls == 0


def test_domain_restored_after_success(bounded_oracle):
    solve(bounded_oracle, [0.0])
    assert bounded_oracle.domain_bounds() == (0.0, 10.0)


def test_domain_restored_after_failure(bounded_oracle):
    failing = FailingOracle(bounded_oracle, "test_statistic", after=2)
    with pytest.raises(OracleEvaluationFailed):
        solve(failing, [0.0])
    assert bounded_oracle.domain_bounds() == (0.0, 10.0)


def test_unbounded_domain_is_left_alone(unbounded_oracle):
    counting = CountingOracle(unbounded_oracle)
    solve(counting, [0.0], use_cls=False)
    assert counting.calls["set_domain_bounds"] == 2  # set + restore with the same bounds
    assert unbounded_oracle.domain_bounds() == (-10.0, 10.0)


def test_negative_statistic_is_inconsistent(bounded_oracle):
    failing = FailingOracle(bounded_oracle, "test_statistic", bad_value=-1.0)
    with pytest.raises(InternalConsistencyError):
        evaluate_q_mu(failing, [0.0], 1.0)


def test_tiny_negative_statistic_is_zero(bounded_oracle):
    failing = FailingOracle(bounded_oracle, "test_statistic", bad_value=-1e-12)
    assert evaluate_q_mu(failing, [0.0], 1.0) == 0.0


def test_nan_statistic_fails(bounded_oracle):
    failing = FailingOracle(bounded_oracle, "test_statistic", bad_value=math.nan)
    with pytest.raises(OracleEvaluationFailed):
        solve(failing, [0.0], use_cls=False)


def test_estimate_sigma(unbounded_oracle):
    assert estimate_sigma(unbounded_oracle, [0.0]) == pytest.approx(1.0)
    assert estimate_sigma(unbounded_oracle, [0.3, -0.2, 0.1, 0.4]) == pytest.approx(0.5)
