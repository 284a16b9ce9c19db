from __future__ import annotations

import numpy as np
import pytest
from scipy.stats import norm

from poiscan.core.errors import CapabilityNotImplemented, InvalidArgumentError, OracleEvaluationFailed
from poiscan.limits.significance import sampling_distribution, significance
from poiscan.oracles.base import Oracle
from poiscan.oracles.gaussian import GaussianMeanOracle


class _ShortNullOracle(GaussianMeanOracle):
    def sample_null_statistics(self, data, n_toys):
        return np.zeros(3)


class _NoDiscoveryOracle(GaussianMeanOracle):
    def discovery_statistic(self, data):
        return Oracle.discovery_statistic(self, data)


def test_asymptotic_significance(bounded_oracle):
    res = significance(bounded_oracle, [2.0])
    assert res.q0 == pytest.approx(4.0)
    assert res.z == pytest.approx(2.0)
    assert res.p_value == pytest.approx(norm.sf(2.0))
    assert res.toys == -1
    assert not res.p_value_is_bound


def test_downward_fluctuation_has_zero_significance(bounded_oracle):
    res = significance(bounded_oracle, [-1.0])
    assert res.q0 == 0.0
    assert res.z == 0.0
    assert res.p_value == pytest.approx(0.5)


def test_toy_significance_agrees_with_asymptotics(bounded_oracle):
    res = significance(bounded_oracle, [1.0], toys=20000)
    assert res.p_value == pytest.approx(norm.sf(1.0), abs=0.01)
    assert res.z == pytest.approx(1.0, abs=0.05)


def test_no_extreme_toy_reports_bound(bounded_oracle):
    res = significance(bounded_oracle, [5.0], toys=1000)
    assert res.p_value_is_bound
    assert res.p_value == pytest.approx(1.0 / 1001)
    assert res.z == pytest.approx(norm.isf(1.0 / 1001))


def test_all_toys_extreme_gives_finite_z(bounded_oracle):
    res = significance(bounded_oracle, [0.0], toys=500)
    assert res.p_value == 1.0
    assert np.isfinite(res.z) and res.z < 0


def test_sampling_distribution(bounded_oracle):
    null = sampling_distribution(bounded_oracle, [0.0], toys=300)
    assert null.shape == (300,)
    assert np.all(null >= 0.0)
    with pytest.raises(InvalidArgumentError):
        sampling_distribution(bounded_oracle, [0.0], toys=0)


def test_wrong_toy_count_is_rejected():
    with pytest.raises(OracleEvaluationFailed):
        sampling_distribution(_ShortNullOracle(poi_low=0.0), [0.0], toys=10)


def test_missing_discovery_statistic():
    with pytest.raises(CapabilityNotImplemented):
        significance(_NoDiscoveryOracle(poi_low=0.0), [1.0])
