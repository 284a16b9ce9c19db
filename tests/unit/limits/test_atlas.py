import numpy as np
import pytest

from poiscan.limits import atlas


def test_analytic_curves_at_zero():
    assert float(atlas.clsb_limit(0.0)) == pytest.approx(1.6449, abs=1e-4)
    assert float(atlas.cls_limit(0.0)) == pytest.approx(1.96, abs=1e-3)


def test_cls_approaches_clsb_for_large_x():
    x = np.array([3.0, 4.0, 5.0])
    diff = atlas.cls_limit(x) - atlas.clsb_limit(x)
    assert np.all(diff > 0)
    assert np.all(np.diff(diff) < 0)


def test_table_is_consistent():
    assert atlas.FC95_UPPER_X.shape == atlas.FC95_UPPER.shape
    assert atlas.FC95_LOWER_X.shape == atlas.FC95_LOWER.shape
    assert np.all(np.diff(atlas.FC95_UPPER) > 0)


def test_fc95_band():
    band = atlas.fc95_band([0.0, 3.0, 1.0])
    assert band["upper"][:2] == pytest.approx([1.96, 4.96])
    assert band["lower"][:2] == pytest.approx([0.0, 1.14])
    assert band["lower"][2] == 0.0
    out = atlas.fc95_band([4.0])
    assert np.isnan(out["upper"][0]) and np.isnan(out["lower"][0])


def test_plot_and_table(tmp_path):
    rows = [
        {"x": 0.0, "clsb": 1.645, "cls": 1.96, "fc_lower": 0.0, "fc_upper": 1.96},
        {"x": 1.0, "clsb": 2.645, "cls": 2.8, "fc_lower": 0.0, "fc_upper": 2.96},
    ]
    out = atlas.plot_limits(rows, str(tmp_path / "fig.png"), conf=0.95)
    assert (tmp_path / "fig.png").stat().st_size > 0
    assert out.endswith("fig.png")

    lines = atlas.table_rows(rows)
    assert len(lines) == 3
    assert lines[0].split()[:2] == ["x", "lh_lower"]
    assert "nan" in lines[1]
