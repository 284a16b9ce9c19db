"""
Pytest bootstrap for src/ layout.

Puts ./src first on sys.path so `import poiscan` resolves to the working
tree even when pytest is spawned in a subprocess without PYTHONPATH=src.
"""
from __future__ import annotations

import sys
from pathlib import Path

import pytest

repo_root = Path(__file__).resolve().parents[1]
src = repo_root / "src"
if src.is_dir():
    src_str = str(src)
    if src_str not in sys.path:
        sys.path.insert(0, src_str)


@pytest.fixture
def bounded_oracle():
    """Unit Gaussian mean restricted to mu >= 0."""
    from poiscan.oracles.gaussian import GaussianMeanOracle

    return GaussianMeanOracle(width=1.0, poi_low=0.0, poi_high=10.0, seed=1337)


@pytest.fixture
def unbounded_oracle():
    from poiscan.oracles.gaussian import GaussianMeanOracle

    return GaussianMeanOracle(width=1.0, poi_low=-10.0, poi_high=10.0, seed=1337)
