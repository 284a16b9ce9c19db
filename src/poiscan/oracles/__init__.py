# src/poiscan/oracles/__init__.py
"""Oracle implementations."""

from .base import FitSummary, Oracle, finite_value, guarded_call, scoped_domain
from .gaussian import GaussianMeanOracle
from .registry import ORACLE_REGISTRY, create_oracle

__all__ = [
    "FitSummary",
    "Oracle",
    "GaussianMeanOracle",
    "ORACLE_REGISTRY",
    "create_oracle",
    "finite_value",
    "guarded_call",
    "scoped_domain",
]
