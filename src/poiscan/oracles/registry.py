# src/poiscan/oracles/registry.py
"""Oracle registry helpers."""

from __future__ import annotations

from typing import Any, Dict, Type

from .base import Oracle
from .gaussian import GaussianMeanOracle

ORACLE_REGISTRY: Dict[str, Type[Oracle]] = {
    "gaussian": GaussianMeanOracle,
}


def create_oracle(name: str, **kwargs: Any) -> Oracle:
    """Instantiate a registered oracle by name."""
    try:
        cls = ORACLE_REGISTRY[name]
    except KeyError:
        known = ", ".join(sorted(ORACLE_REGISTRY))
        raise KeyError(f"unknown oracle {name!r}; known: {known}") from None
    return cls(**kwargs)
