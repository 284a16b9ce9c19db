"""
Module: io
Purpose: YAML config loading into validated scanner/solver/likelihood configs
Dependencies: yaml, typing
"""
from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple, Union, cast

import yaml

from poiscan.core.errors import InvalidArgumentError
from poiscan.core.models import LikelihoodConfig, ScanConfig, SolverConfig, validated

__all__ = ["load_config", "configs_from_mapping", "load_configs"]

_SECTIONS = ("scan", "solver", "likelihood")


def load_config(path: Union[str, Path]) -> Mapping[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise InvalidArgumentError(f"Config at {path} is not a mapping")
    return cast(Mapping[str, Any], data)


def _section(cfg: Mapping[str, Any], key: str) -> Dict[str, Any]:
    val = cfg.get(key) or {}
    if not isinstance(val, dict):
        raise InvalidArgumentError(f"config section '{key}' must be a mapping, got {type(val).__name__}")
    return dict(val)


def configs_from_mapping(
    cfg: Mapping[str, Any],
) -> Tuple[ScanConfig, SolverConfig, LikelihoodConfig]:
    """
    Build the three per-call configs from a mapping with optional top-level
    keys ``scan``, ``solver`` and ``likelihood``. Missing keys use defaults;
    unknown top-level keys are rejected.
    """
    unknown = sorted(set(cfg) - set(_SECTIONS))
    if unknown:
        raise InvalidArgumentError(f"unknown config section(s): {', '.join(unknown)}")
    return (
        validated(ScanConfig, **_section(cfg, "scan")),
        validated(SolverConfig, **_section(cfg, "solver")),
        validated(LikelihoodConfig, **_section(cfg, "likelihood")),
    )


def load_configs(
    path: Optional[Union[str, Path]],
) -> Tuple[ScanConfig, SolverConfig, LikelihoodConfig]:
    """``configs_from_mapping(load_config(path))``, or all defaults when ``path`` is None."""
    return configs_from_mapping(load_config(path) if path is not None else {})
