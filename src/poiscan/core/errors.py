# src/poiscan/core/errors.py
"""
Module: errors
Purpose: Error kinds raised by the interval scanner, the limit solver and their helpers

Notes
-----
- ``InvalidArgumentError`` and ``CapabilityNotImplemented`` are raised before any
  oracle evaluation takes place.
- ``OracleEvaluationFailed`` aborts the whole call; no partial result is returned
  and nothing is retried.
- Each kind also derives from the matching builtin (ValueError, RuntimeError,
  NotImplementedError) so callers written against builtins keep working.
"""

from __future__ import annotations

__all__ = [
    "PoiScanError",
    "InvalidArgumentError",
    "OracleEvaluationFailed",
    "CapabilityNotImplemented",
    "InternalConsistencyError",
]


class PoiScanError(Exception):
    """Base class for all poiscan errors."""


class InvalidArgumentError(PoiScanError, ValueError):
    """Malformed axis bounds, confidence level outside (0,1), bad toy/point counts."""


class OracleEvaluationFailed(PoiScanError, RuntimeError):
    """The oracle raised, did not converge, or returned an inconsistent value."""

    def __init__(self, message: str, *, poi_value: float | None = None) -> None:
        super().__init__(message)
        self.poi_value = poi_value


class CapabilityNotImplemented(PoiScanError, NotImplementedError):
    """A requested evaluation mode exists in the API but is intentionally not supported."""


class InternalConsistencyError(PoiScanError, RuntimeError):
    """A derived quantity violated an invariant (e.g. non-positive sigma, no bracket found)."""
