"""
Module: core.models (data layer for poiscan)
Purpose: Strongly-typed, immutable and hashable data models shared by the
         interval scanner, the upper-limit solver and their front ends.

Schema versions:
  - 1.0: scan points, intervals, per-call configs
  - 1.1: residual trace for the bisection solver, degenerate-interval flag,
         significance results, likelihood-interval config

Design notes
------------
- Pydantic BaseModel (v2) for runtime validation and serialization.
- Frozen instances: a result is constructed once per call and never mutated.
- BLAKE3 fingerprints over canonical JSON so configs and results can be
  recorded in the audit chain and compared across runs.
- Non-finite values are rejected in every numeric field that reaches a
  caller; p-values must lie in [0, 1].
- No timestamps live on the models themselves. Two runs with the same
  configuration and a deterministic oracle therefore produce equal results
  (and equal fingerprints).

Dependencies:
- Required: pydantic >= 2.0, blake3
- Optional: numpy (for ``IntervalResult.trace_arrays``)
"""

from __future__ import annotations

import json
import math
from enum import Enum
from functools import cached_property
from typing import Any, ClassVar, Dict, Optional, Sequence, Tuple, Type, TypeVar

import blake3
from typing_extensions import TypeAlias

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from poiscan.core.errors import InvalidArgumentError

try:  # numpy (optional)
    import numpy as np  # type: ignore[import]

    NUMPY_AVAILABLE = True
except ImportError:  # pragma: no cover
    NUMPY_AVAILABLE = False
    np = None  # type: ignore[assignment]

__all__ = [
    "ModelBase",
    "IntervalMethod",
    "Executor",
    "ScanPoint",
    "ScanRange",
    "IntervalResult",
    "SignificanceResult",
    "ScanConfig",
    "SolverConfig",
    "LikelihoodConfig",
    "validated",
    "resolve_config",
]

# ---------------------------------------------------------------------------
# Global schema & type aliases
# ---------------------------------------------------------------------------
_SCHEMA_VERSION: str = "1.1"

JsonDict: TypeAlias = Dict[str, Any]
TModel = TypeVar("TModel", bound="ModelBase")


# ---------------------------------------------------------------------------
# Hashing helpers
# ---------------------------------------------------------------------------
def _hash_json(obj: Any, *, salt: Optional[bytes] = None) -> str:
    """Canonical JSON -> BLAKE3 hex digest."""
    data = json.dumps(obj, sort_keys=True, separators=(",", ":"))
    hasher = blake3.blake3()
    if salt is not None:
        hasher.update(salt)
    hasher.update(data.encode("utf-8"))
    return hasher.hexdigest()


def _finite(name: str, v: Any) -> float:
    try:
        f = float(v)
    except (TypeError, ValueError):
        raise ValueError(f"{name} must be numeric")
    if math.isnan(f) or math.isinf(f):
        raise ValueError(f"{name} cannot be NaN or infinite")
    return f


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class IntervalMethod(str, Enum):
    """Construction that produced an IntervalResult."""
    FELDMAN_COUSINS = "feldman_cousins"
    ASYMPTOTIC_CLS = "asymptotic_cls"
    ASYMPTOTIC_CLSB = "asymptotic_clsb"
    PROFILE_LIKELIHOOD = "profile_likelihood"


class Executor(str, Enum):
    """Worker-pool backend for per-point oracle evaluations."""
    THREAD = "thread"
    PROCESS = "process"


# ---------------------------------------------------------------------------
# Base Pydantic model
# ---------------------------------------------------------------------------
class ModelBase(BaseModel):
    """
    Shared BaseModel config for all poiscan models.

    Features:
    - Frozen/immutable instances (no in-place mutation).
    - Extra fields ignored on decode (backwards-compatible).
    - schema_version attached to every instance.
    - Stable BLAKE3 hashing, with per-class hash-exclusion sets.
    """

    schema_version: str = Field(default=_SCHEMA_VERSION, frozen=True)

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        validate_assignment=False,
        populate_by_name=True,
        use_enum_values=False,
    )

    # Per-class set of fields to exclude from hashes (e.g. derived fields).
    HASH_EXCLUDE_FIELDS: ClassVar[set[str]] = set()

    def __init__(self, **data: Any) -> None:
        try:
            super().__init__(**data)
        except ValidationError as exc:
            raise InvalidArgumentError(_describe_errors(type(self), exc)) from exc

    @cached_property
    def _default_hash(self) -> str:
        data = self.model_dump(mode="json", exclude=self.__class__.HASH_EXCLUDE_FIELDS)
        return _hash_json(data)

    def blake3_hash(
        self,
        *,
        exclude: Optional[Sequence[str]] = None,
        use_cache: bool = True,
        salt: Optional[bytes] = None,
    ) -> str:
        """
        Stable BLAKE3 hash of the JSON representation of the model.

        Parameters
        ----------
        exclude:
            Optional field names to drop before hashing. Merged with the
            model's HASH_EXCLUDE_FIELDS.
        use_cache:
            Reuse the cached full-object hash when no exclude/salt is given.
        salt:
            Optional bytes to prepend into the hash state.
        """
        if exclude is None and use_cache and salt is None:
            return self._default_hash

        exclude_set = set(exclude or [])
        exclude_set |= self.__class__.HASH_EXCLUDE_FIELDS
        data = self.model_dump(mode="json", exclude=exclude_set)
        return _hash_json(data, salt=salt)


def _describe_errors(model_cls: Type[BaseModel], exc: ValidationError) -> str:
    errors = "; ".join(
        f"{'.'.join(str(p) for p in err['loc']) or model_cls.__name__}: {err['msg']}"
        for err in exc.errors()
    )
    return f"invalid {model_cls.__name__}: {errors}"


def validated(model_cls: Type[TModel], /, **values: Any) -> TModel:
    """Build ``model_cls`` from keyword values, reporting failures as InvalidArgumentError."""
    try:
        return model_cls.model_validate(values)
    except ValidationError as exc:
        raise InvalidArgumentError(_describe_errors(model_cls, exc)) from exc


def resolve_config(
    model_cls: Type[TModel], config: Optional[TModel], overrides: Dict[str, Any]
) -> TModel:
    """``config`` (or the defaults) with keyword ``overrides`` applied and re-validated."""
    if config is None:
        return validated(model_cls, **overrides)
    if not isinstance(config, model_cls):
        raise InvalidArgumentError(
            f"expected {model_cls.__name__}, got {type(config).__name__}"
        )
    if not overrides:
        return config
    merged = config.model_dump()
    merged.update(overrides)
    return validated(model_cls, **merged)


# ---------------------------------------------------------------------------
# Scan points and ranges
# ---------------------------------------------------------------------------
class ScanPoint(ModelBase):
    """
    One oracle evaluation on the POI axis.

    ``p_value_b`` is only present when a CLs-style ratio correction is in use
    (or when the oracle reports a background-only p-value from toys).
    """

    HASH_EXCLUDE_FIELDS: ClassVar[set[str]] = {"schema_version"}

    poi_value: float
    p_value_sb: float
    p_value_b: Optional[float] = None

    @field_validator("poi_value", mode="before")
    @classmethod
    def _validate_poi(cls, v: Any) -> float:
        return _finite("poi_value", v)

    @field_validator("p_value_sb", "p_value_b", mode="before")
    @classmethod
    def _validate_p(cls, v: Any) -> Optional[float]:
        if v is None:
            return None
        f = _finite("p-value", v)
        if not (0.0 <= f <= 1.0):
            raise ValueError(f"p-value must be in [0,1], got {f}")
        return f

    @property
    def cls_ratio(self) -> float:
        """p_sb / p_b, or p_sb when no background p-value is attached."""
        if self.p_value_b is None:
            return self.p_value_sb
        return self.p_value_sb / self.p_value_b


class ScanRange(ModelBase):
    """Sub-interval of the POI axis, ``low < high``."""

    low: float
    high: float

    @field_validator("low", "high", mode="before")
    @classmethod
    def _validate_bound(cls, v: Any) -> float:
        return _finite("range bound", v)

    @model_validator(mode="after")
    def _check_order(self) -> "ScanRange":
        if not self.low < self.high:
            raise ValueError(f"range requires low < high, got [{self.low}, {self.high}]")
        return self

    @property
    def width(self) -> float:
        return self.high - self.low

    def contains(self, x: float) -> bool:
        return self.low <= x <= self.high


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------
class IntervalResult(ModelBase):
    """
    Final output of a scan, a limit search or a likelihood interval.

    Fields
    ------
    lower, upper:
        Interval bounds, ``lower <= upper``. For an upper limit ``lower`` is the
        clamped axis low.
    trace:
        Every point evaluated during the call, ordered by POI value.
    iterations:
        Refinement iterations (scanner) or bisection steps (solver).
    confidence_level:
        Target confidence level in (0, 1).
    method:
        Construction that produced the result.
    axis:
        Clamped axis that was searched.
    degenerate:
        True when the discovered bounds coincided and the lower bound was
        replaced by the clamped axis low.
    residuals:
        Bisection only: relative residual ``|alpha - ratio| / alpha`` per step,
        in evaluation order.
    """

    lower: float
    upper: float
    trace: Tuple[ScanPoint, ...] = ()
    iterations: int = Field(default=0, ge=0)
    confidence_level: float = Field(gt=0.0, lt=1.0)
    method: IntervalMethod
    axis: Optional[ScanRange] = None
    degenerate: bool = False
    residuals: Tuple[float, ...] = ()

    @field_validator("lower", "upper", mode="before")
    @classmethod
    def _validate_bound(cls, v: Any) -> float:
        return _finite("interval bound", v)

    @field_validator("trace", mode="before")
    @classmethod
    def _normalize_trace(cls, v: Any) -> Tuple[ScanPoint, ...]:
        if v is None:
            return ()
        pts = [p if isinstance(p, ScanPoint) else ScanPoint.model_validate(p) for p in v]
        return tuple(sorted(pts, key=lambda p: p.poi_value))

    @model_validator(mode="after")
    def _check_bounds(self) -> "IntervalResult":
        if self.lower > self.upper:
            raise ValueError(f"interval requires lower <= upper, got [{self.lower}, {self.upper}]")
        return self

    @property
    def width(self) -> float:
        return self.upper - self.lower

    @property
    def upper_limit(self) -> float:
        return self.upper

    def trace_arrays(self) -> Tuple["np.ndarray", "np.ndarray"]:
        """(poi_values, p_values_sb) as float arrays, for plotting."""
        if not NUMPY_AVAILABLE:  # pragma: no cover
            raise ImportError("numpy is required for trace_arrays()")
        x = np.array([p.poi_value for p in self.trace], dtype=float)
        y = np.array([p.p_value_sb for p in self.trace], dtype=float)
        return x, y


class SignificanceResult(ModelBase):
    """Discovery p-value and its one-sided Gaussian significance."""

    p_value: float = Field(ge=0.0, le=1.0)
    z: float
    q0: float = Field(ge=0.0)
    toys: int = -1
    p_value_is_bound: bool = False

    @field_validator("z", "q0", mode="before")
    @classmethod
    def _validate_finite(cls, v: Any) -> float:
        return _finite("significance field", v)


# ---------------------------------------------------------------------------
# Per-call configuration
# ---------------------------------------------------------------------------
class _AxisConfig(ModelBase):
    """Shared axis and confidence-level validation."""

    confidence_level: float = Field(default=0.95, gt=0.0, lt=1.0)
    low: float = -1e6
    high: float = 1e6

    @field_validator("low", "high", mode="before")
    @classmethod
    def _validate_axis(cls, v: Any) -> float:
        return _finite("axis bound", v)

    @model_validator(mode="after")
    def _check_axis(self) -> "_AxisConfig":
        if not self.low < self.high:
            raise ValueError(f"axis bounds require low < high, got low={self.low}, high={self.high}")
        return self

    @property
    def target_p_value(self) -> float:
        return 1.0 - self.confidence_level


class ScanConfig(_AxisConfig):
    """Feldman-Cousins interval construction (adaptive or fixed grid)."""

    confidence_level: float = Field(default=0.683, gt=0.0, lt=1.0)
    points_per_iteration: int = Field(default=11, ge=2)
    max_iterations: int = Field(default=3, ge=1)
    toys_per_point: int = Field(default=10000, gt=0)
    adaptive: bool = True
    step: float = Field(default=0.05, gt=0.0)
    max_points: Optional[int] = Field(default=None, gt=0)
    max_workers: int = Field(default=1, ge=1)
    executor: Executor = Executor.THREAD

    @model_validator(mode="after")
    def _check_resolution(self) -> "ScanConfig":
        if not self.toys_per_point > 1.0 / (1.0 - self.confidence_level):
            raise ValueError(
                f"toys_per_point={self.toys_per_point} cannot resolve p-value "
                f"{1.0 - self.confidence_level:.3g}; need more than {1.0 / (1.0 - self.confidence_level):.1f}"
            )
        if self.adaptive and self.points_per_iteration < 4:
            raise ValueError("adaptive scans need points_per_iteration >= 4")
        return self


class SolverConfig(_AxisConfig):
    """Asymptotic CLs / CL(s+b) upper-limit search by bisection."""

    precision: float = Field(default=0.01, gt=0.0)
    max_iterations: int = Field(default=20, ge=1)
    use_cls: bool = True
    toys: int = -1

    @property
    def asymptotic(self) -> bool:
        return self.toys <= 0


class LikelihoodConfig(ModelBase):
    """Profile-likelihood interval settings."""

    confidence_level: float = Field(default=0.683, gt=0.0, lt=1.0)
    xtol: float = Field(default=1e-8, gt=0.0)
    maxiter: int = Field(default=200, ge=1)
