# src/poiscan/core/logging.py
"""
Module: logging
Purpose: Verbosity-gated progress trace plus an optional tamper-evident JSONL record chain
Dependencies: json, time, pathlib, os, socket, subprocess, hashlib; delegates hashing/verification to poiscan.limits.audit

Notes
-----
- One logger object serves two sinks:
    * a human-readable trace printed to ``stream`` when the record's level is
      at or below the configured ``Verbosity`` (0 silent ... 4 debug);
    * an append-only JSONL chain (``prev_sha256``/``sha256`` links owned by
      ``poiscan.limits.audit``) when ``path`` is given.
- Loggers are passed explicitly into each computation; nothing is global.
  A silent, file-less logger is the default and costs nothing.
- Nothing in this module influences numerical control flow: records are
  written after the fact and a failed write surfaces as ``LoggingError``.
- Deterministic envelope with unix and ISO-8601 timestamps (UTC), host, pid,
  git SHA, session id and optional seed.
- Best-effort inter-process lockfile around appends, thread-safe via RLock.

Schema
------
Each chained record is written with an envelope:

{
  "meta": {
    "schema": "core/logging.v1",
    "ts_unix": <float>,
    "ts_iso": "YYYY-MM-DDTHH:MM:SS.sssZ",
    "host": <str>,
    "pid": <int>,
    "git_sha": <str|null>,
    "session_id": <str>,
    "seed": <int|null>,
    "level": "debug|info|warning|error",
    "extra": { ... }
  },
  "payload": { ... }
  # chain fields are injected by poiscan.limits.audit:
  # "prev_sha256": "...",
  # "sha256": "..."
}
"""

from __future__ import annotations

import hashlib
import json
import os
import socket
import subprocess
import sys
import time
from contextlib import contextmanager
from dataclasses import asdict, is_dataclass
from enum import IntEnum
from pathlib import Path
from threading import RLock
from typing import IO, Any, Dict, Iterator, List, Optional, Tuple, Union

from poiscan.limits import audit

__all__ = [
    "Verbosity",
    "ChainedJSONLLogger",
    "LoggingError",
    "audit_context",
    "resolve_logger",
]

SCHEMA_ID_DEFAULT = "core/logging.v1"
_LOCKFILE_SUFFIX = ".lock"

# A stable per-process session id (pid + monotonic start hashed)
_session_start_perf = time.perf_counter()
_session_id = hashlib.sha256(
    f"{os.getpid()}:{_session_start_perf:.9f}".encode("utf-8")
).hexdigest()[:16]


class LoggingError(RuntimeError):
    """Raised for record-chain failures (serialization, locking, verification)."""


class Verbosity(IntEnum):
    """Ordered trace levels; a record prints when its level <= the logger's verbosity."""

    SILENT = 0
    ERROR = 1
    WARNING = 2
    INFO = 3
    DEBUG = 4

    @classmethod
    def parse(cls, value: Union[int, str, "Verbosity"]) -> "Verbosity":
        """Accept 0..4, their decimal strings, or level names (case-insensitive)."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            text = value.strip()
            if text.lstrip("-").isdigit():
                value = int(text)
            else:
                try:
                    return cls[text.upper()]
                except KeyError:
                    raise ValueError(f"unknown verbosity {value!r}") from None
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError(f"unknown verbosity {value!r}")
        try:
            return cls(value)
        except ValueError:
            raise ValueError(f"verbosity must be in 0..{int(cls.DEBUG)}, got {value}") from None


_LEVELS: Dict[str, Verbosity] = {
    "error": Verbosity.ERROR,
    "warning": Verbosity.WARNING,
    "info": Verbosity.INFO,
    "debug": Verbosity.DEBUG,
}


def _now_unix() -> float:
    return float(time.time())


def _now_iso(ts: Optional[float] = None) -> str:
    """ISO-8601 in UTC with 'Z' suffix; millisecond precision."""
    if ts is None:
        ts = _now_unix()
    tm = time.gmtime(ts)
    ms = int((ts - int(ts)) * 1000)
    return f"{tm.tm_year:04d}-{tm.tm_mon:02d}-{tm.tm_mday:02d}T{tm.tm_hour:02d}:{tm.tm_min:02d}:{tm.tm_sec:02d}.{ms:03d}Z"


_git_sha_cache: Optional[str] = None


def _detect_git_sha(cwd: Optional[Path] = None) -> Optional[str]:
    """Resolve git SHA once (env `GIT_SHA` wins), else `git rev-parse --short=12 HEAD`."""
    global _git_sha_cache
    if _git_sha_cache is not None:
        return _git_sha_cache
    env_sha = os.getenv("GIT_SHA")
    if env_sha:
        _git_sha_cache = env_sha.strip()
        return _git_sha_cache
    try:
        out = subprocess.check_output(
            ["git", "rev-parse", "--short=12", "HEAD"],
            cwd=str(cwd or Path.cwd()),
            stderr=subprocess.DEVNULL,
            text=True,
            timeout=1.0,
        )
        _git_sha_cache = out.strip() or None
    except (OSError, subprocess.SubprocessError):
        _git_sha_cache = None
    return _git_sha_cache


def _coerce_json_safe(obj: Any) -> Any:
    """
    Coercion of common non-JSON types:
      - Path -> str
      - set/tuple -> list
      - bytes -> hex str
      - dataclass -> dict
      - pydantic models -> model_dump(mode="json")
      - numpy scalars/arrays -> Python numbers/lists
    """
    if isinstance(obj, Path):
        return str(obj)
    if isinstance(obj, (set, frozenset, tuple)):
        return list(obj)
    if isinstance(obj, (bytes, bytearray)):
        return obj.hex()
    if is_dataclass(obj) and not isinstance(obj, type):
        return asdict(obj)
    if hasattr(obj, "model_dump"):
        return obj.model_dump(mode="json")
    if hasattr(obj, "tolist"):
        return obj.tolist()
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def _acquire_lock(lockfile: Path, stale_seconds: float = 60.0, timeout: float = 5.0, retry_delay: float = 0.05) -> bool:
    """
    Best-effort inter-process lock via atomic create with timeout and retries.
    A lock older than ``stale_seconds`` is broken. Returns False on timeout.
    """
    start = time.time()
    while time.time() - start < timeout:
        try:
            if lockfile.exists() and _now_unix() - lockfile.stat().st_mtime > stale_seconds:
                lockfile.unlink(missing_ok=True)
            fd = os.open(str(lockfile), os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
            os.close(fd)
            return True
        except FileExistsError:
            time.sleep(retry_delay)
        except OSError:
            return False
    return False


def _release_lock(lockfile: Path) -> None:
    try:
        lockfile.unlink(missing_ok=True)
    except OSError:
        pass


class ChainedJSONLLogger:
    """
    Trace printer and (optionally) chained JSONL recorder.

        logger = ChainedJSONLLogger("runs/limits.jsonl", verbosity=Verbosity.INFO)
        logger.log({"event": "scan"}, level="info", message="scan [0 ... 4] with 11 points")
        ok, err = logger.verify_chain_integrity()

    Parameters
    ----------
    path : str | Path | None
        JSONL file for the record chain. None disables file output.
    verbosity : Verbosity | int | str
        Trace threshold for messages printed to ``stream``.
    stream : IO[str] | None
        Destination of the text trace (default: ``sys.stdout`` at call time).
    default_seed : Optional[int]
        Seed to record in ``meta.seed`` if not provided per call.
    enable_lock : bool
        Create ``<path>.lock`` around appends.
    verify_on_write : bool
        Verify the whole chain after each append and raise on failure.
    auto_sanitize : bool
        Coerce common non-JSON types in payloads and meta extras.
    """

    def __init__(
        self,
        path: Optional[Union[str, Path]] = None,
        verbosity: Union[Verbosity, int, str] = Verbosity.SILENT,
        *,
        stream: Optional[IO[str]] = None,
        default_seed: Optional[int] = None,
        enable_lock: bool = True,
        verify_on_write: bool = False,
        auto_sanitize: bool = True,
        schema_id: str = SCHEMA_ID_DEFAULT,
        lock_timeout: float = 5.0,
    ) -> None:
        self.verbosity = Verbosity.parse(verbosity)
        self.stream = stream
        self.default_seed = default_seed
        self.verify_on_write = verify_on_write
        self.auto_sanitize = auto_sanitize
        self.schema_id = schema_id
        self.lock_timeout = lock_timeout

        self.path: Optional[Path] = Path(path) if path is not None else None
        self.lockfile: Optional[Path] = None
        self.last_sha: Optional[str] = None
        self._git_sha: Optional[str] = None
        if self.path is not None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            if enable_lock:
                self.lockfile = self.path.with_suffix(self.path.suffix + _LOCKFILE_SUFFIX)
            self.last_sha = audit.tail_sha(self.path)
            self._git_sha = _detect_git_sha(self.path.parent)

        self._host = socket.gethostname()
        self._pid = os.getpid()
        self._thread_lock = RLock()

    # ------------------------------------------------------------------ helpers

    def enabled(self, level: str) -> bool:
        """True if a message at ``level`` would be printed."""
        return _LEVELS[level] <= self.verbosity

    def _emit(self, level: str, message: str) -> None:
        out = self.stream if self.stream is not None else sys.stdout
        with self._thread_lock:
            print(message, file=out)

    def _dumps(self, obj: Any) -> str:
        try:
            if self.auto_sanitize:
                return json.dumps(obj, default=_coerce_json_safe, sort_keys=True, separators=(",", ":"))
            return json.dumps(obj, sort_keys=True, separators=(",", ":"))
        except (TypeError, ValueError) as e:
            raise LoggingError(f"record is not JSON serializable: {e}") from e

    def _make_record(
        self,
        payload: Dict[str, Any],
        level: str,
        seed: Optional[int],
        extra_meta: Optional[Dict[str, Any]],
    ) -> Dict[str, Any]:
        ts = _now_unix()
        rec = {
            "meta": {
                "schema": self.schema_id,
                "ts_unix": ts,
                "ts_iso": _now_iso(ts),
                "host": self._host,
                "pid": self._pid,
                "git_sha": self._git_sha,
                "session_id": _session_id,
                "seed": seed if seed is not None else self.default_seed,
                "level": level,
                "extra": extra_meta or {},
            },
            "payload": payload,
        }
        # round-trip through canonical JSON so the chain hashes plain types only
        return json.loads(self._dumps(rec))

    # ------------------------------------------------------------------ public API

    def log(
        self,
        payload: Dict[str, Any],
        *,
        level: str = "info",
        message: Optional[str] = None,
        seed: Optional[int] = None,
        extra_meta: Optional[Dict[str, Any]] = None,
    ) -> Optional[str]:
        """
        Print ``message`` (if the level passes) and append ``payload`` to the chain.

        Returns
        -------
        Optional[str]
            The new chain head, or None when the logger has no file.

        Raises
        ------
        LoggingError
            On invalid level, serialization failure, lock timeout or a failed
            post-append verification.
        """
        if level not in _LEVELS:
            raise LoggingError(f"Invalid log level: {level}")
        if message is not None and self.enabled(level):
            self._emit(level, message)
        if self.path is None:
            return None

        with self._thread_lock:
            rec = self._make_record(payload, level, seed, extra_meta)
            locked = False
            if self.lockfile is not None:
                locked = _acquire_lock(self.lockfile, timeout=self.lock_timeout)
                if not locked:
                    raise LoggingError(f"Could not acquire record lock within {self.lock_timeout}s: {self.lockfile}")
            try:
                try:
                    sha = audit.append_jsonl(self.path, rec)
                except OSError as e:
                    raise LoggingError(f"Could not append to {self.path}: {e}") from e
                self.last_sha = sha
                if self.verify_on_write:
                    try:
                        audit.verify_chain(self.path)
                    except (RuntimeError, ValueError, OSError) as e:
                        raise LoggingError(f"Record chain verification failed post-append: {e}") from e
                return sha
            finally:
                if locked:
                    _release_lock(self.lockfile)  # type: ignore[arg-type]

    def log_event(
        self,
        event: str,
        *,
        fields: Optional[Dict[str, Any]] = None,
        level: str = "info",
        message: Optional[str] = None,
        seed: Optional[int] = None,
    ) -> Optional[str]:
        """Convenience: wrap an 'event' with arbitrary fields into payload."""
        payload: Dict[str, Any] = {"event": event}
        if fields:
            payload.update(fields)
        return self.log(payload, level=level, message=message, seed=seed)

    def trace(self, message: str, *, level: str = "info") -> None:
        """Text-only trace line; never written to the chain."""
        if level not in _LEVELS:
            raise LoggingError(f"Invalid log level: {level}")
        if self.enabled(level):
            self._emit(level, message)

    def verify_chain_integrity(self) -> Tuple[bool, Optional[str]]:
        """(True, None) on success, (False, reason) on failure or when there is no file."""
        if self.path is None:
            return False, "logger has no record file"
        try:
            audit.verify_chain(self.path)
            return True, None
        except (RuntimeError, ValueError, OSError) as e:
            return False, str(e)

    def current_head(self) -> Optional[str]:
        if self.path is None:
            return None
        self.last_sha = audit.tail_sha(self.path)
        return self.last_sha

    def tail(self, n: int = 10) -> List[Dict[str, Any]]:
        """Last ``n`` records as dicts; corrupt lines are skipped."""
        if self.path is None:
            return []
        n = max(1, int(n))
        try:
            with self.path.open("r", encoding="utf-8") as f:
                lines = f.readlines()[-n:]
        except FileNotFoundError:
            return []
        out: List[Dict[str, Any]] = []
        for line in lines:
            line = line.strip()
            if not line:
                continue
            try:
                out.append(json.loads(line))
            except json.JSONDecodeError:
                continue
        return out


def resolve_logger(logger: Optional[ChainedJSONLLogger]) -> ChainedJSONLLogger:
    """``logger`` itself, or a silent file-less logger."""
    return logger if logger is not None else ChainedJSONLLogger()


@contextmanager
def audit_context(
    logger: ChainedJSONLLogger,
    operation: str,
    **metadata: Any,
) -> Iterator[str]:
    """
    Bracket a computation with start/complete/error records.

    - Emits 'operation_start' with free-form metadata.
    - On normal exit emits 'operation_complete' with wall/perf durations.
    - On exception emits 'operation_error' (type, truncated message, durations)
      and re-raises the original exception.

    The yielded operation_id is a short hash of (operation, start_ts, pid, session).
    """
    start_wall = _now_unix()
    start_perf = time.perf_counter()
    op_id = hashlib.sha256(
        f"{operation}:{start_wall:.6f}:{os.getpid()}:{_session_id}".encode("utf-8")
    ).hexdigest()[:16]

    logger.log_event(
        "operation_start",
        fields={"operation": operation, "operation_id": op_id, "meta": metadata},
        level="debug",
        message=f"{operation}: start",
    )
    try:
        yield op_id
    except Exception as e:
        msg = str(e)
        if len(msg) > 512:
            msg = msg[:509] + "..."
        try:
            logger.log_event(
                "operation_error",
                fields={
                    "operation": operation,
                    "operation_id": op_id,
                    "error_type": e.__class__.__name__,
                    "error_message": msg,
                    "duration_wall_s": round(_now_unix() - start_wall, 6),
                    "duration_perf_s": round(time.perf_counter() - start_perf, 6),
                    "success": False,
                },
                level="error",
                message=f"{operation}: {e.__class__.__name__}: {msg}",
            )
        except LoggingError as log_err:
            # the computation's own error wins
            logger.trace(f"{operation}: could not record error: {log_err}", level="warning")
        raise e
    logger.log_event(
        "operation_complete",
        fields={
            "operation": operation,
            "operation_id": op_id,
            "duration_wall_s": round(_now_unix() - start_wall, 6),
            "duration_perf_s": round(time.perf_counter() - start_perf, 6),
            "success": True,
        },
        level="debug",
        message=f"{operation}: done",
    )
