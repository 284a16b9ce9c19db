"""
Module: audit
Purpose: Tamper-evident JSONL chain for interval results (stable JSON, SHA-256 links)
Dependencies: hashlib, json, os, typing, datetime
"""

from __future__ import annotations

import hashlib
import json
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, Mapping, Optional, Tuple, Union

from poiscan.core.models import IntervalResult, ModelBase, SignificanceResult

__all__ = [
    "append_jsonl",
    "verify_chain",
    "tail_sha",
    "make_record",
]

PathLike = Union[str, Path]

# ---------------- Stable JSON & IO ----------------


def _stable_dumps(obj: Mapping[str, Any]) -> str:
    """Sorted keys, compact separators."""
    return json.dumps(obj, sort_keys=True, separators=(",", ":"))


def _iter_jsonl(path: PathLike) -> Iterator[Tuple[int, Dict[str, Any]]]:
    """Yield (1-based line number, parsed JSON) for each non-empty line."""
    with open(path, "r", encoding="utf-8") as f:
        for i, line in enumerate(f, start=1):
            line = line.strip()
            if line:
                yield i, json.loads(line)


def _record_sha(rec_no_sha: Mapping[str, Any]) -> str:
    return hashlib.sha256(_stable_dumps(rec_no_sha).encode("utf-8")).hexdigest()


# ---------------- Chain helpers ------------------


def tail_sha(path: PathLike) -> Optional[str]:
    """The ``sha256`` of the last record in ``path``, or None for a missing/empty file."""
    if not os.path.exists(path):
        return None
    last: Optional[str] = None
    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            if line.strip():
                last = line
    if last is None:
        return None
    try:
        val = json.loads(last).get("sha256")
    except (json.JSONDecodeError, AttributeError):
        return None
    return val if isinstance(val, str) else None


def append_jsonl(path: PathLike, rec: Mapping[str, Any]) -> str:
    """
    Append ``rec`` to the chain at ``path`` and return its digest.

    The written record gains ``prev_sha256`` (previous head or None) and
    ``sha256`` (hash of the record without that field).
    """
    parent = os.path.dirname(os.path.abspath(path))
    if parent:
        os.makedirs(parent, exist_ok=True)

    base: Dict[str, Any] = dict(rec)
    base["prev_sha256"] = tail_sha(path)
    sha = _record_sha(base)
    base["sha256"] = sha

    with open(path, "a", encoding="utf-8") as f:
        f.write(_stable_dumps(base) + "\n")
    return sha


def verify_chain(path: PathLike) -> int:
    """
    Check every digest and back-link in ``path``; returns the number of records.

    Raises FileNotFoundError for a missing file and RuntimeError on the first
    tampered or unlinked line.
    """
    if not os.path.exists(path):
        raise FileNotFoundError(str(path))

    prev: Optional[str] = None
    count = 0
    for i, obj in _iter_jsonl(path):
        expected = obj.get("sha256")
        if expected is None:
            raise RuntimeError(f"Line {i}: missing sha256")
        content = {k: v for k, v in obj.items() if k != "sha256"}
        got = _record_sha(content)
        if got != expected:
            raise RuntimeError(f"Line {i}: SHA mismatch (expected {expected}, got {got})")
        if content.get("prev_sha256") != prev:
            raise RuntimeError(f"Line {i}: chain break (prev_sha256 mismatch)")
        prev = expected
        count += 1
    return count


# ---------------- Record builder ----------------


def make_record(
    config: ModelBase,
    result: Union[IntervalResult, SignificanceResult],
    *,
    oracle: str,
    observation: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    """
    JSON-serializable summary of one computation, ready for ``append_jsonl``.

    The trace is summarized by its length; the full result is identified by
    its BLAKE3 fingerprint.
    """
    body: Dict[str, Any] = {
        "meta": {
            "schema": "limits/audit.v1",
            "ts": datetime.now(timezone.utc).replace(microsecond=0).isoformat(),
        },
        "oracle": oracle,
        "observation": dict(observation or {}),
        "config": config.model_dump(mode="json"),
        "config_hash": config.blake3_hash(),
        "result_hash": result.blake3_hash(),
    }
    if isinstance(result, IntervalResult):
        body["result"] = {
            "method": result.method.value,
            "lower": result.lower,
            "upper": result.upper,
            "iterations": result.iterations,
            "points": len(result.trace),
            "degenerate": result.degenerate,
        }
    else:
        body["result"] = {
            "p_value": result.p_value,
            "z": result.z,
            "q0": result.q0,
            "p_value_is_bound": result.p_value_is_bound,
        }
    return body
