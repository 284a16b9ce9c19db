# tests/unit/core/test_logging.py

import io
import json
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

from poiscan.core import logging as pslogging
from poiscan.core.logging import ChainedJSONLLogger, LoggingError, Verbosity, audit_context


# ---------------------------------------------------------------------------
# Test helpers / fixtures
# ---------------------------------------------------------------------------


class DummyAudit:
    """In-memory stand-in for poiscan.limits.audit that fails verification on demand."""

    def __init__(self) -> None:
        self.records: List[Dict[str, Any]] = []
        self.verify_should_raise = False
        self.verify_calls = 0

    def append_jsonl(self, path, rec):
        self.records.append(rec)
        return f"sha{len(self.records)}"

    def tail_sha(self, path) -> Optional[str]:
        return f"sha{len(self.records)}" if self.records else None

    def verify_chain(self, path):
        self.verify_calls += 1
        if self.verify_should_raise:
            raise RuntimeError("dummy verify_chain failure")
        return len(self.records)


@pytest.fixture
def dummy_audit(monkeypatch) -> DummyAudit:
    dummy = DummyAudit()
    monkeypatch.setattr(pslogging, "audit", dummy)
    return dummy


@pytest.fixture
def log_path(tmp_path: Path) -> Path:
    return tmp_path / "runs" / "limits.jsonl"


# ---------------------------------------------------------------------------
# Verbosity
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "raw, expected",
    [(0, Verbosity.SILENT), ("4", Verbosity.DEBUG), ("info", Verbosity.INFO), ("WARNING", Verbosity.WARNING)],
)
def test_verbosity_parse(raw, expected):
    assert Verbosity.parse(raw) is expected


@pytest.mark.parametrize("raw", [5, -1, "loud", "", True, 1.5])
def test_verbosity_parse_rejects_unknown(raw):
    with pytest.raises(ValueError):
        Verbosity.parse(raw)


def test_verbosity_is_ordered():
    assert Verbosity.SILENT < Verbosity.ERROR < Verbosity.WARNING < Verbosity.INFO < Verbosity.DEBUG


# ---------------------------------------------------------------------------
# Text trace
# ---------------------------------------------------------------------------


def test_trace_respects_verbosity():
    out = io.StringIO()
    logger = ChainedJSONLLogger(verbosity="info", stream=out)
    logger.trace("visible", level="info")
    logger.trace("hidden", level="debug")
    logger.log({"k": 1}, level="warning", message="warn line")
    assert out.getvalue().splitlines() == ["visible", "warn line"]


def test_silent_logger_prints_nothing_and_writes_nothing(capsys):
    logger = ChainedJSONLLogger()
    assert logger.log({"event": "x"}, level="error", message="boom") is None
    assert capsys.readouterr().out == ""
    assert logger.tail() == []
    assert logger.current_head() is None


def test_invalid_level_raises():
    logger = ChainedJSONLLogger()
    with pytest.raises(LoggingError):
        logger.log({}, level="fatal")
    with pytest.raises(LoggingError):
        logger.trace("x", level="verbose")


# ---------------------------------------------------------------------------
# Chained records (real chain)
# ---------------------------------------------------------------------------


def test_records_are_chained_and_verifiable(log_path):
    logger = ChainedJSONLLogger(log_path, default_seed=7)
    h1 = logger.log({"event": "a", "path": Path("x/y"), "vals": (1, 2)})
    h2 = logger.log_event("b", fields={"n": 3})
    assert h1 != h2
    assert logger.current_head() == h2
    ok, err = logger.verify_chain_integrity()
    assert ok and err is None

    recs = logger.tail(5)
    assert len(recs) == 2
    assert recs[0]["payload"] == {"event": "a", "path": "x/y", "vals": [1, 2]}
    assert recs[0]["meta"]["seed"] == 7
    assert recs[1]["prev_sha256"] == h1
    # lockfile released
    assert not log_path.with_suffix(".jsonl.lock").exists()


def test_new_logger_resumes_existing_chain(log_path):
    h1 = ChainedJSONLLogger(log_path).log({"event": "first"})
    logger = ChainedJSONLLogger(log_path)
    assert logger.last_sha == h1
    logger.log({"event": "second"})
    assert logger.verify_chain_integrity() == (True, None)


def test_tamper_is_detected(log_path):
    logger = ChainedJSONLLogger(log_path)
    logger.log({"x": 1})
    logger.log({"x": 2})
    lines = log_path.read_text(encoding="utf-8").splitlines()
    obj = json.loads(lines[0])
    obj["payload"]["x"] = 99
    lines[0] = json.dumps(obj, sort_keys=True, separators=(",", ":"))
    log_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    ok, err = logger.verify_chain_integrity()
    assert not ok and "SHA mismatch" in err


def test_unserializable_payload_raises(log_path):
    logger = ChainedJSONLLogger(log_path, auto_sanitize=False)
    with pytest.raises(LoggingError):
        logger.log({"obj": object()})


# ---------------------------------------------------------------------------
# Delegation (dummy audit)
# ---------------------------------------------------------------------------


def test_verify_on_write_failure_raises(dummy_audit, log_path):
    logger = ChainedJSONLLogger(log_path, verify_on_write=True, enable_lock=False)
    logger.log({"ok": True})
    assert dummy_audit.verify_calls == 1
    dummy_audit.verify_should_raise = True
    with pytest.raises(LoggingError):
        logger.log({"ok": False})


def test_audit_context_success_and_error(dummy_audit, log_path):
    logger = ChainedJSONLLogger(log_path, enable_lock=False)
    with audit_context(logger, "solve", axis=[0, 1]) as op_id:
        assert len(op_id) == 16
    events = [r["payload"]["event"] for r in dummy_audit.records]
    assert events == ["operation_start", "operation_complete"]

    with pytest.raises(ValueError):
        with audit_context(logger, "solve"):
            raise ValueError("x" * 600)
    err = dummy_audit.records[-1]["payload"]
    assert err["event"] == "operation_error"
    assert err["error_type"] == "ValueError"
    assert len(err["error_message"]) == 512
    assert err["success"] is False


def test_failed_error_record_keeps_original_exception(dummy_audit, log_path):
    out = io.StringIO()
    logger = ChainedJSONLLogger(log_path, verbosity="warning", stream=out, verify_on_write=True, enable_lock=False)
    with pytest.raises(KeyError, match="oracle went away"):
        with audit_context(logger, "scan"):
            dummy_audit.verify_should_raise = True
            raise KeyError("oracle went away")
    assert "could not record error" in out.getvalue()


def test_append_os_error_becomes_logging_error(dummy_audit, log_path, monkeypatch):
    def broken_append(path, rec):
        raise PermissionError("read-only")

    monkeypatch.setattr(dummy_audit, "append_jsonl", broken_append)
    logger = ChainedJSONLLogger(log_path, enable_lock=False)
    with pytest.raises(LoggingError):
        logger.log({"x": 1})
