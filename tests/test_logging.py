"""Failure-mode tests for the structured logging subsystem."""
from __future__ import annotations

import json
from pathlib import Path

import pytest

from dbdoctor.logging import OPERATIONS_LOG_NAME, StructuredLogger


def _records(log_dir: Path) -> list[dict[str, object]]:
    lines = (log_dir / OPERATIONS_LOG_NAME).read_text(encoding="utf-8").splitlines()
    return [json.loads(line) for line in lines]


def test_structured_logger_writes_operation_record(tmp_path: Path) -> None:
    """Completed operations are appended as JSON lines."""
    log_dir = tmp_path / "logs"
    logger = StructuredLogger(log_dir)

    with logger.operation("check", args={"json": True}, target={"kind": "database"}) as op:
        op.add_step("descriptor", status="success", detail="postgresql://h/db")
        op.warning("degraded", warnings=["environment"], context={"path": tmp_path})

    (record,) = _records(log_dir)
    assert record["command"] == "check"
    assert record["args"] == {"json": True}
    assert record["target"] == {"kind": "database"}
    assert record["steps"] == [
        {"id": "descriptor", "status": "success", "detail": "postgresql://h/db"}
    ]
    assert record["result"] == {
        "status": "warning",
        "message": "degraded",
        "warnings": ["environment"],
        "context": {"path": str(tmp_path)},
    }
    assert isinstance(record["duration_ms"], int)


def test_error_defaults_errors_to_message(tmp_path: Path) -> None:
    """Errors without explicit detail list the message itself."""
    logger = StructuredLogger(tmp_path)

    with logger.operation("check") as op:
        op.error("unhealthy", rc=3)

    (record,) = _records(tmp_path)
    assert record["result"] == {
        "status": "error",
        "message": "unhealthy",
        "errors": ["unhealthy"],
        "rc": 3,
    }


def test_unhandled_exception_is_recorded_and_reraised(tmp_path: Path) -> None:
    """Exceptions escaping an operation are logged before propagating."""
    logger = StructuredLogger(tmp_path)

    with pytest.raises(RuntimeError):
        with logger.operation("check"):
            raise RuntimeError("boom")

    (record,) = _records(tmp_path)
    result = record["result"]
    assert isinstance(result, dict)
    assert result["status"] == "error"
    assert result["message"] == "Unhandled error: boom"


def test_structured_logger_disabled_without_directory() -> None:
    """Passing no directory disables logging entirely."""
    logger = StructuredLogger(None)

    assert logger.enabled is False
    with logger.operation("check") as op:
        op.success("done")


def test_structured_logger_disables_when_directory_unavailable(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Logger gracefully disables itself when log directory cannot be created."""
    log_dir = tmp_path / "logs"

    original_mkdir = Path.mkdir

    def fail_mkdir(self: Path, *args: object, **kwargs: object) -> None:
        if self == log_dir:
            raise PermissionError("no access")
        original_mkdir(self, *args, **kwargs)

    monkeypatch.setattr(Path, "mkdir", fail_mkdir)

    logger = StructuredLogger(log_dir)
    assert logger._enabled is False  # type: ignore[attr-defined]

    with logger.operation("check", args={"json": False}) as op:
        op.success("done")


def test_structured_logger_disables_after_write_failure(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Write failures mark the logger disabled so subsequent writes are skipped."""
    logger = StructuredLogger(tmp_path / "logs")
    operations_path = logger._operations_log_path  # type: ignore[attr-defined]

    original_open = Path.open

    def fail_once(self: Path, *args: object, **kwargs: object) -> object:
        if self == operations_path:
            raise OSError("disk full")
        return original_open(self, *args, **kwargs)

    monkeypatch.setattr(Path, "open", fail_once)

    with logger.operation("check") as op:
        op.success("done")

    assert logger._enabled is False  # type: ignore[attr-defined]

    # Subsequent operations should not raise even though logger is disabled.
    with logger.operation("check-again") as op:
        op.success("done")
