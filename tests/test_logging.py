"""Tests for the structured logging subsystem."""
from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest

from envctl.logging import HUMAN_LOG_NAME, OPERATIONS_LOG_NAME, StructuredLogger, get_logger


def _records(log_dir: Path) -> list[dict[str, object]]:
    lines = (log_dir / OPERATIONS_LOG_NAME).read_text(encoding="utf-8").splitlines()
    return [json.loads(line) for line in lines]


def test_get_logger_joins_envctl_hierarchy() -> None:
    """Module loggers hang off the ``envctl`` root."""
    assert get_logger("envctl.storage").name == "envctl.storage"
    assert get_logger("plugins.extra").name == "envctl.plugins.extra"
    assert get_logger("envctl").name == "envctl"


def test_operation_record_contains_steps_and_result(tmp_path: Path) -> None:
    """Each operation writes one JSON line with steps and outcome."""
    log_dir = tmp_path / "logs"
    logger = StructuredLogger(log_dir)

    with logger.operation("bootstrap", args={"env": "sample"}, target={"kind": "environment"}) as op:
        op.add_step("tools.find", detail="1.16.0-precise-amd64")
        op.success("done", changed=1)

    (record,) = _records(log_dir)
    assert record["command"] == "bootstrap"
    assert record["args"] == {"env": "sample"}
    assert record["target"] == {"kind": "environment"}
    assert [step["name"] for step in record["steps"]] == ["tools.find"]  # type: ignore[index]
    assert record["result"]["status"] == "success"  # type: ignore[index]
    assert record["result"]["changed"] == 1  # type: ignore[index]
    assert isinstance(record["duration_ms"], int)


def test_exception_inside_operation_is_recorded(tmp_path: Path) -> None:
    """An escaping exception is logged as the error before propagating."""
    log_dir = tmp_path / "logs"
    logger = StructuredLogger(log_dir)

    with pytest.raises(RuntimeError, match="kaboom"):
        with logger.operation("destroy"):
            raise RuntimeError("kaboom")

    (record,) = _records(log_dir)
    assert record["result"]["status"] == "error"  # type: ignore[index]
    assert record["result"]["errors"] == ["kaboom"]  # type: ignore[index]


def test_operation_without_result_is_a_warning(tmp_path: Path) -> None:
    """Forgetting to report an outcome leaves a warning behind."""
    log_dir = tmp_path / "logs"
    logger = StructuredLogger(log_dir)

    with logger.operation("status"):
        pass

    (record,) = _records(log_dir)
    assert record["result"]["status"] == "warning"  # type: ignore[index]


def test_human_log_receives_module_messages(tmp_path: Path) -> None:
    """Messages from module loggers reach ``envctl.log``."""
    log_dir = tmp_path / "logs"
    StructuredLogger(log_dir)

    get_logger(__name__).warning("storage is slow")
    for handler in logging.getLogger("envctl").handlers:
        handler.flush()

    assert "storage is slow" in (log_dir / HUMAN_LOG_NAME).read_text(encoding="utf-8")


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
    assert logger.enabled is False

    with logger.operation("demo", args={"foo": "bar"}) as op:
        op.success("done", changed=0)


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

    with logger.operation("demo") as op:
        op.success("done", changed=0)

    assert logger.enabled is False

    with logger.operation("demo-2") as op:
        op.success("done", changed=0)


def test_operation_scope_warning_sanitises_context(tmp_path: Path) -> None:
    """Warnings should be recorded with JSON-safe context values."""
    log_dir = tmp_path / "logs"
    logger = StructuredLogger(log_dir)

    class Custom:
        def __str__(self) -> str:
            return "<custom>"

    with logger.operation("demo", args={"path": Path("foo")}) as op:
        op.warning(
            "warned",
            warnings=("note",),
            errors=("err",),
            changed=1,
            context={"path": Path("/var/lib"), "obj": Custom()},
        )

    (record,) = _records(log_dir)
    result = record["result"]
    assert record["args"] == {"path": "foo"}
    assert result["status"] == "warning"  # type: ignore[index]
    assert result["warnings"] == ["note"]  # type: ignore[index]
    assert result["errors"] == ["err"]  # type: ignore[index]
    assert result["context"] == {"path": "/var/lib", "obj": "<custom>"}  # type: ignore[index]


def test_operation_scope_error_defaults_error_list(tmp_path: Path) -> None:
    """Errors should default to the message when not provided."""
    log_dir = tmp_path / "logs"
    logger = StructuredLogger(log_dir)

    with logger.operation("demo") as op:
        op.error("boom", errors=None, rc=3, context={"value": {1, 2}})

    (record,) = _records(log_dir)
    result = record["result"]
    assert result["status"] == "error"  # type: ignore[index]
    assert result["errors"] == ["boom"]  # type: ignore[index]
    assert result["rc"] == 3  # type: ignore[index]
    assert result["context"] == {"value": "{1, 2}"}  # type: ignore[index]
