"""
nexus-compliance — unit tests for observability logging

File: tests/unit/observability/test_logging.py

Purpose
- Validate structured JSON logging with redaction and correlation metadata.

What this test file should cover
- JSON line validity and redaction guarantees.
- Correlation field propagation from ``correlation_scope`` and ``run_id``.
- structlog events landing in the same JSON sink with their key/value pairs.
- ``environment.debug`` forcing DEBUG level.

Functional requirements
- Offline operation.

Non-functional requirements
- Deterministic and non-flaky.
"""

from __future__ import annotations

import io
import json
import logging
from typing import TYPE_CHECKING
from uuid import uuid4

import pytest
import structlog

from nexus_compliance.observability.logging import (
    LoggingConfig,
    correlation_scope,
    default_log_redactor,
    get_active_logging_handle,
    get_correlation_context,
    setup_logging,
    setup_structured_logging,
    shutdown_logging,
)

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path


@pytest.fixture(autouse=True)
def _cleanup_logging() -> Iterator[None]:
    yield
    shutdown_logging()


def _logger_name() -> str:
    return f"nexus_compliance.tests.logging.{uuid4().hex}"


def _read_json_lines(path: Path) -> list[dict[str, object]]:
    lines = path.read_text(encoding="utf-8").splitlines()
    return [json.loads(line) for line in lines]


def test_json_logging_redacts_secrets_and_preserves_correlation_fields(tmp_path: Path) -> None:
    logger_name = _logger_name()
    handle = setup_structured_logging(
        LoggingConfig(
            run_id="run-logging-redaction",
            log_dir=tmp_path,
            logger_name=logger_name,
            log_to_stream=False,
        )
    )
    logger = logging.getLogger(logger_name)

    with correlation_scope(correlation_id="cor-123", operation="update"):
        logger.info(
            "payload password=hunter2 with header Bearer abc.def",
            extra={"nested": {"api_key": "sk-FAKE", "safe": "ok"}},
        )

    shutdown_logging(handle)

    assert handle.log_path == tmp_path / "compliance.jsonl"
    [event] = _read_json_lines(tmp_path / "compliance.jsonl")
    assert event["level"] == "INFO"
    assert event["logger"] == logger_name
    assert event["run_id"] == "run-logging-redaction"
    assert event["correlation_id"] == "cor-123"
    assert event["operation"] == "update"
    assert "hunter2" not in str(event["message"])
    assert "abc.def" not in str(event["message"])
    assert event["fields"] == {"nested": {"api_key": "***REDACTED***", "safe": "ok"}}
    assert str(event["timestamp"]).endswith("Z")


def test_correlation_scope_restores_previous_context() -> None:
    assert get_correlation_context() == {}

    with correlation_scope(correlation_id="cor-outer"):
        with correlation_scope(operation="enforce"):
            assert get_correlation_context() == {
                "correlation_id": "cor-outer",
                "operation": "enforce",
            }
        assert get_correlation_context() == {"correlation_id": "cor-outer"}

    assert get_correlation_context() == {}


def test_correlation_scope_rejects_blank_values() -> None:
    with pytest.raises(ValueError, match="must not be empty"), correlation_scope(operation="  "):
        pass


def test_structlog_events_are_rendered_as_json_fields() -> None:
    stream = io.StringIO()
    logger_name = _logger_name()
    setup_structured_logging(LoggingConfig(logger_name=logger_name, stream=stream))

    with correlation_scope(correlation_id="cor-structlog"):
        structlog.get_logger(logger_name).warning(
            "configuration_rejected", error_count=2, component="memory"
        )

    [line] = stream.getvalue().splitlines()
    event = json.loads(line)
    assert event["message"] == "configuration_rejected"
    assert event["level"] == "WARNING"
    assert event["correlation_id"] == "cor-structlog"
    assert event["fields"] == {"component": "memory", "error_count": 2}


def test_level_filters_records_below_threshold() -> None:
    stream = io.StringIO()
    logger_name = _logger_name()
    setup_structured_logging(LoggingConfig(logger_name=logger_name, stream=stream, level="WARNING"))
    logger = logging.getLogger(logger_name)

    logger.info("dropped")
    logger.warning("kept")

    messages = [json.loads(line)["message"] for line in stream.getvalue().splitlines()]
    assert messages == ["kept"]


def test_setup_logging_debug_flag_forces_debug_level() -> None:
    stream = io.StringIO()

    logger = setup_logging({"log_level": "ERROR", "debug": True}, stream=stream)

    assert logger.level == logging.DEBUG
    logger.debug("visible")
    assert json.loads(stream.getvalue().splitlines()[0])["message"] == "visible"


def test_setup_logging_rejects_unknown_level() -> None:
    with pytest.raises(ValueError, match="unsupported logging level"):
        setup_logging({"log_level": "chatty"}, stream=io.StringIO())


def test_redaction_can_be_disabled() -> None:
    stream = io.StringIO()
    logger_name = _logger_name()
    setup_structured_logging(
        LoggingConfig(logger_name=logger_name, stream=stream, redact_secrets=False)
    )

    logging.getLogger(logger_name).info("password=visible")

    assert json.loads(stream.getvalue())["message"] == "password=visible"


def test_default_log_redactor_walks_nested_values() -> None:
    redacted = default_log_redactor(
        {"items": [{"secret_value": "x"}, "secret=abc"], "count": 3, "note": "plain"}
    )

    assert redacted == {
        "items": [{"secret_value": "***REDACTED***"}, "secret=***REDACTED***"],
        "count": 3,
        "note": "plain",
    }


def test_shutdown_clears_the_active_handle() -> None:
    handle = setup_structured_logging(
        LoggingConfig(logger_name=_logger_name(), stream=io.StringIO())
    )
    assert get_active_logging_handle() is handle

    shutdown_logging()

    assert handle.is_shutdown
    assert get_active_logging_handle() is None
    shutdown_logging()


def test_redaction_keeps_configuration_values_and_masks_component_errors() -> None:
    stream = io.StringIO()
    logger_name = _logger_name()
    setup_structured_logging(LoggingConfig(logger_name=logger_name, stream=stream))

    structlog.get_logger(logger_name).error(
        "component_enforcement_failed",
        component="correlation",
        error="store rejected api-key: k-123, retry later",
        new_value={"budget_tokens": 8000, "max_memory_mb": 512},
    )

    event = json.loads(stream.getvalue())
    assert event["fields"] == {
        "component": "correlation",
        "error": "store rejected api-key:***REDACTED***, retry later",
        "new_value": {"budget_tokens": 8000, "max_memory_mb": 512},
    }
