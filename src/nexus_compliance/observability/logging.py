"""JSON-lines logging for compliance runs.

Every record becomes one JSON object carrying the correlation id and operation
bound by ``correlation_scope`` (the manager binds both around updates and
enforcement passes). structlog events from the control plane are routed
through the same stdlib handlers so their key/value pairs land in ``fields``.
Secret-looking keys and inline ``password=`` style credentials in component
error messages are masked.
"""

from __future__ import annotations

import contextvars
import json
import logging
import math
import re
import sys
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from types import MappingProxyType
from typing import IO, Any, Final

import structlog

LogRedactor = Callable[[Any], Any]

REDACTED: Final[str] = "***REDACTED***"
DEFAULT_LOGGER_NAME: Final[str] = "nexus_compliance"
DEFAULT_LOG_FILENAME: Final[str] = "compliance.jsonl"

_CORRELATION_KEYS: Final[tuple[str, ...]] = ("run_id", "correlation_id", "operation")
_RESERVED_RECORD_KEYS: Final[frozenset[str]] = frozenset(
    vars(logging.makeLogRecord({}))
) | {"message", "asctime"}

_SECRET_KEY: Final[re.Pattern[str]] = re.compile(
    r"(?i)secret|password|passphrase|api_?key|authorization|credential"
)
_INLINE_SECRET: Final[re.Pattern[str]] = re.compile(
    r"(?i)\b(?P<name>password|secret|api[_-]?key)\s*(?P<sep>[:=])\s*[^\s,;]+"
    r"|\bbearer\s+[\w.~+/-]+=*"
)

_correlation: contextvars.ContextVar[Mapping[str, str]] = contextvars.ContextVar(
    "nexus_compliance_correlation", default=MappingProxyType({})
)
_active_handle: LoggingHandle | None = None


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    logger_name: str = DEFAULT_LOGGER_NAME
    level: int | str = "INFO"
    log_dir: Path | str | None = None
    log_filename: str = DEFAULT_LOG_FILENAME
    stream: IO[str] | None = None
    log_to_stream: bool = True
    redact_secrets: bool = True
    run_id: str | None = None


@dataclass(slots=True)
class LoggingHandle:
    """Sinks attached by one ``setup_structured_logging`` call."""

    logger: logging.Logger
    log_path: Path | None
    handlers: tuple[logging.Handler, ...] = ()
    is_shutdown: bool = field(default=False, init=False)

    def shutdown(self) -> None:
        if self.is_shutdown:
            return
        for handler in self.handlers:
            self.logger.removeHandler(handler)
            handler.close()
        self.is_shutdown = True


class _JsonFormatter(logging.Formatter):
    def __init__(self, redactor: LogRedactor, run_id: str | None) -> None:
        super().__init__()
        self._redact = redactor
        self._run_id = run_id

    def format(self, record: logging.LogRecord) -> str:
        event: dict[str, Any] = {
            "timestamp": _utc_timestamp(record.created),
            "level": record.levelname,
            "logger": record.name,
            "message": self._redact(record.getMessage()),
        }
        if self._run_id:
            event["run_id"] = self._run_id
        event.update(_correlation.get())
        for key in _CORRELATION_KEYS:
            value = getattr(record, key, None)
            if isinstance(value, str) and value.strip():
                event[key] = value.strip()

        extras = {
            key: _jsonable(value)
            for key, value in vars(record).items()
            if key not in _RESERVED_RECORD_KEYS
            and key not in _CORRELATION_KEYS
            and not key.startswith("_")
        }
        if extras:
            event["fields"] = self._redact(extras)
        if record.exc_info is not None:
            event["exception"] = self._redact(self.formatException(record.exc_info))
        return json.dumps(event, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def setup_structured_logging(config: LoggingConfig) -> LoggingHandle:
    """Replace the handlers of ``config.logger_name`` with JSON-lines sinks."""
    global _active_handle
    shutdown_logging()

    level = _parse_level(config.level)
    redactor = default_log_redactor if config.redact_secrets else _keep
    run_id = config.run_id.strip() if config.run_id else None
    formatter = _JsonFormatter(redactor, run_id)

    handlers: list[logging.Handler] = []
    log_path: Path | None = None
    if config.log_dir is not None:
        log_path = Path(config.log_dir) / config.log_filename
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path, encoding="utf-8"))
    if config.log_to_stream:
        handlers.append(logging.StreamHandler(config.stream or sys.stderr))

    logger = logging.getLogger(config.logger_name)
    logger.setLevel(level)
    logger.propagate = False
    for existing in list(logger.handlers):
        logger.removeHandler(existing)
        existing.close()
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    configure_structlog()
    _active_handle = LoggingHandle(logger=logger, log_path=log_path, handlers=tuple(handlers))
    return _active_handle


def setup_logging(
    environment: Mapping[str, object] | None = None,
    *,
    log_dir: Path | str | None = None,
    stream: IO[str] | None = None,
    run_id: str | None = None,
) -> logging.Logger:
    """Configure logging from the ``environment`` config section.

    ``environment.debug`` forces DEBUG regardless of ``environment.log_level``.
    """
    section = environment or {}
    level = section.get("log_level", "INFO")
    if not isinstance(level, (int, str)):
        level = "INFO"
    if section.get("debug") is True:
        level = "DEBUG"
    config = LoggingConfig(level=level, log_dir=log_dir, stream=stream, run_id=run_id)
    return setup_structured_logging(config).logger


def configure_structlog() -> None:
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.processors.format_exc_info,
            structlog.stdlib.render_to_log_kwargs,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


def shutdown_logging(handle: LoggingHandle | None = None) -> None:
    """Close ``handle``, or the active handle when none is given."""
    global _active_handle
    target = handle or _active_handle
    if target is None:
        return
    if target is _active_handle:
        _active_handle = None
    target.shutdown()


def get_active_logging_handle() -> LoggingHandle | None:
    return _active_handle


def get_correlation_context() -> dict[str, str]:
    return dict(_correlation.get())


@contextmanager
def correlation_scope(**fields: str | None) -> Iterator[None]:
    """Bind correlation fields for records logged in scope; ``None`` unbinds a field."""
    merged = dict(_correlation.get())
    for key, value in fields.items():
        if value is None:
            merged.pop(key, None)
        elif not value.strip():
            raise ValueError(f"correlation value for {key!r} must not be empty")
        else:
            merged[key] = value.strip()
    token = _correlation.set(merged)
    try:
        yield
    finally:
        _correlation.reset(token)


def default_log_redactor(value: Any) -> Any:
    """Mask values under secret-looking keys and inline credentials in strings."""
    if isinstance(value, str):
        return _INLINE_SECRET.sub(_mask_inline, value)
    if isinstance(value, list):
        return [default_log_redactor(item) for item in value]
    if isinstance(value, dict):
        return {
            key: REDACTED if _SECRET_KEY.search(key) else default_log_redactor(item)
            for key, item in value.items()
        }
    return value


def _mask_inline(match: re.Match[str]) -> str:
    if match.group("name"):
        return f"{match.group('name')}{match.group('sep')}{REDACTED}"
    return f"Bearer {REDACTED}"


def _keep(value: Any) -> Any:
    return value


def _parse_level(value: int | str) -> int:
    if isinstance(value, int):
        return value
    parsed = logging.getLevelName(value.strip().upper())
    if isinstance(parsed, int):
        return parsed
    raise ValueError(f"unsupported logging level {value!r}")


def _utc_timestamp(epoch_seconds: float) -> str:
    moment = datetime.fromtimestamp(epoch_seconds, tz=UTC)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _jsonable(value: object) -> Any:
    """Convert change values, enum states and timestamps into JSON-ready data."""
    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else repr(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Mapping):
        return {str(key): _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_jsonable(item) for item in value]
    return str(value)


__all__ = [
    "LogRedactor",
    "LoggingConfig",
    "LoggingHandle",
    "configure_structlog",
    "correlation_scope",
    "default_log_redactor",
    "get_active_logging_handle",
    "get_correlation_context",
    "setup_logging",
    "setup_structured_logging",
    "shutdown_logging",
]
