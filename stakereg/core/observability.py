"""
Registry Observability

Structured logging for the ledger, vault and slashers. Every log line is a
JSON object carrying the correlation id of the operation that produced it,
the registry layer, and the operation name and duration when known.

    logger = get_logger("ledger", RegistryLayer.LEDGER)
    with correlation_scope():
        logger.info("Operator registered", operation="register", root=root.hex())

Rejections are logged at WARNING with the error's stable `code`; terminal
actions (claim, slash) at INFO.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import contextvars
import json
import logging
import sys
import traceback
import uuid
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterator, Optional

# Bound per operation by correlation_scope(); empty outside one.
correlation_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "stakereg_correlation_id", default=""
)


class RegistryLayer(Enum):
    """Registry components for log categorization."""
    ACCUMULATOR = "accumulator"
    SIGNING = "signing"
    LEDGER = "ledger"
    VAULT = "vault"
    FRAUD = "fraud"
    COMMITMENT = "commitment"
    ADJUDICATOR = "adjudicator"
    EVENTS = "events"
    CONFIG = "config"
    CLI = "cli"


@dataclass
class LogLine:
    """One structured log line as written by the handlers."""
    timestamp: str
    level: str
    logger: str
    message: str
    correlation_id: str = ""
    layer: str = ""
    operation: str = ""
    duration_ms: Optional[float] = None
    error_code: str = ""
    context: Dict[str, Any] = field(default_factory=dict)
    exception: Optional[str] = None

    @classmethod
    def from_record(cls, record: logging.LogRecord) -> "LogLine":
        line = cls(
            timestamp=datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            level=record.levelname.lower(),
            logger=record.name,
            message=record.getMessage(),
            correlation_id=correlation_id_var.get(),
        )
        for attr in ("layer", "operation", "error_code", "duration_ms", "context"):
            if hasattr(record, attr):
                setattr(line, attr, getattr(record, attr))
        if record.exc_info:
            line.exception = "".join(traceback.format_exception(*record.exc_info))
        return line

    def fields(self) -> Dict[str, Any]:
        """Non-empty fields only."""
        return {k: v for k, v in asdict(self).items() if v not in (None, "", {})}

    def to_json(self) -> str:
        return json.dumps(self.fields(), default=_json_default, sort_keys=True)

    def to_text(self) -> str:
        parts = [self.timestamp, self.level.upper(), self.logger, self.message]
        if self.error_code:
            parts.append(f"code={self.error_code}")
        for key, value in sorted((self.context or {}).items()):
            shown = value if isinstance(value, (int, str)) else _json_default(value)
            parts.append(f"{key}={shown}")
        return " ".join(parts)


def _json_default(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    if isinstance(value, Enum):
        return value.value
    return str(value)


class StructuredHandler(logging.Handler):
    """Writes one JSON object per record."""

    def __init__(self, stream: Any = None):
        super().__init__()
        self._stream = stream

    @property
    def stream(self) -> Any:
        return self._stream or sys.stderr

    def render(self, line: LogLine) -> str:
        return line.to_json()

    def emit(self, record: logging.LogRecord) -> None:
        try:
            out = self.stream
            out.write(self.render(LogLine.from_record(record)) + "\n")
            out.flush()
        except Exception:
            self.handleError(record)


class TextHandler(StructuredHandler):
    """Human-readable single-line variant for local runs."""

    def render(self, line: LogLine) -> str:
        return line.to_text()


class RegistryLogger:
    """
    Logger bound to one registry layer.

    Keyword arguments that are not structural fields (`operation`,
    `error_code`, `duration_ms`) land in the line's `context`.
    """

    _STRUCTURAL = ("operation", "error_code", "duration_ms")

    def __init__(self, name: str, layer: RegistryLayer):
        self.name = name
        self.layer = layer
        self._logger = logging.getLogger(f"stakereg.{layer.value}.{name}")

    @property
    def logger(self) -> logging.Logger:
        return self._logger

    def _emit(self, level: int, message: str, fields: Dict[str, Any]) -> None:
        extra: Dict[str, Any] = {"layer": self.layer.value}
        for key in self._STRUCTURAL:
            if key in fields:
                extra[key] = fields.pop(key)
        extra["context"] = fields
        self._logger.log(level, message, extra=extra)

    def debug(self, message: str, **fields: Any) -> None:
        self._emit(logging.DEBUG, message, fields)

    def info(self, message: str, **fields: Any) -> None:
        self._emit(logging.INFO, message, fields)

    def warning(self, message: str, **fields: Any) -> None:
        self._emit(logging.WARNING, message, fields)

    def rejected(self, operation: str, error: Exception, **fields: Any) -> None:
        """Log a rejected operation with the error's stable code."""
        fields.update(
            operation=operation,
            error_code=getattr(error, "code", type(error).__name__),
        )
        self._emit(logging.WARNING, f"{operation} rejected: {type(error).__name__}", fields)

    def operation(self, name: str, duration_ms: float, success: bool = True, **fields: Any) -> None:
        """Log an operation's outcome and wall time.

        Successes go to DEBUG, failures to WARNING.
        """
        fields.update(operation=name, duration_ms=round(duration_ms, 3))
        if success:
            self._emit(logging.DEBUG, f"Operation {name} completed", fields)
        else:
            self._emit(logging.WARNING, f"Operation {name} failed", fields)


def generate_correlation_id() -> str:
    return "corr-" + uuid.uuid4().hex[:12]


def get_correlation_id() -> str:
    """Current correlation id; binds a fresh one when none is set."""
    current = correlation_id_var.get()
    if current:
        return current
    current = generate_correlation_id()
    correlation_id_var.set(current)
    return current


@contextmanager
def correlation_scope(correlation_id: Optional[str] = None) -> Iterator[str]:
    """Bind a correlation id for the duration of the block.

    An id already bound by an enclosing scope is kept.
    """
    current = correlation_id_var.get()
    if current and correlation_id is None:
        yield current
        return
    token = correlation_id_var.set(correlation_id or generate_correlation_id())
    try:
        yield correlation_id_var.get()
    finally:
        correlation_id_var.reset(token)


def get_logger(name: str, layer: RegistryLayer) -> RegistryLogger:
    """Get a logger for a registry component."""
    return RegistryLogger(name, layer)


def configure_logging(level: str = "info", log_format: str = "json", stream: Any = None) -> logging.Handler:
    """Install one structured handler on the `stakereg` logger tree.

    Replaces any handler a previous call installed.
    """
    root = logging.getLogger("stakereg")
    for h in list(root.handlers):
        if isinstance(h, StructuredHandler):
            root.removeHandler(h)
    handler: StructuredHandler = TextHandler(stream) if log_format == "text" else StructuredHandler(stream)
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper()))
    return handler
