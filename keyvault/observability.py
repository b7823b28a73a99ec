"""
Keyvault Observability

Structured logging for the program and its host ledger model. Every record
names the layer that emitted it and, while a transaction is being processed,
that transaction's correlation id.

    logger.info("vault created", operation=..., vault=...)
        -> KeyvaultLogger     (layer, operation, context)
        -> StructuredHandler  (JSON lines or text, stderr by default)

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import contextvars
import json
import logging
import sys
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Optional, TypeVar

correlation_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "correlation_id", default=""
)

LEVELS: Dict[str, int] = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class KeyvaultLayer(Enum):
    """Component that emitted a record."""
    LEDGER = "ledger"
    LIFECYCLE = "lifecycle"
    PROCESSOR = "processor"
    SCENARIO = "scenario"


@dataclass
class LogEvent:
    """One structured log record."""
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

    @classmethod
    def from_record(cls, record: logging.LogRecord) -> "LogEvent":
        return cls(
            timestamp=datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            level=record.levelname.lower(),
            logger=record.name,
            message=record.getMessage(),
            correlation_id=correlation_id_var.get(),
            layer=getattr(record, "layer", ""),
            operation=getattr(record, "operation", ""),
            duration_ms=getattr(record, "duration_ms", None),
            error_code=getattr(record, "error_code", ""),
            context=getattr(record, "context", {}),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Fields with a value; empty strings, dicts and None are dropped."""
        d = {
            "timestamp": self.timestamp,
            "level": self.level,
            "logger": self.logger,
            "message": self.message,
            "correlation_id": self.correlation_id,
            "layer": self.layer,
            "operation": self.operation,
            "duration_ms": self.duration_ms,
            "error_code": self.error_code,
            "context": self.context,
        }
        return {k: v for k, v in d.items() if v not in (None, "", {})}

    def to_text(self) -> str:
        ctx = " ".join(f"{k}={v}" for k, v in self.context.items())
        return f"{self.timestamp} {self.level.upper():8} [{self.layer}] {self.message} {ctx}".rstrip()


class StructuredHandler(logging.Handler):
    """Writes each record as a JSON line, or as one line of text."""

    def __init__(self, stream: Any = None, fmt: str = "json"):
        super().__init__()
        self._stream = stream
        self.fmt = fmt

    @property
    def stream(self) -> Any:
        # resolved per write so redirected stderr is honoured
        return self._stream or sys.stderr

    def emit(self, record: logging.LogRecord) -> None:
        try:
            event = LogEvent.from_record(record)
            line = json.dumps(event.to_dict(), default=str) if self.fmt == "json" else event.to_text()
            self.stream.write(line + "\n")
            self.stream.flush()
        except Exception:
            self.handleError(record)


class KeyvaultLogger:
    """Logger bound to one layer; level and format come from config."""

    def __init__(self, name: str, layer: KeyvaultLayer, level: Optional[str] = None):
        from keyvault.config import get_config

        obs = get_config().observability
        self.layer = layer
        self.qualified_name = f"keyvault.{layer.value}.{name}"
        self._logger = logging.getLogger(self.qualified_name)
        self._logger.setLevel(LEVELS[level or obs.log_level.get()])

        if not any(isinstance(h, StructuredHandler) for h in self._logger.handlers):
            self._logger.addHandler(StructuredHandler(fmt=obs.log_format.get()))

    def _log(
        self,
        level: int,
        message: str,
        operation: str = "",
        error_code: str = "",
        duration_ms: Optional[float] = None,
        **context: Any,
    ) -> None:
        self._logger.log(level, message, extra={
            "layer": self.layer.value,
            "operation": operation,
            "error_code": error_code,
            "duration_ms": duration_ms,
            "context": context,
        })

    def debug(self, message: str, **context: Any) -> None:
        self._log(logging.DEBUG, message, **context)

    def info(self, message: str, **context: Any) -> None:
        self._log(logging.INFO, message, **context)

    def warning(self, message: str, **context: Any) -> None:
        self._log(logging.WARNING, message, **context)

    def operation(self, name: str, duration_ms: float, success: bool = True) -> None:
        """Record how long ``name`` took and whether it raised."""
        self._log(
            logging.INFO if success else logging.WARNING,
            f"Operation {name} {'completed' if success else 'failed'}",
            operation=name,
            duration_ms=duration_ms,
        )


def generate_correlation_id() -> str:
    return f"tx-{uuid.uuid4().hex[:12]}"


def set_correlation_id(correlation_id: str) -> contextvars.Token:
    return correlation_id_var.set(correlation_id)


def reset_correlation_id(token: contextvars.Token) -> None:
    correlation_id_var.reset(token)


def get_logger(name: str, layer: KeyvaultLayer) -> KeyvaultLogger:
    return KeyvaultLogger(name, layer)


T = TypeVar("T")


def timed_operation(
    logger: KeyvaultLogger,
    operation_name: str,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Decorator logging the duration and outcome of each call."""
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        def wrapper(*args: Any, **kwargs: Any) -> T:
            start = time.monotonic()
            success = True
            try:
                return func(*args, **kwargs)
            except Exception:
                success = False
                raise
            finally:
                logger.operation(operation_name, (time.monotonic() - start) * 1000, success)
        wrapper.__name__ = func.__name__
        wrapper.__doc__ = func.__doc__
        return wrapper
    return decorator
