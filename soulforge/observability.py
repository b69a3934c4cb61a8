"""
SOULFORGE Observability

Structured logging and span timing for mint attempts. Every event emitted
while an attempt runs carries the attempt id as its correlation id, so one
mint can be followed from supply conversion to confirmation:

    {"level": "info", "logger": "soulforge.coordinator.coordinator",
     "message": "Mint attempt entered submitted", "correlation_id": "mint-...",
     "layer": "coordinator", "operation": "transition", "context": {...}}

Private keys never reach this module: callers pass public keys only.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import contextvars
import functools
import json
import logging
import sys
import threading
import time
import traceback
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Iterator, List, Optional, TypeVar

from soulforge.config import ForgeConfig, get_config

correlation_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "correlation_id", default=""
)

ROOT_LOGGER_NAME = "soulforge"

LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}


class ForgeLayer(Enum):
    """SOULFORGE components for categorization."""
    MANIFEST = "manifest"
    UNITS = "units"
    ACCOUNTS = "accounts"
    RENT = "rent"
    ASSEMBLER = "assembler"
    COORDINATOR = "coordinator"
    OPERATION = "operation"
    LEDGER = "ledger"
    SIGNER = "signer"
    CONFIG = "config"


def set_correlation_id(correlation_id: str) -> contextvars.Token:
    """Set the correlation ID for the current context."""
    return correlation_id_var.set(correlation_id)


# =============================================================================
# SPANS
# =============================================================================

@dataclass
class Span:
    """Timed unit of work, exported once it ends."""
    name: str
    layer: str
    correlation_id: str = ""
    start_time: float = field(default_factory=time.monotonic)
    end_time: Optional[float] = None
    status: str = "ok"
    attributes: Dict[str, Any] = field(default_factory=dict)

    def set_attribute(self, key: str, value: Any) -> None:
        self.attributes[key] = value

    @property
    def duration_ms(self) -> float:
        end = self.end_time or time.monotonic()
        return (end - self.start_time) * 1000

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "layer": self.layer,
            "correlation_id": self.correlation_id,
            "duration_ms": round(self.duration_ms, 2),
            "status": self.status,
            "attributes": self.attributes,
        }


class Tracer:
    """
    Span tracker for mint attempts.

    Finished spans, failed or not, are handed to registered exporters.
    """

    def __init__(self):
        self._active: List[Span] = []
        self._lock = threading.Lock()
        self._exporters: List[Callable[[Span], None]] = []

    def add_exporter(self, exporter: Callable[[Span], None]) -> None:
        self._exporters.append(exporter)

    @property
    def active_spans(self) -> List[Span]:
        with self._lock:
            return list(self._active)

    @contextmanager
    def span(self, name: str, layer: ForgeLayer, **attributes: Any) -> Iterator[Span]:
        """Time the enclosed block; an escaping exception marks the span as error."""
        span = Span(name, layer.value, correlation_id_var.get(), attributes=dict(attributes))
        with self._lock:
            self._active.append(span)
        try:
            yield span
        except BaseException as e:
            span.status = "error"
            span.set_attribute("exception_type", type(e).__name__)
            span.set_attribute("status_message", str(e))
            raise
        finally:
            span.end_time = time.monotonic()
            with self._lock:
                self._active.remove(span)
            for exporter in self._exporters:
                exporter(span)


_tracer: Optional[Tracer] = None


def get_tracer() -> Tracer:
    """Get the global tracer instance."""
    global _tracer
    if _tracer is None:
        _tracer = Tracer()
    return _tracer


# =============================================================================
# LOGGING
# =============================================================================

class JsonLineHandler(logging.Handler):
    """Writes one JSON object per record; empty fields are omitted."""

    RECORD_FIELDS = ("layer", "operation", "duration_ms", "error_code", "context")

    def __init__(self, stream: Any = None):
        super().__init__()
        self.stream = stream or sys.stderr

    def emit(self, record: logging.LogRecord) -> None:
        try:
            event: Dict[str, Any] = {
                "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
                "level": record.levelname.lower(),
                "logger": record.name,
                "message": record.getMessage(),
                "correlation_id": correlation_id_var.get(),
            }
            for key in self.RECORD_FIELDS:
                event[key] = getattr(record, key, None)
            if record.exc_info:
                event["exception"] = "".join(traceback.format_exception(*record.exc_info))

            event = {k: v for k, v in event.items() if v is not None and v != "" and v != {}}
            self.stream.write(json.dumps(event, default=str) + "\n")
            self.stream.flush()
        except Exception:
            self.handleError(record)


class ForgeLogger:
    """
    Structured logger for one SOULFORGE component.

    Keyword arguments other than ``operation``, ``error_code`` and
    ``duration_ms`` land in the event's ``context``.
    """

    def __init__(self, name: str, layer: ForgeLayer):
        self.name = name
        self.layer = layer
        self._logger = logging.getLogger(f"{ROOT_LOGGER_NAME}.{layer.value}.{name}")

    def _log(
        self,
        level: int,
        message: str,
        operation: str = "",
        error_code: str = "",
        duration_ms: Optional[float] = None,
        exc_info: bool = False,
        **context: Any,
    ) -> None:
        extra = {
            "layer": self.layer.value,
            "operation": operation,
            "error_code": error_code,
            "duration_ms": duration_ms,
            "context": context,
        }
        self._logger.log(level, message, extra=extra, exc_info=exc_info)

    def debug(self, message: str, **context: Any) -> None:
        self._log(logging.DEBUG, message, **context)

    def info(self, message: str, **context: Any) -> None:
        self._log(logging.INFO, message, **context)

    def warning(self, message: str, **context: Any) -> None:
        self._log(logging.WARNING, message, **context)

    def error(self, message: str, error_code: str = "", exc_info: bool = False, **context: Any) -> None:
        self._log(logging.ERROR, message, error_code=error_code, exc_info=exc_info, **context)

    def operation(self, name: str, duration_ms: float, success: bool = True, **context: Any) -> None:
        """Log completion of a timed operation."""
        self._log(
            logging.INFO if success else logging.WARNING,
            f"Operation {name} {'completed' if success else 'failed'}",
            operation=name,
            duration_ms=duration_ms,
            **context,
        )


def get_logger(name: str, layer: ForgeLayer) -> ForgeLogger:
    """Get a logger for a SOULFORGE component."""
    return ForgeLogger(name, layer)


def configure_logging(level: str = "info", log_format: str = "json", stream: Any = None) -> logging.Logger:
    """Attach a single handler to the ``soulforge`` root logger."""
    if level not in LOG_LEVELS:
        raise ValueError(f"Unknown log level: {level}")

    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel(LOG_LEVELS[level])
    for handler in list(root.handlers):
        root.removeHandler(handler)

    if log_format == "json":
        handler: logging.Handler = JsonLineHandler(stream)
    else:
        handler = logging.StreamHandler(stream or sys.stderr)
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
    root.addHandler(handler)
    return root


def configure_logging_from_config(config: Optional[ForgeConfig] = None, stream: Any = None) -> logging.Logger:
    """Apply the observability section of the configuration."""
    config = config or get_config()
    return configure_logging(
        config.observability.log_level.get(),
        config.observability.log_format.get(),
        stream,
    )


T = TypeVar("T")


def timed_operation(
    logger: ForgeLogger,
    operation_name: str,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Decorator for timing and logging synchronous operations."""
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
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
        return wrapper
    return decorator
