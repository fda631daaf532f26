"""
Structured JSON logging for the cost control kernel.

Every record emitted under the ``costcontrol_kernel`` logger is written as
one JSON object per line:

    {"ts": ..., "level": "INFO", "logger": "costcontrol_kernel.services.reconciliation",
     "message": "reconciliation_committed", "project_id": "...", "attempts": 1, ...}

Messages are event names; the data goes in ``extra``.  Request-scoped
fields (correlation, project, cost item, actor) are carried by
``LogContext`` and merged into every line logged while they are bound.
"""

__all__ = [
    "CONTEXT_FIELDS",
    "LogContext",
    "StructuredFormatter",
    "configure_logging",
    "get_logger",
    "reset_logging",
]

import json
import logging
import sys
import threading
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from costcontrol_kernel.exceptions import CostControlError

_LOGGER_PREFIX = "costcontrol_kernel"

CONTEXT_FIELDS = ("correlation_id", "project_id", "cost_item_id", "actor_id")

_context: ContextVar[Mapping[str, str]] = ContextVar("costcontrol_log_context", default={})


class LogContext:
    """
    Log fields scoped to the current thread or task.

    Backed by a single ContextVar holding an immutable snapshot, so nested
    ``bind()`` blocks restore exactly what was there before.  Names outside
    CONTEXT_FIELDS and None values are ignored.
    """

    @staticmethod
    def _merged(fields: Mapping[str, Any]) -> dict[str, str]:
        current = dict(_context.get())
        for name, value in fields.items():
            if name in CONTEXT_FIELDS and value is not None:
                current[name] = str(value)
        return current

    @classmethod
    def set(cls, **fields: Any) -> None:
        _context.set(cls._merged(fields))

    @classmethod
    def get_all(cls) -> dict[str, str]:
        return dict(_context.get())

    @classmethod
    def clear(cls) -> None:
        _context.set({})

    @classmethod
    @contextmanager
    def bind(cls, **fields: Any) -> Iterator[type["LogContext"]]:
        """Add fields for the duration of a ``with`` block."""
        token = _context.set(cls._merged(fields))
        try:
            yield cls
        finally:
            _context.reset(token)


# LogRecord attributes that are not ``extra`` data.
_RESERVED_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {
    "message",
    "asctime",
    "taskName",
}


def _json_default(value: Any) -> Any:
    if isinstance(value, (Decimal, UUID)):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return str(value)


class StructuredFormatter(logging.Formatter):
    """Envelope, then context fields, then ``extra`` data, then exception details."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **LogContext.get_all(),
        }
        for key, value in vars(record).items():
            if key not in _RESERVED_ATTRS and key not in payload:
                payload[key] = value

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(self._exception_fields(record))

        return json.dumps(payload, default=_json_default)

    def _exception_fields(self, record: logging.LogRecord) -> dict[str, Any]:
        exc = record.exc_info[1]
        fields: dict[str, Any] = {
            "exc_type": type(exc).__name__,
            "exc_message": str(exc),
        }
        if isinstance(exc, CostControlError):
            fields["exc_code"] = exc.code
            for name, value in vars(exc).items():
                if not name.startswith("_"):
                    fields[f"exc_{name}"] = value
        fields["traceback"] = self.formatException(record.exc_info)
        return fields


def get_logger(name: str) -> logging.Logger:
    """Logger under the ``costcontrol_kernel`` namespace."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


_state_lock = threading.Lock()
_installed_handler: logging.Handler | None = None


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """
    Attach one JSON handler to the ``costcontrol_kernel`` logger.

    Later calls are ignored until reset_logging().  Records do not
    propagate to the root logger.
    """
    global _installed_handler
    with _state_lock:
        if _installed_handler is not None:
            return
        _installed_handler = handler if handler is not None else logging.StreamHandler(
            stream or sys.stderr
        )
        _installed_handler.setFormatter(StructuredFormatter())

        kernel_logger = logging.getLogger(_LOGGER_PREFIX)
        kernel_logger.setLevel(level)
        kernel_logger.propagate = False
        kernel_logger.addHandler(_installed_handler)


def reset_logging() -> None:
    """Detach all handlers and forget the configuration. FOR TESTING ONLY."""
    global _installed_handler
    with _state_lock:
        _installed_handler = None
        kernel_logger = logging.getLogger(_LOGGER_PREFIX)
        kernel_logger.handlers.clear()
        kernel_logger.setLevel(logging.WARNING)
