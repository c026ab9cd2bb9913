"""
Structured JSON logging for the stock ledger.

Every line carries the operation-scoped fields bound in ``LogContext``
(operation, product, scan session) so one Sortie or transfer can be followed
across the store, the engines and the services.  Ledger keys, quality
verdicts and lot dates in ``extra`` are written in their text form.
"""

__all__ = [
    "StructuredFormatter",
    "LogContext",
    "get_logger",
    "configure_logging",
    "reset_logging",
]

import json
import logging
import sys
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, date, datetime
from enum import Enum
from typing import Any

from stock_kernel.domain.values import GroupKey, StockKey

# ---------------------------------------------------------------------------
# Context propagation
# ---------------------------------------------------------------------------

_CONTEXT_FIELDS = ("operation_id", "product_id", "session_id")
_context_vars: dict[str, ContextVar[str | None]] = {
    name: ContextVar(f"stock_log_{name}", default=None) for name in _CONTEXT_FIELDS
}


class LogContext:
    """
    Operation-scoped log fields, safe across threads and tasks.

    ``MovementService`` binds ``operation_id`` and ``product_id`` for one
    write; ``ScanSession`` binds ``session_id`` for every operator action.
    """

    @staticmethod
    @contextmanager
    def bind(**fields: str | None) -> Iterator[None]:
        """
        Set fields for the duration of the block, then restore them.

        None leaves a field as it is.  Unknown names raise TypeError.
        """
        unknown = set(fields) - set(_CONTEXT_FIELDS)
        if unknown:
            raise TypeError(f"Unknown log context field(s): {sorted(unknown)}")
        tokens = [
            (_context_vars[name], _context_vars[name].set(value))
            for name, value in fields.items()
            if value is not None
        ]
        try:
            yield
        finally:
            for var, token in reversed(tokens):
                var.reset(token)

    @staticmethod
    def get_all() -> dict[str, str]:
        return {
            name: value
            for name, var in _context_vars.items()
            if (value := var.get()) is not None
        }

    @staticmethod
    def clear() -> None:
        for var in _context_vars.values():
            var.set(None)


# ---------------------------------------------------------------------------
# JSON Formatter
# ---------------------------------------------------------------------------

_STDLIB_KEYS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "taskName"}


def _to_json(obj: Any) -> Any:
    if isinstance(obj, StockKey):
        return obj.as_string()
    if isinstance(obj, GroupKey):
        return str(obj)
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    return str(obj)


class StructuredFormatter(logging.Formatter):
    """One JSON object per line: envelope, bound context, then ``extra``."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(LogContext.get_all())

        for key, val in vars(record).items():
            if key not in _STDLIB_KEYS and key not in payload:
                payload[key] = val

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(_exception_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_to_json)


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    fields: dict[str, Any] = {"exc_type": type(exc).__name__, "exc_message": str(exc)}
    code = getattr(exc, "code", None)
    if code is not None:
        # Stock ledger errors: code plus their structured attributes
        fields["exc_code"] = code
        for key, value in vars(exc).items():
            if not key.startswith("_"):
                fields[f"exc_{key}"] = value
    return fields


# ---------------------------------------------------------------------------
# Logger factory and initialization
# ---------------------------------------------------------------------------

_LOGGER_PREFIX = "stock_kernel"

_configured = False
_lock = threading.Lock()


def get_logger(name: str) -> logging.Logger:
    """Logger under the ``stock_kernel`` namespace, e.g. ``services.movement``."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """Attach one JSON handler to the ``stock_kernel`` hierarchy; later calls are no-ops."""
    global _configured
    with _lock:
        if _configured:
            return
        _configured = True

    root_logger = logging.getLogger(_LOGGER_PREFIX)
    root_logger.setLevel(level)
    root_logger.propagate = False

    h = handler if handler is not None else logging.StreamHandler(stream or sys.stderr)
    h.setFormatter(StructuredFormatter())
    root_logger.addHandler(h)


def reset_logging() -> None:
    """Detach handlers so tests can configure again."""
    global _configured
    with _lock:
        _configured = False
    logger = logging.getLogger(_LOGGER_PREFIX)
    logger.handlers.clear()
    logger.setLevel(logging.WARNING)
