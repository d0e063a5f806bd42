"""
Structured JSON logging for the ledger kernel.

Every record becomes one JSON object on one line:

    {"ts": ..., "level": ..., "logger": ..., "message": "event_appended",
     "correlation_id": ..., "subject_key": ..., "amount": 50, ...}

Fields come from three places, in this order of precedence:
    1. The fixed header (ts, level, logger, message).
    2. ``LogContext`` -- request-scoped fields held in contextvars, so a
       token fingerprint or payout id bound once shows up on every line
       written while it is bound, including lines from nested services.
    3. ``extra={...}`` on the individual call.

Exceptions attached with ``exc_info`` add ``exc_type``, ``exc_message``,
``traceback`` and, for ``LedgerKernelError`` subclasses, ``exc_code`` plus
one ``exc_<attr>`` per public attribute.
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
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

LOGGER_NAMESPACE = "ledger_kernel"

# Request-scoped fields, in output order
CONTEXT_FIELDS = (
    "correlation_id",
    "reference_id",
    "subject_key",
    "payout_id",
    "trigger",
)

_context_vars: dict[str, ContextVar[str | None]] = {
    name: ContextVar(f"ledger_log_{name}", default=None) for name in CONTEXT_FIELDS
}


def _var(name: str) -> ContextVar[str | None]:
    try:
        return _context_vars[name]
    except KeyError:
        raise KeyError(f"Unknown log context field: {name}") from None


class LogContext:
    """
    Request-scoped log fields.

    Backed by contextvars: values follow the current thread or task and
    are not shared with worker threads unless copied explicitly
    (``get_all()`` then ``bind(**fields)`` inside the worker).
    """

    @staticmethod
    def set(**fields: str | None) -> None:
        """Set fields for the rest of the current context; None is ignored."""
        for name, value in fields.items():
            if value is not None:
                _var(name).set(value)

    @staticmethod
    def get_all() -> dict[str, str]:
        return {
            name: value
            for name in CONTEXT_FIELDS
            if (value := _context_vars[name].get()) is not None
        }

    @staticmethod
    def clear() -> None:
        for var in _context_vars.values():
            var.set(None)

    @staticmethod
    @contextmanager
    def bind(**fields: str | None) -> Iterator[None]:
        """Set fields for the duration of a ``with`` block, then restore."""
        tokens = [
            (_var(name), _var(name).set(value))
            for name, value in fields.items()
            if value is not None
        ]
        try:
            yield
        finally:
            for var, token in reversed(tokens):
                var.reset(token)


# Attributes every LogRecord has; anything else on a record came from extra=
_RESERVED_RECORD_KEYS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "asctime", "taskName"}


def _json_default(obj: Any) -> Any:
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, datetime):
        return obj.isoformat()
    return str(obj)


class StructuredFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(LogContext.get_all())

        for key, value in vars(record).items():
            if key in _RESERVED_RECORD_KEYS or key in payload:
                continue
            payload[key] = value

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(self._exception_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_json_default)

    @staticmethod
    def _exception_fields(exc: BaseException) -> dict[str, Any]:
        fields: dict[str, Any] = {
            "exc_type": type(exc).__name__,
            "exc_message": str(exc),
        }
        code = getattr(exc, "code", None)
        if code is not None:
            fields["exc_code"] = code
        for name, value in vars(exc).items():
            if not name.startswith("_") and name != "code":
                fields[f"exc_{name}"] = value
        return fields


def get_logger(name: str) -> logging.Logger:
    """Child logger of ``ledger_kernel``, e.g. ``get_logger("services.donation")``."""
    return logging.getLogger(f"{LOGGER_NAMESPACE}.{name}")


_configure_lock = threading.Lock()
_configured = False


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """
    Attach a JSON handler to the ``ledger_kernel`` logger.

    Only the first call has an effect; the kernel logger does not
    propagate to the root logger.
    """
    global _configured
    with _configure_lock:
        if _configured:
            return
        _configured = True

        if handler is None:
            handler = logging.StreamHandler(stream or sys.stderr)
        handler.setFormatter(StructuredFormatter())

        kernel_logger = logging.getLogger(LOGGER_NAMESPACE)
        kernel_logger.setLevel(level)
        kernel_logger.propagate = False
        kernel_logger.addHandler(handler)


def reset_logging() -> None:
    """Undo ``configure_logging``. Test suites only."""
    global _configured
    with _configure_lock:
        _configured = False
        kernel_logger = logging.getLogger(LOGGER_NAMESPACE)
        kernel_logger.handlers.clear()
        kernel_logger.setLevel(logging.WARNING)
