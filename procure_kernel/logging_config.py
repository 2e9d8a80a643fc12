"""
Module: procure_kernel.logging_config
Responsibility: One JSON object per log line for everything under the
    ``procure_kernel`` logger namespace, with the current scope and
    collection attached from context.
Architecture position: Kernel.  Imported by every other layer; imports
    nothing from the project.

Invariants enforced:
    - Every line carries ts, level, logger and message.
    - Keys passed through ``extra={...}`` appear verbatim at top level;
      bound context fields never overwrite them.
    - A logged ProcureKernelError contributes ``exc_code`` and its public
      attributes as ``exc_<name>``.

Usage:
    logger = get_logger("engines.allocation")
    with LogContext.bind(scope="user-1", collection="indentData"):
        logger.info("allocation_walk_completed", extra={"line_count": 12})
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
from contextvars import ContextVar, Token
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

_LOGGER_PREFIX = "procure_kernel"

# -- bound context -------------------------------------------------------------

_CONTEXT_FIELDS = ("correlation_id", "scope", "collection", "operation")

_context_vars: dict[str, ContextVar[str | None]] = {
    name: ContextVar(f"procure_log_{name}", default=None) for name in _CONTEXT_FIELDS
}


class LogContext:
    """
    Context fields copied onto every record formatted in the current task.

    Fields: ``correlation_id`` (one user action or script run), ``scope``
    (owning user), ``collection`` and ``operation``.  Unknown names and
    None values are ignored.
    """

    @staticmethod
    def set(**fields: str | None) -> None:
        for name, value in fields.items():
            if value is not None and name in _context_vars:
                _context_vars[name].set(value)

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

    @staticmethod
    def bind(**fields: str | None) -> "_BoundContext":
        """Set fields for the duration of a ``with`` block, then restore them."""
        return _BoundContext(fields)


class _BoundContext:
    def __init__(self, fields: dict[str, str | None]):
        self._fields = fields
        self._tokens: list[tuple[ContextVar[str | None], Token]] = []

    def __enter__(self) -> type[LogContext]:
        for name, value in self._fields.items():
            var = _context_vars.get(name)
            if var is not None and value is not None:
                self._tokens.append((var, var.set(value)))
        return LogContext

    def __exit__(self, *exc: Any) -> None:
        while self._tokens:
            var, token = self._tokens.pop()
            var.reset(token)


# -- formatting ----------------------------------------------------------------

_RESERVED = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "taskName"}


def _json_default(value: Any) -> Any:
    if isinstance(value, (Decimal, UUID)):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    return str(value)


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    code = getattr(exc, "code", None)
    if code is not None:
        fields["exc_code"] = code
    for name, value in vars(exc).items():
        if not name.startswith("_") and name not in ("args", "code"):
            fields[f"exc_{name}"] = value
    return fields


class StructuredFormatter(logging.Formatter):
    """Render a LogRecord as one line of JSON."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name, value in vars(record).items():
            if name not in _RESERVED and name not in payload:
                payload[name] = value
        for name, value in LogContext.get_all().items():
            payload.setdefault(name, value)

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(_exception_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_json_default)


# -- setup ---------------------------------------------------------------------


def get_logger(name: str) -> logging.Logger:
    """``procure_kernel.<name>``; every project logger lives under this prefix."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


_configured = False
_lock = threading.Lock()


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """Attach one structured handler to the namespace. Later calls are no-ops."""
    global _configured
    with _lock:
        if _configured:
            return
        _configured = True

    namespace = logging.getLogger(_LOGGER_PREFIX)
    namespace.setLevel(level)
    namespace.propagate = False
    target = handler if handler is not None else logging.StreamHandler(stream or sys.stderr)
    target.setFormatter(StructuredFormatter())
    namespace.addHandler(target)


def reset_logging() -> None:
    """Drop handlers and return the namespace to WARNING. Tests only."""
    global _configured
    with _lock:
        _configured = False
    namespace = logging.getLogger(_LOGGER_PREFIX)
    namespace.handlers.clear()
    namespace.setLevel(logging.WARNING)
