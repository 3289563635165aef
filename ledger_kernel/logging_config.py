"""
Ledger event logging.

Every record under the ``ledger_kernel`` logger is written as one JSON object:

    {"ts": ..., "level": "INFO", "logger": "ledger_kernel.services.transaction",
     "event": "transaction_posted", "company_id": ..., "transaction_id": ...,
     "transaction_number": "JE2024000001", "total_amount": "100.00"}

The ledger identifiers in scope (company, actor, batch, batch item,
transaction) come from ``LogContext`` and are added to every record logged
inside a ``LogContext.bind`` block, so services log only what is specific to
the event.  Validation outcomes are reduced to their error and warning codes,
whether passed as an extra or carried by a ``TransactionValidationError``.
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
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Any, Iterator
from uuid import UUID

# Output order of the ledger identifiers, outermost scope first.
CONTEXT_FIELDS: tuple[str, ...] = (
    "correlation_id",
    "company_id",
    "actor_id",
    "batch_id",
    "item_index",
    "transaction_id",
    "transaction_number",
)

_context_vars: dict[str, ContextVar[str | None]] = {
    name: ContextVar(f"ledger_log_{name}", default=None) for name in CONTEXT_FIELDS
}


def _context_var(name: str) -> ContextVar[str | None]:
    try:
        return _context_vars[name]
    except KeyError:
        raise ValueError(f"Unknown log context field: {name}") from None


class LogContext:
    """Ledger identifiers attached to every record logged in the current scope.

    Values are stored as strings.  Storage is per thread and per asyncio task;
    worker threads start empty, so callers hand ``get_all()`` over and
    ``bind(**context)`` it on the worker.
    """

    @staticmethod
    def set(**fields: Any) -> None:
        """Set fields for the rest of the current context.  None is ignored."""
        for name, value in fields.items():
            if value is not None:
                _context_var(name).set(str(value))

    @staticmethod
    def get_all() -> dict[str, str]:
        """The fields currently set, in CONTEXT_FIELDS order."""
        values = ((name, _context_vars[name].get()) for name in CONTEXT_FIELDS)
        return {name: value for name, value in values if value is not None}

    @staticmethod
    def clear() -> None:
        for var in _context_vars.values():
            var.set(None)

    @staticmethod
    @contextmanager
    def bind(**fields: Any) -> Iterator[None]:
        """Set fields for the duration of a ``with`` block, then restore them.

        None values are skipped, so an optional identifier can be passed
        through unconditionally.
        """
        tokens = [
            (var, var.set(str(value)))
            for var, value in (
                (_context_var(name), value) for name, value in fields.items()
            )
            if value is not None
        ]
        try:
            yield
        finally:
            for var, token in reversed(tokens):
                var.reset(token)


# ---------------------------------------------------------------------------
# Formatting
# ---------------------------------------------------------------------------

# Attributes every LogRecord has; anything else on a record came from extra=.
_RECORD_ATTRIBUTES: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}


def _is_validation_result(value: Any) -> bool:
    return (
        isinstance(getattr(value, "errors", None), tuple)
        and isinstance(getattr(value, "warnings", None), tuple)
        and hasattr(value, "is_valid")
    )


def _validation_codes(result: Any) -> dict[str, Any]:
    return {
        "is_valid": result.is_valid,
        "error_codes": [e.code for e in result.errors],
        "warning_codes": [w.code for w in result.warnings],
    }


def _ledger_json(value: Any) -> Any:
    if isinstance(value, Decimal):
        # Amounts keep their exact digits.
        return str(value)
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if _is_validation_result(value):
        return _validation_codes(value)
    return str(value)


class StructuredFormatter(logging.Formatter):
    """Render a record as one JSON line of ledger event data."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "event": record.getMessage(),
        }
        context = LogContext.get_all()
        payload.update(context)

        for key, value in vars(record).items():
            if key in _RECORD_ATTRIBUTES or key in payload:
                continue
            if _is_validation_result(value):
                payload.update(_validation_codes(value))
            else:
                payload[key] = value

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(self._error_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_ledger_json)

    @staticmethod
    def _error_fields(exc: BaseException) -> dict[str, Any]:
        fields: dict[str, Any] = {
            "error_type": type(exc).__name__,
            "error_message": str(exc),
        }
        code = getattr(exc, "code", None)
        if code is not None:
            fields["error_code"] = code
        for name, value in vars(exc).items():
            if name.startswith("_"):
                continue
            if _is_validation_result(value):
                fields["error_codes"] = [e.code for e in value.errors]
                fields["warning_codes"] = [w.code for w in value.warnings]
            else:
                # Identifiers carried by the error (transaction_id, status, ...)
                fields[f"error_{name}"] = value
        return fields


# ---------------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------------

_ROOT_LOGGER = "ledger_kernel"

_setup_lock = threading.Lock()
_handler: logging.Handler | None = None


def get_logger(name: str) -> logging.Logger:
    """Logger for a ledger component, e.g. ``get_logger("batch.executor")``."""
    return logging.getLogger(f"{_ROOT_LOGGER}.{name}")


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """Install the JSON handler on the ledger logger tree.

    Only the first call has an effect until ``reset_logging()``; engine
    start-up calls this with defaults, so an application that wants another
    level or destination configures logging before initializing the engine.
    """
    global _handler
    with _setup_lock:
        if _handler is not None:
            return
        _handler = handler or logging.StreamHandler(stream or sys.stderr)
        _handler.setFormatter(StructuredFormatter())

        root = logging.getLogger(_ROOT_LOGGER)
        root.setLevel(level)
        root.propagate = False
        root.addHandler(_handler)


def reset_logging() -> None:
    """Remove the installed handler so ``configure_logging`` applies again."""
    global _handler
    with _setup_lock:
        root = logging.getLogger(_ROOT_LOGGER)
        if _handler is not None:
            root.removeHandler(_handler)
            _handler = None
        root.setLevel(logging.WARNING)
