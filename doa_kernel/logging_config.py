"""
Module: doa_kernel.logging_config
Responsibility: JSON log lines for every approval event, tagged with the
    context bound by the operation that emitted them.
Architecture position: Kernel > infrastructure.  Imported by every layer;
    imports nothing from the kernel.

Invariants enforced:
    - One record, one line of JSON.  Event names go in ``message``; data
      goes in ``extra=`` fields, never interpolated into the message.
    - Bound context fields take precedence over an ``extra`` key of the
      same name, so a record can never misattribute its workflow.
    - ``configure_logging`` installs at most one handler.
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
from contextlib import contextmanager
from contextvars import ContextVar, Token
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Iterator

_ROOT = "doa_kernel"


class LogContext:
    """Operation-scoped log fields, carried in context variables.

    ``ApprovalService`` binds ``company_id``, ``actor_id`` and
    ``workflow_id`` around each operation; callers may add a
    ``correlation_id`` for the request that triggered it.
    """

    FIELDS: tuple[str, ...] = (
        "correlation_id",
        "company_id",
        "actor_id",
        "workflow_id",
    )
    _vars: dict[str, ContextVar[str | None]] = {
        field: ContextVar(f"doa_log_{field}", default=None) for field in FIELDS
    }

    @classmethod
    def set(cls, **fields: Any) -> None:
        """Overwrite the given fields.  None values and unknown names are skipped."""
        for field, value in fields.items():
            var = cls._vars.get(field)
            if var is not None and value is not None:
                var.set(str(value))

    @classmethod
    def get_all(cls) -> dict[str, str]:
        return {
            field: value
            for field, var in cls._vars.items()
            if (value := var.get()) is not None
        }

    @classmethod
    def clear(cls) -> None:
        for var in cls._vars.values():
            var.set(None)

    @classmethod
    @contextmanager
    def bind(cls, **fields: Any) -> Iterator[type["LogContext"]]:
        """Set fields for the duration of a ``with`` block, then restore them."""
        tokens: list[tuple[ContextVar[str | None], Token]] = []
        for field, value in fields.items():
            var = cls._vars.get(field)
            if var is not None and value is not None:
                tokens.append((var, var.set(str(value))))
        try:
            yield cls
        finally:
            for var, token in reversed(tokens):
                var.reset(token)


# Attributes every LogRecord carries; anything else came from ``extra=``
_RECORD_ATTRS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}


def _to_json(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    # UUID, Decimal and anything else unknown to json
    return str(value)


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    """Type, message and the public attributes of a raised exception.

    ``DoaKernelError`` subclasses expose a ``code`` and their context
    (workflow id, user id, level, ...); each becomes an ``exc_`` field.
    """
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
    """Render a record as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        extras = {
            key: value
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRS
        }
        # Later keys win: base fields over extras, bound context over both
        payload: dict[str, Any] = {
            **extras,
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **LogContext.get_all(),
        }
        if record.exc_info and record.exc_info[1] is not None:
            payload.update(_exception_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=_to_json)


def get_logger(name: str) -> logging.Logger:
    """Logger for ``name`` below the ``doa_kernel`` root."""
    return logging.getLogger(f"{_ROOT}.{name}")


_configure_lock = threading.Lock()
_configured = False


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """Attach a JSON handler to the ``doa_kernel`` root logger.

    Only the first call has an effect.  ``handler`` wins over ``stream``;
    with neither, records go to stderr.
    """
    global _configured
    with _configure_lock:
        if _configured:
            return
        _configured = True

    root = logging.getLogger(_ROOT)
    root.setLevel(level)
    root.propagate = False
    if handler is None:
        handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(StructuredFormatter())
    root.addHandler(handler)


def reset_logging() -> None:
    """Drop handlers and allow ``configure_logging`` to run again."""
    global _configured
    with _configure_lock:
        _configured = False
    root = logging.getLogger(_ROOT)
    root.handlers.clear()
    root.setLevel(logging.WARNING)
