"""
Structured logging for anvilkit.

Thin layer over the standard library ``logging`` package. Modules obtain a
logger with ``get_logger(__name__)`` and attach structured fields through
``extra={...}``; the formatter installed by ``configure_logging`` renders
those fields as ``key=value`` pairs after the message.

Logs go to stderr by default so stdout stays free for a request/response
transport.
"""

from __future__ import annotations

import contextvars
import logging
import sys
from typing import Any, Dict, Optional, TextIO, Union

ROOT_LOGGER_NAME = "anvilkit"

DEFAULT_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"

# Attributes present on every LogRecord; anything else came from ``extra``.
_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "asctime", "taskName"}

_context_fields: contextvars.ContextVar[Dict[str, Any]] = contextvars.ContextVar(
    "anvilkit_log_context", default={}
)

_HANDLER_MARKER = "_anvilkit_handler"


class StructuredFormatter(logging.Formatter):
    """Formatter that appends ``extra`` fields as ``key=value`` pairs."""

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        fields = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RESERVED_ATTRS and not key.startswith("_")
        }
        if not fields:
            return base
        rendered = " ".join(f"{key}={_render(value)}" for key, value in sorted(fields.items()))
        return f"{base} [{rendered}]"


def _render(value: Any) -> str:
    text = str(value)
    if " " in text or not text:
        return repr(text)
    return text


class _ContextFilter(logging.Filter):
    """Copies LogContext fields onto each record without clobbering extras."""

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in _context_fields.get().items():
            if not hasattr(record, key):
                setattr(record, key, value)
        return True


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger inside the ``anvilkit`` namespace.

    Args:
        name: Usually ``__name__`` of the calling module.

    Returns:
        Configured ``logging.Logger``.
    """
    if name != ROOT_LOGGER_NAME and not name.startswith(ROOT_LOGGER_NAME + "."):
        name = f"{ROOT_LOGGER_NAME}.{name}"
    return logging.getLogger(name)


def configure_logging(
    level: Union[int, str] = "INFO",
    *,
    stream: Optional[TextIO] = None,
    fmt: str = DEFAULT_FORMAT,
) -> logging.Logger:
    """
    Install a structured stderr handler on the ``anvilkit`` logger.

    Calling it again replaces the handler installed by a previous call.

    Args:
        level: Log level name or number.
        stream: Output stream (defaults to ``sys.stderr``).
        fmt: ``logging`` format string for the message prefix.

    Returns:
        The package root logger.
    """
    root = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in list(root.handlers):
        if getattr(handler, _HANDLER_MARKER, False):
            root.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(StructuredFormatter(fmt))
    handler.addFilter(_ContextFilter())
    setattr(handler, _HANDLER_MARKER, True)

    root.addHandler(handler)
    root.setLevel(_coerce_level(level))
    root.propagate = False
    return root


def set_level(level: Union[int, str]) -> None:
    """Change the level of the package root logger."""
    logging.getLogger(ROOT_LOGGER_NAME).setLevel(_coerce_level(level))


def disable_logging() -> None:
    """Silence every anvilkit logger."""
    logging.getLogger(ROOT_LOGGER_NAME).setLevel(logging.CRITICAL + 1)


def enable_debug() -> None:
    """Shortcut for ``configure_logging("DEBUG")``."""
    configure_logging("DEBUG")


def _coerce_level(level: Union[int, str]) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.upper())
    if not isinstance(resolved, int):
        raise ValueError(f"Unknown log level: {level!r}")
    return resolved


class LogContext:
    """
    Attach fields to every record logged inside a ``with`` block.

    Backed by ``contextvars`` so each asyncio task sees its own fields.

    Example:
        >>> with LogContext(instance_id=instance.id):
        ...     logger.info("Probing node")
    """

    def __init__(self, **fields: Any) -> None:
        self._fields = fields
        self._token: Optional[contextvars.Token[Dict[str, Any]]] = None

    def __enter__(self) -> "LogContext":
        merged = {**_context_fields.get(), **self._fields}
        self._token = _context_fields.set(merged)
        return self

    def __exit__(self, *exc_info: object) -> None:
        if self._token is not None:
            _context_fields.reset(self._token)
            self._token = None
