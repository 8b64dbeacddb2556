"""Logging setup for the gateway.

Every record is decorated with the request-scoped fields of the generation
stream it was emitted from (request id, authenticated key owner, resolved
model). Production writes one JSON object per line; other environments get a
single readable line with a ``[req=..., user=..., model=...]`` suffix.
"""

import json
import logging
import sys
from contextvars import ContextVar
from typing import Dict, NamedTuple, Optional, Tuple


class _ContextField(NamedTuple):
    key: str
    label: str
    var: ContextVar


_FIELDS: Tuple[_ContextField, ...] = (
    _ContextField("request_id", "req", ContextVar("request_id", default=None)),
    _ContextField("api_user", "user", ContextVar("api_user", default=None)),
    _ContextField("model", "model", ContextVar("model", default=None)),
)

QUIET_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "httpx", "httpcore")


def set_log_context(
    request_id: Optional[str] = None,
    api_user: Optional[str] = None,
    model: Optional[str] = None,
):
    """Update the given fields for the current task; ``None`` leaves a field alone."""
    values = {"request_id": request_id, "api_user": api_user, "model": model}
    for field in _FIELDS:
        if values[field.key] is not None:
            field.var.set(values[field.key])


def clear_log_context():
    for field in _FIELDS:
        field.var.set(None)


def current_log_context() -> Dict[str, str]:
    """Fields set for the current task, keyed by their JSON name."""
    return {field.key: field.var.get() for field in _FIELDS if field.var.get()}


class _ContextFormatter(logging.Formatter):
    def _exception_text(self, record: logging.LogRecord) -> Optional[str]:
        if record.exc_info and record.exc_info[1]:
            return self.formatException(record.exc_info)
        return None


class StructuredFormatter(_ContextFormatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **current_log_context(),
        }
        exception = self._exception_text(record)
        if exception:
            entry["exception"] = exception
        return json.dumps(entry)


class HumanReadableFormatter(_ContextFormatter):
    def format(self, record: logging.LogRecord) -> str:
        line = (
            f"[{self.formatTime(record, self.datefmt)}] {record.levelname:8s} "
            f"{record.name}: {record.getMessage()}"
        )
        context = current_log_context()
        labelled = [f"{field.label}={context[field.key]}" for field in _FIELDS if field.key in context]
        if labelled:
            line += f" [{', '.join(labelled)}]"
        exception = self._exception_text(record)
        if exception:
            line += "\n" + exception
        return line


def _formatter_for(environment: str) -> logging.Formatter:
    if environment == "production":
        return StructuredFormatter()
    return HumanReadableFormatter(datefmt="%Y-%m-%d %H:%M:%S")


def configure_logging(environment: str = "development", log_level: str = "INFO"):
    """Replace the root handlers with a single stdout handler.

    Args:
        environment: "production" selects JSON lines, anything else readable lines.
        log_level: Level name; unknown names fall back to INFO.
    """
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(_formatter_for(environment))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
