"""Structured logging for the session service (logfmt or JSON on stdout)."""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

_LOG = logging.getLogger(__name__)

_RESERVED_ATTRS = {
    "name",
    "msg",
    "args",
    "levelname",
    "levelno",
    "pathname",
    "filename",
    "module",
    "exc_info",
    "exc_text",
    "stack_info",
    "lineno",
    "funcName",
    "created",
    "msecs",
    "relativeCreated",
    "thread",
    "threadName",
    "processName",
    "process",
    "taskName",
    "message",
    "asctime",
}


def _iso_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds")


def _q(value: Any) -> str:
    """Return a logfmt-safe representation of ``value``."""

    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return f"{value}"
    escaped = str(value).replace("\\", "\\\\").replace("\n", "\\n").replace('"', '\\"')
    if " " in escaped or "=" in escaped or escaped == "":
        return f'"{escaped}"'
    return escaped


def _collect_extra(record: logging.LogRecord) -> dict[str, Any]:
    """Collect custom fields attached to ``record`` via ``extra=``."""

    extra: dict[str, Any] = {}
    fields = getattr(record, "fields", None)
    if isinstance(fields, dict):
        extra.update(fields)
    for key, value in record.__dict__.items():
        if key in _RESERVED_ATTRS or key in {"fields", "ts", "tag"}:
            continue
        extra.setdefault(key, value)
    return extra


class _LogfmtFormatter(logging.Formatter):
    """Format log records using a minimal logfmt schema."""

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401 - standard logging override
        ts = getattr(record, "ts", None) or _iso_now()
        tag = getattr(record, "tag", None) or record.name
        parts = [f"ts={ts}", f"lvl={record.levelname.lower()}", f"tag={_q(tag)}"]
        for key, value in _collect_extra(record).items():
            parts.append(f"{key}={_q(value)}")
        msg = record.getMessage()
        if msg and getattr(record, "tag", None) is None:
            parts.append(f"msg={_q(msg)}")
        if record.exc_info:
            parts.append(f"exc={_q(self.formatException(record.exc_info))}")
        return " ".join(parts)


class _JsonFormatter(logging.Formatter):
    """Format log records as JSON payloads."""

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401 - standard logging override
        payload: dict[str, Any] = {
            "ts": getattr(record, "ts", None) or _iso_now(),
            "level": record.levelname.lower(),
            "tag": getattr(record, "tag", None) or record.name,
        }
        if getattr(record, "tag", None) is None:
            payload["msg"] = record.getMessage()
        payload.update(_collect_extra(record))
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def setup_root_logger(level: str = "INFO", fmt: str = "logfmt") -> None:
    """Configure the root logger with a single stdout handler."""

    level_value = getattr(logging, level.upper(), None)
    if not isinstance(level_value, int):
        level_value = logging.INFO

    root = logging.getLogger()
    root.setLevel(level_value)
    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(_JsonFormatter() if fmt == "json" else _LogfmtFormatter())
    root.addHandler(handler)

    # werkzeug/waitress log through the root handler only
    for name in ("werkzeug", "waitress"):
        lib = logging.getLogger(name)
        lib.handlers.clear()
        lib.propagate = True

    log_event("logging.init", level=level.upper(), format=fmt)


def log_event(tag: str, level: str = "info", *, exc_info: bool = False, **fields: Any) -> None:
    """Emit a structured log line with ``tag`` and arbitrary ``fields``.

    ``exc_info=True`` attaches the traceback of the exception being handled.
    """

    logger = logging.getLogger(tag)
    log_fn = getattr(logger, level.lower(), None)
    if not callable(log_fn):
        log_fn = logger.info
    msg = " ".join(f"{key}={_q(value)}" for key, value in fields.items())
    log_fn(msg, exc_info=exc_info, extra={"fields": fields, "ts": _iso_now(), "tag": tag})


__all__ = ["log_event", "setup_root_logger"]
