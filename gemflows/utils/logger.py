# gemflows/utils/logger.py
"""Logging
-----------
Rich console output on stderr (stdout belongs to prompts and `run` results)
and optional JSON-lines files. Context such as run_id, workflow or step_id
rides on every record as `record.ctx`.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from typing import Any, Dict, Optional

from rich.console import Console
from rich.logging import RichHandler

from gemflows.utils.config import LogLevel, Settings, get_settings


__all__ = [
    "ContextAdapter",
    "get_logger",
    "set_log_level",
    "bind",
    "unbind",
    "log_with_context",
    "attach_file_logger",
    "detach_file_logger",
]

# Third-party loggers held at WARNING unless running at DEBUG
QUIET_LOGGERS = ("httpx", "httpcore", "google_genai", "posthog", "urllib3")
FILE_MAX_BYTES = 5 * 1024 * 1024

_config_lock = threading.Lock()
_configured = False
_run_context: Dict[str, Any] = {}


class ContextAdapter(logging.LoggerAdapter):
    """LoggerAdapter whose `extra` is a context dict copied onto each record."""

    def process(self, msg, kwargs):
        extra = dict(kwargs.get("extra") or {})
        extra["ctx"] = {**(self.extra or {}), **extra.get("ctx", {})}
        kwargs["extra"] = extra
        return msg, kwargs

    def child(self, **ctx: Any) -> "ContextAdapter":
        return ContextAdapter(self.logger, {**(self.extra or {}), **ctx})


class _RunContextFilter(logging.Filter):
    """Merges the bind() context under the record's own context."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.ctx = {**_run_context, **getattr(record, "ctx", {})}
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line: ts, level, logger, msg, thread, then context keys."""

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created, tz=timezone.utc)
        payload: Dict[str, Any] = {
            "ts": ts.isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "thread": record.threadName,
        }
        payload.update(getattr(record, "ctx", {}) or {})
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


class _ConsoleFormatter(logging.Formatter):
    # Parallel group members log from worker threads; tag them so lines can be told apart
    def format(self, record: logging.LogRecord) -> str:
        msg = super().format(record)
        if record.threadName.startswith("group-"):
            return f"[{record.threadName}] {msg}"
        return msg


def _to_level(level: LogLevel | str | int) -> int:
    if isinstance(level, int):
        return level
    name = level.value if isinstance(level, LogLevel) else str(level)
    return logging.getLevelName(name.upper()) if name.upper() in LogLevel.__members__ else logging.INFO


def _file_handler(path: os.PathLike | str, level: int, backups: int) -> logging.Handler:
    p = os.fspath(path)
    parent = os.path.dirname(p)
    if parent:
        os.makedirs(parent, exist_ok=True)
    fh = RotatingFileHandler(p, maxBytes=FILE_MAX_BYTES, backupCount=backups, encoding="utf-8", delay=True)
    fh.setLevel(level)
    fh.setFormatter(JsonFormatter())
    fh.addFilter(_RunContextFilter())
    return fh


def _quiet_third_party(level: int) -> None:
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def _configure(settings: Settings) -> None:
    level = _to_level(settings.LOG_LEVEL)
    root = logging.getLogger()
    root.setLevel(level)
    for h in list(root.handlers):
        root.removeHandler(h)

    console = RichHandler(
        console=Console(stderr=True, no_color=not settings.COLORIZED_OUTPUT),
        show_path=False,
        rich_tracebacks=True,
        markup=False,
        omit_repeated_times=False,
    )
    console.setLevel(level)
    console.setFormatter(_ConsoleFormatter("%(message)s"))
    console.addFilter(_RunContextFilter())
    root.addHandler(console)

    if settings.LOG_TO_FILE:
        root.addHandler(_file_handler(settings.LOG_FILE, level, backups=5))

    _quiet_third_party(level)


def _ensure_configured() -> None:
    global _configured
    if _configured:
        return
    with _config_lock:
        if not _configured:
            _configure(get_settings())
            _configured = True


def get_logger(name: Optional[str] = None) -> ContextAdapter:
    _ensure_configured()
    return ContextAdapter(logging.getLogger(name or "gemflows"), {})


def set_log_level(level: LogLevel | str) -> None:
    """Change the root and handler levels at runtime (used by `--log-level`)."""
    _ensure_configured()
    lvl = _to_level(level)
    root = logging.getLogger()
    root.setLevel(lvl)
    for h in root.handlers:
        h.setLevel(lvl)
    _quiet_third_party(lvl)


def bind(**kwargs: Any) -> None:
    """Add process-wide context, e.g. bind(run_id=..., recipe="blog_post")."""
    _run_context.update(kwargs)


def unbind(*keys: str) -> None:
    for k in keys:
        _run_context.pop(k, None)


def log_with_context(logger: logging.LoggerAdapter | logging.Logger, **kwargs: Any) -> ContextAdapter:
    """
    Scoped logger carrying extra context on top of the parent's.

        step_log = log_with_context(log, step_id="topic", step_type="input")
        step_log.info("reading input")
    """
    if isinstance(logger, ContextAdapter):
        return logger.child(**kwargs)
    base = logger.logger if isinstance(logger, logging.LoggerAdapter) else logger
    return ContextAdapter(base, dict(kwargs))


def attach_file_logger(path: os.PathLike | str, level: Optional[int] = None) -> logging.Handler:
    """Add a JSON-lines file handler (`gemflows run --log-file`); pass it back to detach_file_logger."""
    _ensure_configured()
    root = logging.getLogger()
    fh = _file_handler(path, level if level is not None else root.level, backups=3)
    root.addHandler(fh)
    return fh


def detach_file_logger(handler: logging.Handler) -> None:
    logging.getLogger().removeHandler(handler)
    handler.close()
