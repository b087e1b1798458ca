"""
Logging for the cohort tracker.

Everything logs under the ``visual_tracker`` logger. Records can carry
tracker context (which student, objective, group or expertise check an
operation touched); :class:`ContextFilter` copies the current context onto
each record and :class:`StructuredFormatter` writes it out as JSON.

The module configures itself on import from the ``ENVIRONMENT`` variable
(``development``, ``production`` or ``test``) unless the root logger already
has handlers.
"""

from __future__ import annotations

import json
import logging
import logging.config
import os
import time
from collections.abc import Callable
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from functools import wraps
from pathlib import Path
from types import TracebackType
from typing import Any, ParamSpec, TypeVar

P = ParamSpec("P")
R = TypeVar("R")

ROOT_LOGGER = "visual_tracker"
CONTEXT_FIELDS = ("operation", "student_id", "objective_code", "domain_id", "group_id")

# level, log file, structured, console
ENVIRONMENT_PROFILES: dict[str, tuple[str, str | None, bool, bool]] = {
    "development": ("DEBUG", "./logs/development.log", False, True),
    "production": ("INFO", "./logs/production.log", True, False),
    "test": ("WARNING", None, False, False),
}


class StructuredFormatter(logging.Formatter):
    """One JSON object per record, including any tracker context fields."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        entry.update(
            {name: getattr(record, name) for name in CONTEXT_FIELDS if hasattr(record, name)}
        )

        if record.exc_info and record.exc_info[1] is not None:
            entry["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": self.formatException(record.exc_info),
            }

        return json.dumps(entry, ensure_ascii=False, default=str)


_log_context: ContextVar[dict[str, Any]] = ContextVar("tracker_log_context", default={})


class ContextFilter(logging.Filter):
    """
    Stamps the current tracker context onto every record it sees.

    The context lives in a :class:`~contextvars.ContextVar`, so each request
    handled by the web app (sync routes run in copied contexts) keeps its own.
    The stored dict is replaced, never mutated.
    """

    @property
    def context(self) -> dict[str, Any]:
        return dict(_log_context.get())

    @context.setter
    def context(self, fields: dict[str, Any]) -> None:
        _log_context.set(dict(fields))

    def filter(self, record: logging.LogRecord) -> bool:
        record.__dict__.update(_log_context.get())
        return True


context_filter = ContextFilter()


def _handler(kind: str, level: str, formatter: str, log_file: str | None = None) -> dict[str, Any]:
    if kind == "console":
        target: dict[str, Any] = {"class": "logging.StreamHandler", "stream": "ext://sys.stdout"}
    else:
        target = {
            "class": "logging.handlers.RotatingFileHandler",
            "filename": log_file,
            "maxBytes": 10 * 1024 * 1024,
            "backupCount": 5,
            "encoding": "utf-8",
        }
    return {**target, "level": level, "formatter": formatter, "filters": ["context"]}


def setup_logging(
    level: str = "INFO",
    log_file: str | None = None,
    structured: bool = True,
    enable_console: bool = True,
) -> None:
    """
    Install handlers for the tracker, SQLAlchemy and uvicorn loggers.

    Args:
        level: Minimum level for tracker records.
        log_file: Rotating JSON log file; ``None`` disables file output.
        structured: JSON on the console instead of plain text.
        enable_console: Write to stdout.
    """
    handlers: dict[str, dict[str, Any]] = {}
    if enable_console:
        handlers["console"] = _handler("console", level, "json" if structured else "plain")
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers["file"] = _handler("file", level, "json", log_file)
    names = list(handlers)

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "json": {"()": StructuredFormatter},
                "plain": {
                    "format": "%(asctime)s %(levelname)-8s %(name)s: %(message)s",
                    "datefmt": "%H:%M:%S",
                },
            },
            "filters": {"context": {"()": lambda: context_filter}},
            "handlers": handlers,
            "loggers": {
                ROOT_LOGGER: {"level": level, "handlers": names, "propagate": False},
                "sqlalchemy.engine": {"level": "WARNING", "handlers": names, "propagate": False},
                "uvicorn": {"level": "INFO", "handlers": names, "propagate": False},
            },
            "root": {"level": level, "handlers": names},
        }
    )


def get_logger(name: str) -> logging.Logger:
    """Return ``name`` as a child of the ``visual_tracker`` logger."""
    if name != ROOT_LOGGER and not name.startswith(f"{ROOT_LOGGER}."):
        name = f"{ROOT_LOGGER}.{name}"
    return logging.getLogger(name)


def set_context(**fields: Any) -> None:
    """Attach fields such as ``student_id`` to every following record."""
    _log_context.set({**_log_context.get(), **fields})


def clear_context() -> None:
    _log_context.set({})


class LogContext:
    """
    Adds context fields for the duration of a ``with`` block.

    The previous context is restored on exit, so nested blocks and
    :func:`set_context` calls made inside the block do not leak out.
    """

    def __init__(self, **fields: Any):
        self.fields = fields
        self._token: Token[dict[str, Any]] | None = None

    def __enter__(self) -> LogContext:
        self._token = _log_context.set({**_log_context.get(), **self.fields})
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if self._token is not None:
            _log_context.reset(self._token)
            self._token = None


def _traced(
    operation: str, logger: logging.Logger | None, level: int
) -> Callable[[Callable[P, R]], Callable[P, R]]:
    def decorator(func: Callable[P, R]) -> Callable[P, R]:
        @wraps(func)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            log = logger or get_logger(func.__module__)
            started = time.perf_counter()
            with LogContext(operation=operation):
                log.log(level, "Starting %s", operation)
                try:
                    result = func(*args, **kwargs)
                except Exception as exc:
                    log.error(
                        "%s failed after %.3fs: %s",
                        operation,
                        time.perf_counter() - started,
                        exc,
                        exc_info=True,
                    )
                    raise
                log.log(level, "%s finished in %.3fs", operation, time.perf_counter() - started)
                return result

        return wrapper

    return decorator


def log_operation(
    operation: str, logger: logging.Logger | None = None
) -> Callable[[Callable[P, R]], Callable[P, R]]:
    """
    Log start, finish and failure of an application operation at INFO.

    Example:
        >>> @log_operation("add_student")
        ... def add_student(session, name): ...
    """
    return _traced(operation, logger, logging.INFO)


def log_database_operation(operation: str) -> Callable[[Callable[P, R]], Callable[P, R]]:
    """Same as :func:`log_operation` for repository calls, at DEBUG and tagged ``db_``."""
    return _traced(f"db_{operation}", get_logger("database"), logging.DEBUG)


def auto_configure_logging() -> None:
    env = os.getenv("ENVIRONMENT", "development").lower()
    level, log_file, structured, console = ENVIRONMENT_PROFILES.get(
        env, ENVIRONMENT_PROFILES["development"]
    )
    setup_logging(level=level, log_file=log_file, structured=structured, enable_console=console)
    get_logger(__name__).info("Logging configured for %s environment", env)


if not logging.getLogger().handlers:
    auto_configure_logging()
