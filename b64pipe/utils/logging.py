"""
Logging configuration for b64pipe.

Console output goes through rich on stderr, because stdout may be carrying
decoded bytes. An optional log file receives either plain lines or one JSON
object per record. Records are stamped with the source and payload they
concern through a shared ``ContextFilter``.
"""

import functools
import json
import logging
import threading
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from rich.console import Console
from rich.logging import RichHandler

from b64pipe.config import get_settings

# Attributes every LogRecord has; anything else arrived through ``extra``
# or the context filter.
_STANDARD_ATTRS = set(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}

# Marks handlers installed by setup_logging so reconfiguration only replaces ours
_HANDLER_TAG = "_b64pipe_handler"

PLAIN_FILE_FORMAT = "%(asctime)s %(levelname)-8s %(name)s [%(source_id)s#%(payload_index)s] %(message)s"


class StructuredFormatter(logging.Formatter):
    """One JSON object per record, with payload context as top-level keys."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in vars(record).items():
            if key not in _STANDARD_ATTRS and value is not None:
                entry[key] = value

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


class ContextFilter(logging.Filter):
    """Copy the current run context onto every record passing through."""

    def __init__(self) -> None:
        super().__init__()
        self.context: Dict[str, Any] = {}
        self._lock = threading.Lock()

    def set_context(self, **kwargs: Any) -> None:
        with self._lock:
            self.context.update(kwargs)

    def remove(self, *keys: str) -> None:
        with self._lock:
            for key in keys:
                self.context.pop(key, None)

    def filter(self, record: logging.LogRecord) -> bool:
        with self._lock:
            context = dict(self.context)
        for key, value in context.items():
            # Per-call ``extra`` wins over the ambient context
            if not hasattr(record, key):
                setattr(record, key, value)
        for key in ("source_id", "payload_index"):
            if not hasattr(record, key):
                setattr(record, key, None)
        return True


context_filter = ContextFilter()


class LogContext:
    """
    Temporarily add fields to the logging context.

    Nested contexts restore the values they shadowed on exit:

        with LogContext(source_id="dump.txt"):
            ...
    """

    def __init__(self, **kwargs: Any) -> None:
        self.context = kwargs
        self.shadowed: Dict[str, Any] = {}

    def __enter__(self) -> "LogContext":
        self.shadowed = {
            key: context_filter.context[key]
            for key in self.context
            if key in context_filter.context
        }
        context_filter.set_context(**self.context)
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        context_filter.remove(*self.context)
        if self.shadowed:
            context_filter.set_context(**self.shadowed)


def _console_handler(level: str, show_locals: bool) -> RichHandler:
    handler = RichHandler(
        console=Console(stderr=True),
        show_time=False,
        show_path=False,
        rich_tracebacks=True,
        tracebacks_show_locals=show_locals,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    handler.setLevel(level)
    return handler


def _file_handler(path: Path, level: str, structured: bool) -> logging.FileHandler:
    handler = logging.FileHandler(path, encoding="utf-8")
    if structured:
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(logging.Formatter(PLAIN_FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    handler.setLevel(level)
    return handler


def setup_logging(
    log_level: Optional[str] = None,
    log_file_path: Optional[Path] = None,
    use_structured_logging: Optional[bool] = None,
) -> None:
    """
    Configure logging for the application.

    Calling it again replaces the handlers installed by the previous call.

    Args:
        log_level: Logging level (defaults to settings)
        log_file_path: Path to log file (defaults to settings)
        use_structured_logging: Write JSON lines to the log file
    """
    settings = get_settings()

    level = (log_level or settings.log_level).upper()
    log_file_path = log_file_path or settings.get_log_file_path()
    if use_structured_logging is None:
        use_structured_logging = settings.structured_logging

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in list(root_logger.handlers):
        if getattr(handler, _HANDLER_TAG, False):
            root_logger.removeHandler(handler)
            handler.close()

    handlers = [_console_handler(level, settings.dev_mode)]
    if log_file_path:
        handlers.append(_file_handler(log_file_path, level, use_structured_logging))

    for handler in handlers:
        setattr(handler, _HANDLER_TAG, True)
        handler.addFilter(context_filter)
        root_logger.addHandler(handler)

    logging.getLogger(__name__).debug(
        f"Logging at {level}" + (f", file {log_file_path}" if log_file_path else "")
    )


def get_logger(name: str) -> logging.Logger:
    """Return the logger for a module (pass ``__name__``)."""
    return logging.getLogger(name)


def log_performance(func):
    """
    Log how long a call took, and whether it raised.

    Usage:
        @log_performance
        def run(self, source, extractor_spec, sink_factory) -> RunReport:
            ...
    """

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        logger = get_logger(func.__module__)
        name = func.__qualname__
        started = time.perf_counter()
        try:
            result = func(*args, **kwargs)
        except Exception as e:
            logger.error(
                f"{name} failed after {time.perf_counter() - started:.3f}s: {e}",
                extra={"duration_seconds": time.perf_counter() - started},
            )
            raise
        duration = time.perf_counter() - started
        logger.debug(f"{name} took {duration:.3f}s", extra={"duration_seconds": duration})
        return result

    return wrapper


# Library use stays silent until the application calls setup_logging
logging.getLogger("b64pipe").addHandler(logging.NullHandler())
