"""
Logging setup for kvmctl.

Console logs go to stderr so command output on stdout stays parseable. An
optional rotating file log records everything at DEBUG, as text or JSON
lines. Records carry the fields of the active LogContext; the CLI sets
``command``, ``uri`` and ``vm`` for each invocation.
"""

from __future__ import annotations

import json
import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Any, Dict, Optional

CONTEXT_ATTR = "kvmctl_context"

CONSOLE_FORMAT = "%(levelname)s %(name)s: %(message)s"
FILE_FORMAT = "%(asctime)s %(levelname)s %(name)s [%(filename)s:%(lineno)d] %(message)s"

LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUPS = 5

# Third-party loggers that are noisy below WARNING
QUIET_LOGGERS = ("libvirt",)


def record_context(record: logging.LogRecord) -> Dict[str, Any]:
    """Context fields attached to a record, empty outside any LogContext."""
    return getattr(record, CONTEXT_ATTR, {})


class JSONFormatter(logging.Formatter):
    """One JSON object per record, with context fields at the top level."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in record_context(record).items():
            entry.setdefault(key, value)

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


class TextFormatter(logging.Formatter):
    """Plain text with the context appended as ``key=value`` pairs."""

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = record_context(record)
        if context:
            pairs = " ".join(f"{k}={v}" for k, v in context.items())
            line = f"{line} [{pairs}]"
        return line


class ColoredFormatter(logging.Formatter):
    """Console formatter that colors the level name."""

    COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        # Work on a copy; other handlers see the same record
        colored = logging.makeLogRecord(record.__dict__)
        color = self.COLORS.get(record.levelno, "")
        colored.levelname = f"{color}{record.levelname}{self.RESET}"
        return super().format(colored)


def setup_logging(
    verbose: bool = False,
    log_file: Optional[Path] = None,
    json_logs: bool = False,
) -> None:
    """
    Configure the root logger for a kvmctl process.

    Args:
        verbose: Log DEBUG to the console instead of INFO
        log_file: Also log to this rotating file, always at DEBUG
        json_logs: Write the file as JSON lines instead of text
    """
    console_level = logging.DEBUG if verbose else logging.INFO

    root = logging.getLogger()
    root.handlers.clear()

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level)
    formatter_cls = ColoredFormatter if sys.stderr.isatty() else logging.Formatter
    console.setFormatter(formatter_cls(CONSOLE_FORMAT))
    root.addHandler(console)

    root_level = console_level
    if log_file:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=LOG_FILE_MAX_BYTES,
            backupCount=LOG_FILE_BACKUPS,
            encoding="utf-8",
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(JSONFormatter() if json_logs else TextFormatter(FILE_FORMAT))
        root.addHandler(file_handler)
        root_level = logging.DEBUG

    root.setLevel(root_level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


class LogContext:
    """
    Attach fields to every record created inside the block.

    Contexts nest: inner fields are added to (and override) outer ones.
    Fields whose value is None are left out.

    Example:
        with LogContext(command="start", vm="web"):
            logger.info("Started VM: web")
    """

    def __init__(self, **fields):
        self.fields = {k: v for k, v in fields.items() if v is not None}
        self._previous = None

    def __enter__(self) -> "LogContext":
        previous = logging.getLogRecordFactory()
        fields = self.fields

        def factory(*args, **kwargs):
            record = previous(*args, **kwargs)
            setattr(record, CONTEXT_ATTR, {**record_context(record), **fields})
            return record

        self._previous = previous
        logging.setLogRecordFactory(factory)
        return self

    def __exit__(self, *args) -> None:
        logging.setLogRecordFactory(self._previous)
