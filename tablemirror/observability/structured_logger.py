"""
Structured Logging
==================

Logging setup for replicas.

Features:
- JSON-formatted logs
- Context enrichment (table, reader) through thread-local storage
- Optional log file
"""

import json
import logging
import os
import sys
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Optional

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# Thread-local storage for context
_context = threading.local()

_RESERVED = {
    'name', 'msg', 'args', 'created', 'filename', 'funcName',
    'levelname', 'levelno', 'lineno', 'module', 'msecs',
    'pathname', 'process', 'processName', 'relativeCreated',
    'stack_info', 'exc_info', 'exc_text', 'thread', 'threadName',
    'message', 'taskName'
}


def current_context() -> dict:
    return dict(getattr(_context, 'data', {}))


@contextmanager
def log_context(**kwargs):
    """
    Add context to all JSON logs emitted by this thread within scope.

    Usage:
        with log_context(table="dbo.User"):
            logger.info("Polling")  # Includes table
    """
    if not hasattr(_context, 'data'):
        _context.data = {}

    old_data = _context.data.copy()
    _context.data.update(kwargs)

    try:
        yield
    finally:
        _context.data = old_data


class JsonFormatter(logging.Formatter):
    """
    One JSON object per line.

    The table a reader thread is working on is promoted to a top-level "table"
    key so replica logs can be filtered per table; any other log_context keys
    are nested under "context".
    """

    def __init__(self, include_extra: bool = True):
        super().__init__()
        self.include_extra = include_extra

    def format(self, record: logging.LogRecord) -> str:
        context = current_context()
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "table": context.pop("table", None),
            "message": record.getMessage(),
            "origin": f"{record.module}:{record.lineno}",
            "thread": record.threadName,
        }
        if context:
            entry["context"] = context
        if record.exc_info and record.exc_info[0] is not None:
            entry["error"] = self._error(record)
        if self.include_extra:
            entry.update(self._extras(record))
        return json.dumps(entry, default=str)

    def _error(self, record: logging.LogRecord) -> dict:
        error_type, error, _ = record.exc_info
        return {
            "type": error_type.__name__,
            "message": str(error),
            "traceback": self.formatException(record.exc_info),
        }

    @staticmethod
    def _extras(record: logging.LogRecord) -> dict:
        return {key: value for key, value in record.__dict__.items() if key not in _RESERVED}


def configure_logging(
    level: str = "INFO",
    json_format: bool = False,
    log_to_file: bool = False,
    log_path: Optional[str] = None
) -> logging.Logger:
    """
    Configure the tablemirror logger hierarchy.

    Args:
        level: Log level name
        json_format: Use JSON formatting for console output
        log_to_file: Also write logs to log_path
        log_path: Log file path (default logs/replication.log)

    Returns:
        The configured "tablemirror" logger
    """
    root = logging.getLogger("tablemirror")
    root.setLevel(getattr(logging, str(level).upper(), logging.INFO))
    root.handlers = []  # Clear existing handlers

    formatter = JsonFormatter() if json_format else logging.Formatter(LOG_FORMAT)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root.addHandler(console_handler)

    if log_to_file:
        log_path = log_path or "logs/replication.log"
        directory = os.path.dirname(log_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        file_handler = logging.FileHandler(log_path)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    return root
