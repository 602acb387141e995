"""
Logging setup for applications embedding the schema core.

The library modules only create module level loggers; nothing is configured on import.
Call `setup_logging` once from an application or a test session to attach a handler.
"""
import datetime
import json
import logging
import os
import sys
from typing import Any, Dict, Optional

LOG_LEVEL_ENV = "SCHEMA_CORE_LOG_LEVEL"

_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "WARN": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

# Attributes every LogRecord has; anything else was passed through `extra=`
_STANDARD_ATTRS = frozenset(logging.LogRecord("", 0, "", 0, "", (), None).__dict__) | {"message", "asctime"}


class JSONFormatter(logging.Formatter):
    """One JSON object per record, including any `extra=` fields"""

    def format(self, record: logging.LogRecord) -> str:
        data: Dict[str, Any] = {
            "timestamp": datetime.datetime.fromtimestamp(record.created, datetime.timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            data["exception"] = self.formatException(record.exc_info)
        for key, value in record.__dict__.items():
            if key not in _STANDARD_ATTRS:
                data[key] = value
        return json.dumps(data, default=str)


def get_log_level_from_env(default: int = logging.WARNING) -> int:
    name = os.environ.get(LOG_LEVEL_ENV)
    if not name:
        return default
    return _LEVELS.get(name.strip().upper(), default)


def setup_logging(level: Optional[int] = None, json_format: bool = False) -> logging.Handler:
    """
    Attach a stderr handler to the root logger, replacing one added by an earlier call.

    Args:
        level: Log level; read from SCHEMA_CORE_LOG_LEVEL when not given.
        json_format: Emit JSON lines instead of plain text.
    """
    if level is None:
        level = get_log_level_from_env()

    handler = logging.StreamHandler(sys.stderr)
    if json_format:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter("[%(levelname)s] %(asctime)s - %(name)s - %(message)s",
                                               datefmt="%Y-%m-%d %H:%M:%S"))
    handler.set_name("schema-core")

    root = logging.getLogger()
    for existing in list(root.handlers):
        if existing.get_name() == "schema-core":
            root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)
    return handler
