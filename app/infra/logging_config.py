"""
Logging setup shared by the API process and Celery workers.

`LoggingConfig()` configures the root logger once; modules then use
`get_logger(name)` or `logging.getLogger(__name__)`.
"""

from __future__ import annotations

import json
import logging
import sys
from typing import Optional

from app.config import get_settings

DEFAULT_LOGGER_NAME = "cs_automation"

# Attributes every LogRecord carries; anything else came in through `extra=`.
_RESERVED_ATTRS = set(
    logging.LogRecord("", 0, "", 0, "", None, None).__dict__.keys()
) | {"message", "asctime"}


class JsonFormatter(logging.Formatter):
    """One JSON object per line, with `extra` fields merged in."""

    def format(self, record: logging.LogRecord) -> str:
        log_record = {
            "time": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and not key.startswith("_"):
                log_record[key] = value
        if record.exc_info:
            log_record["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(log_record, default=str, ensure_ascii=False)


class LoggingConfig:
    """Configure root logging from settings. Safe to instantiate more than once."""

    _configured = False

    def __init__(self, level: Optional[str] = None, json_output: Optional[bool] = None):
        settings = get_settings()
        self.level = (level or settings.log_level).upper()
        self.json_output = settings.log_json if json_output is None else json_output
        self._configure()

    def _configure(self) -> None:
        root = logging.getLogger()
        root.setLevel(self.level)
        if LoggingConfig._configured:
            return
        handler = logging.StreamHandler(sys.stdout)
        if self.json_output:
            handler.setFormatter(JsonFormatter())
        else:
            handler.setFormatter(
                logging.Formatter(
                    "[%(asctime)s] %(levelname)s in %(name)s: %(message)s"
                )
            )
        root.addHandler(handler)
        # httpx logs every request line at INFO, including token query strings
        logging.getLogger("httpx").setLevel(logging.WARNING)
        LoggingConfig._configured = True


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Return a logger under the application namespace."""
    if not name:
        return logging.getLogger(DEFAULT_LOGGER_NAME)
    return logging.getLogger(f"{DEFAULT_LOGGER_NAME}.{name}")


def get_audit_logger() -> logging.Logger:
    """Logger for security audit notes (rejected webhooks, failed handshakes)."""
    return logging.getLogger("security.audit")
