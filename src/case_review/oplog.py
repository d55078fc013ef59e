"""Operational logging for the case review client.

Structured JSON logging to stderr, or plain text when
CASE_REVIEW_LOG_FORMAT=text. Extra fields passed via ``extra=`` are kept.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any

_STANDARD_ATTRS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
    }
)


class StructuredFormatter(logging.Formatter):
    """JSON log formatter for structured logging."""

    def __init__(self, service_name: str = "case-review") -> None:
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self.service_name,
        }
        if record.levelno >= logging.WARNING:
            log_data["location"] = {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            }
        if record.exc_info and record.exc_info[0]:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
            }

        for key, value in record.__dict__.items():
            if key in _STANDARD_ATTRS or key.startswith("_"):
                continue
            try:
                json.dumps(value)
                log_data[key] = value
            except (TypeError, ValueError):
                log_data[key] = str(value)

        return json.dumps(log_data, default=str)


def setup_logging(
    service_name: str = "case-review",
    *,
    level: int = logging.INFO,
    json_format: bool | None = None,
) -> logging.Logger:
    """Configure the ``case_review`` logger.

    Args:
        service_name: Service name for log entries.
        level: Logging level.
        json_format: Use JSON formatting. If None, checks CASE_REVIEW_LOG_FORMAT
            env var (default: "json"). Set to "text" for plain text.
    """
    if json_format is None:
        json_format = os.environ.get("CASE_REVIEW_LOG_FORMAT", "json").lower() != "text"

    pkg_logger = logging.getLogger("case_review")
    pkg_logger.setLevel(level)
    pkg_logger.handlers.clear()

    formatter: logging.Formatter
    if json_format:
        formatter = StructuredFormatter(service_name)
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(formatter)
    pkg_logger.addHandler(handler)

    pkg_logger.propagate = False
    return pkg_logger
