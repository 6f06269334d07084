"""
Process-wide logging configuration.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Optional

from ..config.settings import MonitoringSettings

# LogRecord attributes that are not caller-supplied context
_RECORD_ATTRIBUTES = {
    "name",
    "msg",
    "args",
    "levelname",
    "levelno",
    "pathname",
    "filename",
    "module",
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
    "exc_info",
    "exc_text",
    "stack_info",
    "message",
    "correlation_id",
}

TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class StructuredFormatter(logging.Formatter):
    """JSON lines formatter carrying the ``extra`` context of each record."""

    def format(self, record):
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", None),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        for key, value in record.__dict__.items():
            if key not in _RECORD_ATTRIBUTES and not key.startswith("_"):
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def configure_logging(
    monitoring: MonitoringSettings, verbose: bool = False
) -> logging.Logger:
    """
    Configure the root logger from monitoring settings.

    Console output uses the text format for humans. ``log_format`` decides
    the format of the optional log file.
    """
    level_name = "DEBUG" if verbose else monitoring.log_level
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level_name))
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(_build_formatter(monitoring.log_format))
    root_logger.addHandler(console_handler)

    if monitoring.log_file:
        file_handler = logging.FileHandler(monitoring.log_file)
        file_handler.setFormatter(_build_formatter(monitoring.log_format))
        root_logger.addHandler(file_handler)

    # boto logs every request at DEBUG
    for noisy in ("boto3", "botocore", "urllib3"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    return root_logger


def _build_formatter(log_format: Optional[str]) -> logging.Formatter:
    if log_format == "json":
        return StructuredFormatter()
    return logging.Formatter(TEXT_FORMAT)
