"""
Structured logging for NeedsConnect.

JSON lines by default (python-json-logger) so checkout and signup decisions can
be grepped and parsed; LOG_FORMAT=text gives a plain console format.
"""
import logging
import sys
from typing import Optional

from pythonjsonlogger.json import JsonFormatter

import config

LOG_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


class ServiceJsonFormatter(JsonFormatter):
    """Adds timestamp, level and logger name to every record."""

    def add_fields(self, log_record: dict, record: logging.LogRecord, message_dict: dict) -> None:
        super().add_fields(log_record, record, message_dict)

        if not log_record.get("timestamp"):
            log_record["timestamp"] = self.formatTime(record, self.datefmt)
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["function"] = record.funcName


def setup_logging(level: Optional[str] = None, format_type: Optional[str] = None) -> logging.Logger:
    """
    Configure the root logger once at startup.

    Args:
        level: DEBUG, INFO, WARNING, ERROR or CRITICAL (defaults to LOG_LEVEL)
        format_type: "json" or "text" (defaults to LOG_FORMAT)

    Returns:
        The root logger
    """
    log_level = LOG_LEVELS.get((level or config.LOG_LEVEL).upper(), logging.INFO)
    format_type = format_type or config.LOG_FORMAT

    root = logging.getLogger()
    root.setLevel(log_level)

    # Re-running setup (tests, reloads) must not stack handlers.
    for handler in list(root.handlers):
        if getattr(handler, "_needsconnect", False):
            root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    handler._needsconnect = True  # type: ignore[attr-defined]

    if format_type == "json":
        formatter: logging.Formatter = ServiceJsonFormatter("%(message)s")
    else:
        formatter = logging.Formatter("[%(asctime)s] %(levelname)s in %(name)s: %(message)s")

    handler.setFormatter(formatter)
    root.addHandler(handler)
    return root
