"""Logging setup: readable console output plus JSON log files.

``app.log`` receives every record and ``error.log`` only errors, both as one
JSON object per line tagged with the service name. File output is disabled
when ``LOG_DIR`` is empty.
"""

import logging
import sys
from datetime import datetime, timezone
from pathlib import Path

from pythonjsonlogger.json import JsonFormatter

from pricewatch.config import settings

SERVICE_NAME = "pricewatch"

CONSOLE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
JSON_FORMAT = "%(timestamp)s %(level)s %(name)s %(message)s"

# Client libraries that log every request or heartbeat at INFO/DEBUG
NOISY_LOGGERS = ("httpx", "httpcore", "pymongo")


class ServiceJsonFormatter(JsonFormatter):
    """Adds service, level, logger and source location to every record."""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)

        log_record['timestamp'] = datetime.fromtimestamp(record.created, timezone.utc).isoformat()
        log_record['service'] = SERVICE_NAME
        log_record['level'] = record.levelname
        log_record['logger'] = record.name
        log_record['source'] = f"{record.filename}:{record.lineno}"
        if record.funcName:
            log_record['function'] = record.funcName


def _file_handler(path: Path, level: int, formatter: logging.Formatter) -> logging.Handler:
    handler = logging.FileHandler(path)
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_logging(base_dir: str | Path | None = None):
    """Configure the root logger.

    Args:
        base_dir: Directory that ``settings.log_dir`` is relative to
                  (defaults to the current working directory).

    Returns:
        The root logger
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.log_level.upper()))
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.DEBUG)
    console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    root_logger.addHandler(console_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    if not settings.log_dir:
        return root_logger

    logs_dir = (Path(base_dir) if base_dir else Path.cwd()) / settings.log_dir
    logs_dir.mkdir(parents=True, exist_ok=True)

    json_formatter = ServiceJsonFormatter(JSON_FORMAT)
    root_logger.addHandler(_file_handler(logs_dir / "app.log", logging.DEBUG, json_formatter))
    root_logger.addHandler(_file_handler(logs_dir / "error.log", logging.ERROR, json_formatter))

    return root_logger


class ContextAdapter(logging.LoggerAdapter):
    """Bound context fields; an explicit ``extra=`` on a call takes precedence."""

    def process(self, msg, kwargs):
        kwargs['extra'] = {**self.extra, **kwargs.get('extra', {})}
        return msg, kwargs


def get_logger(name: str, **context) -> ContextAdapter:
    """
    Get a logger that attaches ``context`` to every record.

    Example:
        get_logger(__name__, product_id=product_id).warning("Dispatch failed")
    """
    return ContextAdapter(logging.getLogger(name), context)
