"""
QuorumSafe - Structured Logging Configuration

Configures structured JSON logging for engines embedded in services:
- JSON format so approval/execution history can be shipped to log aggregation
- Log rotation to prevent disk space issues
- Console and file handlers

Usage:
    from quorumsafe.core.logging_config import setup_logging

    logger = setup_logging(
        name="quorumsafe",
        log_file="/var/log/quorumsafe/engine.json",
        level="INFO",
    )

Engine modules log with ``extra={"event": "quorumsafe.<area>.<action>", ...}``;
those fields become top-level keys in the JSON output.
"""

import logging
import logging.handlers
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from pythonjsonlogger import jsonlogger

from .config import Settings


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """
    JSON formatter adding timestamp, environment, service and source location
    to every record.
    """

    def __init__(
        self,
        fmt: str = "%(timestamp)s %(level)s %(name)s %(message)s",
        timestamp: bool = True,
        environment: Optional[str] = None,
        service_name: str = "quorumsafe",
    ):
        super().__init__(fmt=fmt)
        self.timestamp = timestamp
        self.environment = environment or "development"
        self.service_name = service_name

    def add_fields(
        self,
        log_record: Dict[str, Any],
        record: logging.LogRecord,
        message_dict: Dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)

        if self.timestamp and not log_record.get("timestamp"):
            log_record["timestamp"] = datetime.now(timezone.utc).isoformat()

        log_record["environment"] = self.environment
        log_record["service"] = self.service_name

        if not log_record.get("level"):
            log_record["level"] = record.levelname.lower()

        log_record["source"] = {
            "function": record.funcName,
            "module": record.module,
            "line": record.lineno,
        }


def setup_logging(
    name: str = "quorumsafe",
    log_file: Optional[str] = None,
    level: str = "INFO",
    environment: str = "development",
    json_format: bool = True,
    enable_console: bool = True,
    max_bytes: int = 100 * 1024 * 1024,  # 100MB
    backup_count: int = 10,
    stream: Any = None,
) -> logging.Logger:
    """
    Setup structured logging for an engine process.

    Args:
        name: Logger name (``quorumsafe`` covers every engine module)
        log_file: Path to log file (optional)
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        environment: Environment identifier attached to JSON records
        json_format: Emit JSON (True) or plain text (False)
        enable_console: Whether to log to the console stream
        max_bytes: Maximum log file size before rotation
        backup_count: Number of rotated files to keep
        stream: Console stream (defaults to stdout)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, level.upper()))

    # Remove existing handlers to avoid duplicates
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    if json_format:
        formatter: logging.Formatter = CustomJsonFormatter(
            environment=environment,
            service_name=name.split(".")[0],
        )
    else:
        formatter = logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s")

    if enable_console:
        console_handler = logging.StreamHandler(stream or sys.stdout)
        console_handler.setLevel(getattr(logging, level.upper()))
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    if log_file:
        try:
            log_path = Path(log_file)
            log_path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.handlers.RotatingFileHandler(
                filename=log_file,
                maxBytes=max_bytes,
                backupCount=backup_count,
            )
            file_handler.setLevel(getattr(logging, level.upper()))
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)
        except OSError as e:
            logger.warning(
                "Could not create file handler for %s: %s",
                log_file,
                e,
                extra={"event": "quorumsafe.logging.file_handler_failed"},
            )

    return logger


def setup_logging_from_settings(settings: Optional[Settings] = None, **kwargs: Any) -> logging.Logger:
    """Configure the ``quorumsafe`` logger from environment-derived settings."""
    settings = settings or Settings.from_env()
    return setup_logging(
        name="quorumsafe",
        log_file=settings.log_file,
        level=settings.log_level,
        environment=settings.environment,
        json_format=settings.log_json,
        **kwargs,
    )
