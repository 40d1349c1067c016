#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Logging Configuration Module

Console logging for every module logger, with an optional size-rotated
log file and a JSON mode for log shippers. Job and batch events carry
structured ``extra`` fields so the JSON output can be filtered by job.
"""

import os
import sys
import json
import logging
from dataclasses import dataclass
from logging.handlers import RotatingFileHandler
from typing import Optional, Dict, Any, List, Union

# Environment variable names
ENV_LOG_LEVEL = "LOG_LEVEL"
ENV_LOG_FILE_PATH = "LOG_FILE_PATH"
ENV_LOG_JSON = "LOG_JSON"

DEFAULT_LEVEL = logging.INFO
DEFAULT_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

# Loggers configured so far, by name
_loggers: Dict[str, logging.Logger] = {}


def _resolve_level(level: Optional[Union[int, str]], default: int = DEFAULT_LEVEL) -> int:
    """Accept logging constants, level names or numeric strings."""
    if level is None or level == "":
        return default
    if isinstance(level, int):
        return level
    named = logging.getLevelName(level.upper())
    if isinstance(named, int):
        return named
    try:
        return int(level)
    except ValueError:
        return default


@dataclass
class LoggerConfig:
    """
    Settings for one configured logger.

    Unset fields are filled from LOG_LEVEL, LOG_FILE_PATH and LOG_JSON.
    """
    name: str = "lead_coverage"
    level: Optional[Union[int, str]] = None
    log_file: Optional[str] = None
    json_logs: Optional[bool] = None
    max_bytes: int = 10 * 1024 * 1024
    backup_count: int = 5
    propagate: bool = False

    def __post_init__(self):
        self.level = _resolve_level(self.level if self.level is not None else os.environ.get(ENV_LOG_LEVEL))
        if self.log_file is None:
            self.log_file = os.environ.get(ENV_LOG_FILE_PATH) or None
        if self.json_logs is None:
            self.json_logs = os.environ.get(ENV_LOG_JSON, "false").lower() == "true"


class JsonFormatter(logging.Formatter):
    """One JSON object per record, including known ``extra`` attributes."""

    BASE_FIELDS = {
        "timestamp": "asctime",
        "level": "levelname",
        "name": "name",
        "module": "module",
        "function": "funcName",
        "line": "lineno",
        "message": "message",
    }
    EXTRA_FIELDS = ("job", "event", "industry", "country", "succeeded", "failed",
                    "cancelled", "duration_seconds")

    def __init__(self, time_format: str = "%Y-%m-%d %H:%M:%S"):
        super().__init__()
        self.time_format = time_format

    def format(self, record: logging.LogRecord) -> str:
        record.asctime = self.formatTime(record, self.time_format)
        record.message = record.getMessage()

        payload = {key: getattr(record, attr) for key, attr in self.BASE_FIELDS.items()
                   if hasattr(record, attr)}
        payload.update({key: getattr(record, key) for key in self.EXTRA_FIELDS if hasattr(record, key)})
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str)


def _build_handlers(config: LoggerConfig) -> List[logging.Handler]:
    formatter = JsonFormatter() if config.json_logs else logging.Formatter(DEFAULT_FORMAT)

    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if config.log_file:
        os.makedirs(os.path.dirname(os.path.abspath(config.log_file)), exist_ok=True)
        handlers.append(RotatingFileHandler(
            config.log_file,
            maxBytes=config.max_bytes,
            backupCount=config.backup_count,
            encoding="utf-8",
        ))

    for handler in handlers:
        handler.setFormatter(formatter)
    return handlers


def configure_logger(config: Optional[LoggerConfig] = None) -> logging.Logger:
    """
    Configure a logger once; later calls with the same name return it unchanged.

    Args:
        config: Logger settings (or None for the package defaults)

    Returns:
        Configured logger
    """
    config = config or LoggerConfig()
    if config.name in _loggers:
        return _loggers[config.name]

    logger = logging.getLogger(config.name)
    logger.setLevel(config.level)
    logger.propagate = config.propagate
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    for handler in _build_handlers(config):
        logger.addHandler(handler)

    _loggers[config.name] = logger
    return logger


def get_logger(name: str) -> logging.Logger:
    """Module logger, configured from the environment on first use."""
    return _loggers.get(name) or configure_logger(LoggerConfig(name=name))


def configure_logging(
    level: Optional[Union[int, str]] = None,
    log_file: Optional[str] = None,
    json_logs: Optional[bool] = None
) -> logging.Logger:
    """
    Configure the root logger for third-party libraries and apply ``level``
    to every module logger created so far.

    Returns:
        The root logger
    """
    _loggers.pop("", None)
    root = configure_logger(LoggerConfig(name="", level=level, log_file=log_file, json_logs=json_logs))

    if level is not None:
        for name, logger in _loggers.items():
            if name:
                logger.setLevel(_resolve_level(level))
    return root


def log_job_event(job: str, event_type: str, message: str, level: int = logging.INFO, **extra: Any) -> None:
    """
    Log a scheduled job event as ``[job] [event] message``.

    Args:
        job: Job name
        event_type: Type of event (start, skip, error, complete, etc.)
        message: Event description
        level: Logging level
        extra: Structured fields attached to the record
    """
    get_logger("lead_coverage.jobs").log(
        level, f"[{job}] [{event_type}] {message}", extra={"job": job, "event": event_type, **extra}
    )


def log_batch_event(batch: str, event_type: str, message: str, level: int = logging.INFO, **extra: Any) -> None:
    """Log a batch fetch event; ``batch`` is the label of the owning job."""
    get_logger("lead_coverage.batch").log(
        level, f"[{batch}] [{event_type}] {message}", extra={"job": batch, "event": event_type, **extra}
    )


def _mask(value: str) -> str:
    if len(value) > 6:
        return value[0] + "*" * (len(value) - 2) + value[-1]
    return "*" * len(value)


def log_sensitive(logger: logging.Logger, level: int, message: str, **sensitive_data: Any) -> None:
    """
    Log a message with every sensitive value masked.

    Args:
        logger: Logger to use
        level: Logging level
        message: Message to log
        sensitive_data: Values to mask wherever they appear in ``message``
    """
    for value in sensitive_data.values():
        if value and isinstance(value, str):
            message = message.replace(value, _mask(value))
    logger.log(level, message)
