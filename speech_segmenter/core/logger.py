from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from speech_segmenter.core.config import LoggingConfig

# Root logger name for the application
ROOT_LOGGER_NAME = "speech_segmenter"

# Per-frame VAD traces (one record every 32 ms at 16 kHz), leveled on their own
FRAME_LOGGER_NAME = "services.vad.frames"

_RESERVED_ATTRS = frozenset(
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
        "message",
        "taskName",
        "thread",
        "threadName",
    }
)


class JsonFormatter(logging.Formatter):
    """JSON formatter for structured logging output."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Include any extra fields
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                log_data[key] = value

        return json.dumps(log_data, default=str)


def setup_logging(config: LoggingConfig, log_dir: Path | None = None) -> None:
    """
    Configure application logging.

    Args:
        config: Logging configuration from app config.
        log_dir: Directory for the rotating log file. When None, only
            stdout logging is configured.
    """
    root_logger = logging.getLogger(ROOT_LOGGER_NAME)
    root_logger.setLevel(config.level)
    root_logger.handlers.clear()

    frame_logger = logging.getLogger(f"{ROOT_LOGGER_NAME}.{FRAME_LOGGER_NAME}")
    frame_logger.setLevel(config.frame_level)
    # handlers must pass frame traces even when they are below the app level
    handler_level = min(logging.getLevelName(config.level), logging.getLevelName(config.frame_level))

    formatter: logging.Formatter
    if config.json_output:
        formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(config.format)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(handler_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    log_file: Path | None = None
    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        log_file = log_dir / "speech_segmenter.log"
        file_handler = RotatingFileHandler(
            filename=log_file,
            maxBytes=config.rotate_max_bytes,
            backupCount=config.rotate_backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(handler_level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    _configure_uvicorn_loggers(config.level, formatter)

    # Prevent propagation to root logger to avoid duplicate logs
    root_logger.propagate = False

    root_logger.info(
        "Logging configured: level=%s, frame_level=%s, json=%s, file=%s",
        config.level,
        config.frame_level,
        config.json_output,
        log_file,
    )


def _configure_uvicorn_loggers(level: str, formatter: logging.Formatter) -> None:
    """Configure uvicorn's loggers to match our logging setup."""
    for logger_name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        logger = logging.getLogger(logger_name)
        logger.handlers.clear()

        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)
        logger.setLevel(level)
        logger.propagate = False


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger with the application namespace.

    Args:
        name: Logger name (will be prefixed with 'speech_segmenter.').

    Returns:
        A configured logger instance.

    Example:
        >>> logger = get_logger("services.vad")
        >>> logger.info("Speech confirmed")
        # Logs as: speech_segmenter.services.vad
    """
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")
