"""
Logging Configuration Module for Agent Trader.

This module provides logging configuration including structured JSON
output, colorized console output and file rotation.
"""

import logging
import logging.handlers
import sys
import json
import traceback
from pathlib import Path
from typing import Any, Dict, Optional
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field


class LogFormat(str, Enum):
    """Log format enumeration."""
    SIMPLE = "simple"
    DETAILED = "detailed"
    JSON = "json"


class LogDestination(str, Enum):
    """Log destination enumeration."""
    CONSOLE = "console"
    FILE = "file"
    BOTH = "both"


class LoggingConfig(BaseModel):
    """Logging configuration model."""

    level: str = Field(default="INFO", description="Default log level")
    format: LogFormat = Field(default=LogFormat.DETAILED, description="Log format")
    destination: LogDestination = Field(default=LogDestination.CONSOLE, description="Log destination")
    log_dir: Path = Field(default=Path("logs"), description="Log directory")
    max_bytes: int = Field(default=10 * 1024 * 1024, description="Max log file size (10MB)")
    backup_count: int = Field(default=5, description="Number of backup files")
    include_stack_trace: bool = Field(default=True, description="Include stack traces")
    colorize_console: bool = Field(default=True, description="Colorize console output")


SIMPLE_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"
DETAILED_FORMAT = (
    "%(asctime)s | %(levelname)-8s | %(name)-32s | "
    "%(funcName)s | %(message)s"
)

COLORS = {
    'DEBUG': '\033[36m',      # Cyan
    'INFO': '\033[32m',       # Green
    'WARNING': '\033[33m',    # Yellow
    'ERROR': '\033[31m',      # Red
    'CRITICAL': '\033[35m',   # Magenta
    'RESET': '\033[0m'
}

# Attributes every LogRecord carries; anything else arrived via extra={...}.
_STANDARD_RECORD_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys()
) | {"message", "asctime"}


def record_extras(record: logging.LogRecord) -> Dict[str, Any]:
    """Collect the fields passed through ``extra=`` on a log call."""
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _STANDARD_RECORD_ATTRS and not key.startswith("_")
    }


class ColorizedFormatter(logging.Formatter):
    """Formatter that adds colors to log levels for console output."""

    def __init__(
        self,
        fmt: Optional[str] = None,
        datefmt: Optional[str] = None,
        colorize: bool = True
    ) -> None:
        super().__init__(fmt, datefmt)
        self.colorize = colorize

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        if self.colorize and record.levelname in COLORS:
            color = COLORS[record.levelname]
            reset = COLORS['RESET']
            message = f"{color}{message}{reset}"
        return message


class JSONFormatter(logging.Formatter):
    """Formatter that outputs logs as JSON."""

    def __init__(
        self,
        include_stack_trace: bool = True,
        extra_fields: Optional[Dict[str, Any]] = None
    ) -> None:
        """
        Initialize the JSON formatter.

        Args:
            include_stack_trace: Whether to include stack traces
            extra_fields: Extra fields to include in all log entries
        """
        super().__init__()
        self.include_stack_trace = include_stack_trace
        self.extra_fields = extra_fields or {}

    def format(self, record: logging.LogRecord) -> str:
        """
        Format the log record as JSON.

        Args:
            record: Log record to format

        Returns:
            JSON formatted log string
        """
        log_entry: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        extras = record_extras(record)
        if extras:
            log_entry["extra"] = extras

        log_entry.update(self.extra_fields)

        if record.exc_info and self.include_stack_trace:
            log_entry['exception'] = {
                'type': record.exc_info[0].__name__ if record.exc_info[0] else None,
                'message': str(record.exc_info[1]) if record.exc_info[1] else None,
                'traceback': traceback.format_exception(*record.exc_info)
            }

        return json.dumps(log_entry, default=str)


def _build_formatter(config: LoggingConfig, console: bool) -> logging.Formatter:
    if config.format == LogFormat.JSON:
        return JSONFormatter(include_stack_trace=config.include_stack_trace)
    fmt = DETAILED_FORMAT if config.format == LogFormat.DETAILED else SIMPLE_FORMAT
    if console:
        return ColorizedFormatter(fmt, colorize=config.colorize_console)
    return logging.Formatter(fmt)


def setup_logging(config: Optional[LoggingConfig] = None) -> logging.Logger:
    """
    Configure the root logger.

    Args:
        config: Logging configuration

    Returns:
        The package logger ("agent_trader")
    """
    config = config or LoggingConfig()

    root_logger = logging.getLogger()
    root_logger.setLevel(config.level.upper())
    root_logger.handlers.clear()

    if config.destination in (LogDestination.CONSOLE, LogDestination.BOTH):
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(config.level.upper())
        console_handler.setFormatter(_build_formatter(config, console=True))
        root_logger.addHandler(console_handler)

    if config.destination in (LogDestination.FILE, LogDestination.BOTH):
        config.log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            config.log_dir / "agent_trader.log",
            maxBytes=config.max_bytes,
            backupCount=config.backup_count,
            encoding='utf-8'
        )
        file_handler.setLevel(config.level.upper())
        file_handler.setFormatter(_build_formatter(config, console=False))
        root_logger.addHandler(file_handler)

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)

    return logging.getLogger("agent_trader")
