"""Core logging configuration for LunaDAO.

Every module logs through ``logging.getLogger(__name__)``; this module wires
handlers and formatters onto the ``lunadao`` root logger so the whole tree
shares one configuration.
"""

import logging
import logging.handlers
import sys
import threading
from enum import Enum
from typing import List, Optional

from .formatters import JSONFormatter, TextFormatter

ROOT_LOGGER_NAME = "lunadao"


class LogLevel(Enum):
    """Log levels."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"

    def to_stdlib(self) -> int:
        return getattr(logging, self.name)


class LogConfig:
    """Log configuration."""

    def __init__(
        self,
        name: str = ROOT_LOGGER_NAME,
        level: LogLevel = LogLevel.INFO,
        format_type: str = "json",
        handlers: List[str] = None,
        file_path: Optional[str] = None,
        max_bytes: int = 10 * 1024 * 1024,
        backup_count: int = 5,
        propagate: bool = False,
    ):
        self.name = name
        self.level = level
        self.format_type = format_type
        self.handlers = handlers or ["console"]
        self.file_path = file_path
        self.max_bytes = max_bytes
        self.backup_count = backup_count
        self.propagate = propagate

        if "file" in self.handlers and not self.file_path:
            raise ValueError("file handler requires file_path")


_setup_lock = threading.Lock()
_installed_handlers: List[logging.Handler] = []


def _make_formatter(format_type: str) -> logging.Formatter:
    if format_type == "json":
        return JSONFormatter()
    if format_type == "text":
        return TextFormatter()
    raise ValueError(f"Unknown log format: {format_type}")


def setup_logging(config: Optional[LogConfig] = None) -> logging.Logger:
    """Install handlers on the package logger. Safe to call repeatedly."""
    config = config or LogConfig()
    with _setup_lock:
        logger = logging.getLogger(config.name)
        for handler in _installed_handlers:
            logger.removeHandler(handler)
            handler.close()
        _installed_handlers.clear()

        formatter = _make_formatter(config.format_type)
        for handler_name in config.handlers:
            if handler_name == "console":
                handler: logging.Handler = logging.StreamHandler(sys.stderr)
            elif handler_name == "file":
                handler = logging.handlers.RotatingFileHandler(
                    config.file_path,
                    maxBytes=config.max_bytes,
                    backupCount=config.backup_count,
                )
            else:
                raise ValueError(f"Unknown log handler: {handler_name}")
            handler.setFormatter(formatter)
            logger.addHandler(handler)
            _installed_handlers.append(handler)

        logger.setLevel(config.level.to_stdlib())
        logger.propagate = config.propagate
        return logger


def get_logger(name: str = ROOT_LOGGER_NAME) -> logging.Logger:
    """Get a logger inside the package tree."""
    if name != ROOT_LOGGER_NAME and not name.startswith(ROOT_LOGGER_NAME + "."):
        name = f"{ROOT_LOGGER_NAME}.{name}"
    return logging.getLogger(name)


def shutdown_logging() -> None:
    """Remove and close installed handlers."""
    with _setup_lock:
        logger = logging.getLogger(ROOT_LOGGER_NAME)
        for handler in _installed_handlers:
            logger.removeHandler(handler)
            handler.close()
        _installed_handlers.clear()
