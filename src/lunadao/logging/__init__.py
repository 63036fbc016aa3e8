"""LunaDAO logging.

Structured (JSON) or text logging for the ``lunadao`` logger tree, with
console and rotating file handlers.
"""

from .core import LogConfig, LogLevel, get_logger, setup_logging, shutdown_logging
from .formatters import JSONFormatter, TextFormatter

__all__ = [
    "LogLevel",
    "LogConfig",
    "get_logger",
    "setup_logging",
    "shutdown_logging",
    "JSONFormatter",
    "TextFormatter",
]
