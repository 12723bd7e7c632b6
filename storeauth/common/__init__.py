"""Shared configuration and logging helpers."""

from .config import FileLoggingConfig, LoggingConfig
from .logging_config import (
    bind_context,
    clear_context,
    get_logger,
    redact_sensitive,
    setup_logging,
)

__all__ = [
    "FileLoggingConfig",
    "LoggingConfig",
    "setup_logging",
    "get_logger",
    "bind_context",
    "clear_context",
    "redact_sensitive",
]
