"""Logging configuration using structlog for structured logging."""

import logging
import logging.handlers
from pathlib import Path
from typing import Any, MutableMapping

import structlog

from .config import LoggingConfig

# Event keys whose values never reach a handler
SENSITIVE_KEYS = frozenset(
    {
        "password",
        "password_hash",
        "jwt_secret",
        "access_token",
        "authorization",
        "cookie",
    }
)
REDACTED = "[redacted]"


def redact_sensitive(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """
    Structlog processor that masks credential material in log events.

    Matching is on the key name, case-insensitive, so values bound through
    ``bind_context`` are covered too. The ``token`` key written by the debug
    action-token delivery is not in the set.
    """
    for key in event_dict:
        if key.lower() in SENSITIVE_KEYS:
            event_dict[key] = REDACTED
    return event_dict


def setup_logging(config: LoggingConfig) -> None:
    """
    Configure logging based on configuration.

    Sets up structlog on top of standard library logging so that both our
    own events and third-party library records share handlers and levels.

    Args:
        config: LoggingConfig object with logging settings

    Example:
        >>> from storeauth.common.config import LoggingConfig
        >>> setup_logging(LoggingConfig(level="DEBUG", format="text"))
    """
    log_level = getattr(logging, config.level.upper())

    # Configure standard library logging (for third-party libraries)
    logging.basicConfig(
        level=log_level,
        format="%(message)s",
        handlers=[],
        force=True,
    )

    # uvicorn logs every request line; the request middleware already does
    default_third_party = {
        "uvicorn.access": "WARNING",
        "aiosqlite": "WARNING",
        "redis": "WARNING",
    }
    third_party_config = {**default_third_party, **config.third_party}

    for library, level in third_party_config.items():
        logging.getLogger(library).setLevel(getattr(logging, level.upper()))

    processors = [
        structlog.contextvars.merge_contextvars,
        redact_sensitive,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    # Add appropriate renderer based on format
    if config.format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        # Text format with colors for development
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    handlers = []

    # Console handler is always enabled
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    handlers.append(console_handler)

    if config.file.enabled:
        log_path = Path(config.file.log_dir) / "storeauth.log"
        log_path.parent.mkdir(parents=True, exist_ok=True)

        # Rotates at midnight local time, keeps 7 backup files
        file_handler = logging.handlers.TimedRotatingFileHandler(
            filename=str(log_path),
            when="midnight",
            backupCount=7,
            encoding="utf-8",
        )
        # Set suffix for rotated files: storeauth.log.2026-01-01
        file_handler.suffix = "%Y-%m-%d"
        file_handler.setLevel(log_level)
        handlers.append(file_handler)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    for handler in handlers:
        root_logger.addHandler(handler)
    root_logger.setLevel(log_level)

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> Any:
    """
    Get a structlog logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Structlog logger instance

    Example:
        >>> logger = get_logger(__name__)
        >>> logger.info("login_succeeded", identity_id=42)
    """
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """
    Bind context variables that will be included in all subsequent log messages.

    Used by the request logging middleware to tag every event emitted while
    serving a request with its request id and client address.

    Args:
        **kwargs: Key-value pairs to bind to the logging context

    Example:
        >>> bind_context(request_id="abc-123", client="10.0.0.1")
        >>> logger.info("login_failed")  # Will include request_id and client
    """
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    """Clear all bound context variables."""
    structlog.contextvars.clear_contextvars()
