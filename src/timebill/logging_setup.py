"""Logging setup for timebill."""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from .config import Config, LoggingConfig

TIMESTAMP_FORMAT = "%(asctime)s %(levelname)-5s [%(name)-18s] %(message)s"
PLAIN_FORMAT = "%(levelname)-5s [%(name)-18s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# WeasyPrint and fontTools are chatty about CSS and font subsetting
NOISY_LOGGERS = ("httpx", "httpcore", "weasyprint", "fontTools")

_initialized = False


def _file_handler(log_config: LoggingConfig) -> logging.Handler:
    file_path = Path(log_config.file)
    file_path.parent.mkdir(parents=True, exist_ok=True)
    if log_config.rotate:
        return RotatingFileHandler(
            file_path,
            maxBytes=log_config.max_size_mb * 1024 * 1024,
            backupCount=log_config.backup_count,
        )
    return logging.FileHandler(file_path)


def build_handlers(log_config: LoggingConfig, level: int, server_mode: bool = False) -> list[logging.Handler]:
    """Create the console and/or file handlers selected by ``log_config.output``."""
    handlers: list[logging.Handler] = []

    if log_config.output in ("console", "both"):
        console = logging.StreamHandler(sys.stderr)
        # Timestamps only matter for the long-running web app
        if server_mode:
            console.setFormatter(logging.Formatter(TIMESTAMP_FORMAT, datefmt=DATE_FORMAT))
        else:
            console.setFormatter(logging.Formatter(PLAIN_FORMAT))
        handlers.append(console)

    if log_config.output in ("file", "both") and log_config.file:
        file_handler = _file_handler(log_config)
        file_handler.setFormatter(logging.Formatter(TIMESTAMP_FORMAT, datefmt=DATE_FORMAT))
        handlers.append(file_handler)

    for handler in handlers:
        handler.setLevel(level)
    return handlers


def setup_logging(config: Config, verbose: bool = False, server_mode: bool = False) -> None:
    """
    Configure the ``timebill`` logger namespace.

    Args:
        config: Application configuration with logging settings
        verbose: If True, override config level to DEBUG
        server_mode: Timestamp console lines and route Flask's request
            log (``werkzeug``) through the same handlers
    """
    global _initialized
    if _initialized:
        return
    _initialized = True

    level_str = "DEBUG" if verbose else config.logging.level.upper()
    level = getattr(logging, level_str, logging.INFO)
    handlers = build_handlers(config.logging, level, server_mode=server_mode)

    logger = logging.getLogger("timebill")
    logger.setLevel(level)
    logger.handlers.clear()
    for handler in handlers:
        logger.addHandler(handler)

    if server_mode:
        request_logger = logging.getLogger("werkzeug")
        request_logger.setLevel(logging.INFO)
        request_logger.handlers.clear()
        request_logger.propagate = False
        for handler in handlers:
            request_logger.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def reset_logging() -> None:
    """Reset logging state for testing purposes."""
    global _initialized
    _initialized = False
    logging.getLogger("timebill").handlers.clear()
    request_logger = logging.getLogger("werkzeug")
    request_logger.handlers.clear()
    request_logger.propagate = True
