"""Logging configuration."""

import logging
import os
import sys

from pydantic import BaseModel, field_validator

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
DEFAULT_LEVEL = "WARNING"


def _normalize_level(level: str | None) -> str | None:
    """Upper-cased level name, or None when ``level`` is empty or not a known level."""
    if not level:
        return None
    level = level.strip().upper()
    return level if level in LOG_LEVELS else None


class LogConfig(BaseModel):
    """Logging configuration."""

    level: str = DEFAULT_LEVEL
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    date_format: str = "%Y-%m-%d %H:%M:%S"
    # Chatty client libraries held at WARNING regardless of ``level``
    quiet_loggers: list[str] = ["anthropic", "httpx", "httpcore"]

    @field_validator("level")
    @classmethod
    def check_level(cls, value: str) -> str:
        level = _normalize_level(value)
        if level is None:
            raise ValueError(f"level must be one of {', '.join(LOG_LEVELS)}, got {value!r}")
        return level

    @classmethod
    def from_env(cls) -> "LogConfig":
        """Config from LOG_LEVEL; an unset or unknown value keeps the default."""
        return cls(level=_normalize_level(os.getenv("LOG_LEVEL")) or DEFAULT_LEVEL)


def setup_logging(config: LogConfig | None = None) -> None:
    """Set up logging configuration for the application.

    Log records go to stderr; stdout carries the streamed assistant answer.
    """
    if config is None:
        config = LogConfig.from_env()

    logging.basicConfig(
        level=logging.getLevelName(config.level),
        format=config.format,
        datefmt=config.date_format,
        stream=sys.stderr,
        force=True,  # Override any existing configuration
    )

    for name in config.quiet_loggers:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str, level: str | None = None) -> logging.Logger:
    """Get a logger for a specific module.

    Args:
        name: Module name (typically __name__)
        level: Explicit level; falls back to the LOG_LEVEL environment variable.
            Unknown level names are ignored so a bad environment value never
            breaks imports.

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    log_level = _normalize_level(level) or _normalize_level(os.getenv("LOG_LEVEL"))
    if log_level:
        logger.setLevel(log_level)

    return logger
