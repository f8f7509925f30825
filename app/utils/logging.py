"""Logging configuration."""

import logging
import os
import sys

from pydantic import BaseModel, Field, field_validator

# Client libraries that log every request at INFO
QUIET_LOGGERS = ("anthropic", "httpx", "httpcore", "postgrest", "supabase", "uvicorn.access")


class LogConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    date_format: str = "%Y-%m-%d %H:%M:%S"
    quiet_loggers: tuple[str, ...] = QUIET_LOGGERS

    @field_validator("level")
    @classmethod
    def known_level(cls, value: str) -> str:
        """Normalize the level name and reject unknown ones."""
        level = value.upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"Unknown log level: {value}")
        return level


def setup_logging(config: LogConfig | None = None) -> None:
    """Set up logging for the API server and the CLI."""
    config = config or LogConfig()

    logging.basicConfig(
        level=config.level,
        format=config.format,
        datefmt=config.date_format,
        stream=sys.stdout,
        force=True,
    )

    for name in config.quiet_loggers:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str, level: str | None = None) -> logging.Logger:
    """Get a logger for a specific module.

    Args:
        name: Module name (typically __name__)
        level: Explicit level; LOG_LEVEL applies when omitted

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    logger.setLevel((level or os.getenv("LOG_LEVEL", "INFO")).upper())
    return logger
