"""Logging setup for the approval tracker."""

import logging
from typing import Optional

LOGGER_NAME = "approval_tracker"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"
DEFAULT_FORMAT = "%(asctime)s [%(levelname)s] [%(name)s] %(message)s"
LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def setup_logging(level: str = "INFO", log_format: Optional[str] = None) -> logging.Logger:
    """Configure the package logger with a console handler.

    Calling this more than once only updates the level; handlers are added
    a single time.
    """
    level_upper = level.upper()
    if level_upper not in LEVELS:
        raise ValueError(
            f"Invalid log level: {level}. "
            f"Must be one of: DEBUG, INFO, WARNING, ERROR, CRITICAL"
        )

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level_upper)

    if logger.handlers:
        return logger

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(log_format or DEFAULT_FORMAT, datefmt=DATE_FORMAT))
    logger.addHandler(handler)
    return logger
