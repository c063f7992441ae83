"""Logging setup for the recognition service and the embedded client core."""

import logging
import sys
from collections.abc import Mapping
from pathlib import Path

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Library loggers that repeat every request the backend client already logs
NOISY_LOGGERS = ("httpx", "httpcore")


def parse_level(value: str) -> int:
    """Turn a level name such as ``"debug"`` into its numeric value.

    Raises:
        ValueError: If the name is not a logging level
    """
    level = logging.getLevelName(value.upper())
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {value}")
    return level


def setup_logging(
    level: str = "INFO",
    log_file: Path | None = None,
    format_string: str | None = None,
    overrides: Mapping[str, str] | None = None,
) -> None:
    """Configure application-wide logging.

    Args:
        level: Root logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional path to log file. If provided, logs to both file and console
        format_string: Custom log format string. Uses default if not provided
        overrides: Per-logger levels, e.g. ``{"jobs.state_machine": "DEBUG"}`` to
            follow the poll loop without turning on debug output everywhere
    """
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=parse_level(level),
        format=format_string or DEFAULT_FORMAT,
        handlers=handlers,
        force=True,
    )

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    for name, value in (overrides or {}).items():
        logging.getLogger(name).setLevel(parse_level(value))

    logger = logging.getLogger(__name__)
    logger.info(f"Logging configured at {level} level")
    if overrides:
        logger.info(f"Logger overrides: {dict(overrides)}")
    if log_file:
        logger.info(f"Logging to file: {log_file}")


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
