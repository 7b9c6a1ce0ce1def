"""Logging configuration for null-space.

Console output goes through Rich on stderr so that command output on
stdout stays clean; an optional log file receives everything at DEBUG.
Passwords and note bodies must never reach a logger.
"""

import logging
import sys
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler


# Global console for rich output
console = Console()

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
SIMPLE_FORMAT = "%(message)s"
ROOT_LOGGER = "null_space"


def _console_handler(rich_output: bool) -> logging.Handler:
    if rich_output:
        handler = RichHandler(
            console=Console(stderr=True),
            show_time=True,
            show_path=False,
            rich_tracebacks=True,
        )
        handler.setFormatter(logging.Formatter(SIMPLE_FORMAT))
        return handler

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    return handler


def _file_handler(log_file: Path) -> logging.Handler:
    log_file.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(log_file, encoding="utf-8")
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.setLevel(logging.DEBUG)
    return handler


def reset_logging() -> None:
    """Close and detach every handler on the package logger."""
    logger = logging.getLogger(ROOT_LOGGER)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


def setup_logging(
    level: str = "INFO",
    log_file: Optional[Path] = None,
    rich_output: bool = True,
) -> logging.Logger:
    """
    Configure the ``null_space`` logger.

    Safe to call more than once; earlier handlers are closed first.

    Args:
        level: Console log level (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional file that receives DEBUG and above
        rich_output: Whether to use Rich for console output

    Returns:
        Configured package logger
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    reset_logging()
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(logging.DEBUG if log_file else log_level)

    console_handler = _console_handler(rich_output)
    console_handler.setLevel(log_level)
    logger.addHandler(console_handler)

    if log_file:
        logger.addHandler(_file_handler(Path(log_file)))

    return logger


def get_logger(name: str) -> logging.Logger:
    """Get a module logger, e.g. ``get_logger("null_space.vault.note_store")``."""
    return logging.getLogger(name)
