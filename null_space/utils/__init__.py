"""Utility modules for null-space."""

from .logging import (
    console,
    get_logger,
    reset_logging,
    setup_logging,
)


__all__ = [
    "setup_logging",
    "reset_logging",
    "get_logger",
    "console",
]
