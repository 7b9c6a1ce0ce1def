"""Command-line interface for null-space."""

from .main import app, main

__all__ = ["app", "main"]
