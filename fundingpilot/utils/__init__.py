"""Utility modules for the autopilot."""

from .logging import setup_logging, get_logger, bound_context

__all__ = [
    "setup_logging",
    "get_logger",
    "bound_context",
]
