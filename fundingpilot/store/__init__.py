"""State store: hedge positions and the global risk state."""

from .base import RiskSnapshot, StateStore
from .sql import SqlStateStore

__all__ = [
    "RiskSnapshot",
    "StateStore",
    "SqlStateStore",
]
