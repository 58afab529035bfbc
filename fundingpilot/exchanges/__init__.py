"""Order execution ports."""

from .types import LegFill, OrderSide
from .base import ExecutionPort
from .paper import PaperExecutionPort
from .factory import create_execution_port, get_supported_venues

__all__ = [
    # Types
    "LegFill",
    "OrderSide",
    # Base
    "ExecutionPort",
    # Venues
    "PaperExecutionPort",
    # Factory
    "create_execution_port",
    "get_supported_venues",
]
