"""
Execution port factory.

Selects the venue backing live-mode execution from configuration.
"""

from typing import Callable, Dict

from ..config.schema import Config
from ..errors import ConfigurationError
from ..market.reader import MarketDataReader
from ..utils.logging import get_logger
from .base import ExecutionPort
from .paper import PaperExecutionPort

logger = get_logger(__name__)


# Registry of available venues
EXECUTION_VENUES: Dict[str, Callable[[Config, MarketDataReader], ExecutionPort]] = {
    "paper": PaperExecutionPort,
}


def create_execution_port(config: Config, reader: MarketDataReader) -> ExecutionPort:
    """
    Create the execution port named by execution.venue.

    Args:
        config: Application configuration
        reader: Market data reader (used by the paper venue for marks)

    Returns:
        Execution port instance

    Raises:
        ConfigurationError: If the venue is not supported
    """
    venue = config.execution.venue.lower()

    if venue not in EXECUTION_VENUES:
        available = ", ".join(EXECUTION_VENUES.keys())
        raise ConfigurationError(f"Unsupported execution venue: {venue}. Available: {available}")

    port = EXECUTION_VENUES[venue](config, reader)

    logger.info("execution_port_created", venue=venue)
    return port


def get_supported_venues() -> list:
    """Get list of supported venue names."""
    return list(EXECUTION_VENUES.keys())
