"""Market data input for the engine."""

from .reader import DatabaseMarketDataReader, MarketDataReader
from .types import MarketMetric

__all__ = [
    "MarketMetric",
    "MarketDataReader",
    "DatabaseMarketDataReader",
]
