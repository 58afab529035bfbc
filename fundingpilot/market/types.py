"""
Market data types consumed by the engine.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal


@dataclass(frozen=True)
class MarketMetric:
    """
    Snapshot of one (symbol, exchange) perpetual market.

    Read-only input; the engine never mutates these.
    """
    symbol: str
    exchange: str
    funding_rate: Decimal  # Fraction paid per funding interval
    funding_interval_hours: Decimal
    mark_price: Decimal
    spread_bps: Decimal  # Bid/ask spread
    liquidity_score: Decimal  # 0-100
    timestamp: datetime

    @property
    def key(self) -> tuple:
        return (self.symbol, self.exchange)

    def is_usable(self) -> bool:
        """True when every numeric field is finite and prices are positive."""
        numbers = (
            self.funding_rate,
            self.funding_interval_hours,
            self.mark_price,
            self.spread_bps,
            self.liquidity_score,
        )
        if any(not Decimal(value).is_finite() for value in numbers):
            return False
        return self.mark_price > 0 and self.funding_interval_hours > 0 and self.spread_bps >= 0
