"""
Data types for order execution.

Sizes are EUR notionals; quantity is the base-asset amount that
notional bought at the fill price.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum

from ..database.models import generate_uuid, utc_now


class OrderSide(Enum):
    """Order direction."""
    BUY = "BUY"
    SELL = "SELL"

    @property
    def opposite(self) -> "OrderSide":
        """Get the opposite side."""
        return OrderSide.SELL if self == OrderSide.BUY else OrderSide.BUY


@dataclass
class LegFill:
    """
    Fill of one hedge leg (entry or close).
    """
    exchange: str
    symbol: str
    side: OrderSide
    quantity: Decimal
    price: Decimal  # Average fill price
    fee_eur: Decimal
    order_id: str = field(default_factory=generate_uuid)
    timestamp: datetime = field(default_factory=utc_now)
    simulated: bool = False

    @property
    def notional(self) -> Decimal:
        """Filled notional in EUR."""
        return self.quantity * self.price

    def to_dict(self) -> dict:
        return {
            "exchange": self.exchange,
            "symbol": self.symbol,
            "side": self.side.value,
            "quantity": float(self.quantity),
            "price": float(self.price),
            "notional": float(self.notional),
            "fee_eur": float(self.fee_eur),
            "order_id": self.order_id,
            "simulated": self.simulated,
        }
