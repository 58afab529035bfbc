"""
Paper trading venue.

Fills every order immediately at the latest mark price from the market
data reader and keeps the resulting legs in memory. It exercises the
full execution path (concurrent legs, timeouts, circuit breaker,
rollback) without any exchange connectivity.
"""

from decimal import Decimal
from typing import Dict, Optional, Tuple

from ..config.schema import Config
from ..errors import ExecutionError
from ..market.reader import MarketDataReader
from ..utils.logging import get_logger
from .base import ExecutionPort
from .types import LegFill, OrderSide

logger = get_logger(__name__)

BPS = Decimal("10000")


class PaperExecutionPort(ExecutionPort):
    """
    Execution port backed by market data instead of a venue.

    Open legs are keyed by (exchange, symbol); a venue holds at most one
    leg per symbol, like a one-way position mode account.
    """

    def __init__(self, config: Config, reader: MarketDataReader):
        """
        Initialize the paper venue.

        Args:
            config: Application configuration (exchange fees)
            reader: Source of mark prices
        """
        super().__init__()
        self.config = config
        self.reader = reader
        self._legs: Dict[Tuple[str, str], LegFill] = {}

    @property
    def name(self) -> str:
        return "paper"

    @property
    def open_legs(self) -> Dict[Tuple[str, str], LegFill]:
        return dict(self._legs)

    async def _mark_price(self, exchange: str, symbol: str) -> Optional[Decimal]:
        for metric in await self.reader.latest_metrics():
            if metric.exchange == exchange and metric.symbol == symbol and metric.is_usable():
                return metric.mark_price
        return None

    def _fee(self, exchange: str, notional: Decimal) -> Decimal:
        return notional * self.config.taker_fee_bps_for(exchange) / BPS

    async def _submit_order(
        self,
        exchange: str,
        symbol: str,
        side: OrderSide,
        size_eur: Decimal,
    ) -> LegFill:
        if exchange not in self.config.exchanges:
            raise ExecutionError(f"Exchange {exchange} is not configured", exchange=exchange, symbol=symbol)
        if (exchange, symbol) in self._legs:
            raise ExecutionError(
                f"A {symbol} leg is already open on {exchange}",
                exchange=exchange,
                symbol=symbol,
            )

        price = await self._mark_price(exchange, symbol)
        if price is None:
            raise ExecutionError(f"No mark price for {symbol} on {exchange}", exchange=exchange, symbol=symbol)

        fill = LegFill(
            exchange=exchange,
            symbol=symbol,
            side=side,
            quantity=size_eur / price,
            price=price,
            fee_eur=self._fee(exchange, size_eur),
            simulated=True,
        )
        self._legs[(exchange, symbol)] = fill

        logger.info(
            "paper_order_filled",
            exchange=exchange,
            symbol=symbol,
            side=side.value,
            size_eur=float(size_eur),
            price=float(price),
        )
        return fill

    async def _close_position(self, exchange: str, symbol: str) -> LegFill:
        leg = self._legs.get((exchange, symbol))
        price = await self._mark_price(exchange, symbol)

        if price is None:
            if leg is None:
                raise ExecutionError(f"No mark price for {symbol} on {exchange}", exchange=exchange, symbol=symbol)
            price = leg.price

        if leg is None:
            # Legs do not survive a restart of the paper venue
            logger.warning("paper_close_untracked_leg", exchange=exchange, symbol=symbol)
            quantity = Decimal("0")
            side = OrderSide.SELL
        else:
            quantity = leg.quantity
            side = leg.side.opposite

        fill = LegFill(
            exchange=exchange,
            symbol=symbol,
            side=side,
            quantity=quantity,
            price=price,
            fee_eur=self._fee(exchange, quantity * price),
            simulated=True,
        )
        self._legs.pop((exchange, symbol), None)

        logger.info(
            "paper_position_closed",
            exchange=exchange,
            symbol=symbol,
            side=side.value,
            price=float(price),
        )
        return fill
