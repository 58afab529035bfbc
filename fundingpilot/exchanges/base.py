"""
Abstract execution port.

The hedge executor talks to venues only through this interface.
Concrete ports implement _submit_order and _close_position; the base
class wraps them with a per-exchange circuit breaker.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List

from ..errors import CircuitBreakerOpenError
from ..utils.logging import get_logger
from .types import LegFill, OrderSide

logger = get_logger(__name__)


class ExecutionPort(ABC):
    """
    Abstract base class for order execution venues.

    Features:
    - Unified fill-or-error interface for entry and close
    - Circuit breaker per exchange: after repeated consecutive failures
      orders to that exchange are refused until the reset time passes
    """

    # Circuit breaker settings
    CIRCUIT_BREAKER_THRESHOLD = 5
    CIRCUIT_BREAKER_RESET_TIME = 60  # seconds

    def __init__(self):
        self._consecutive_failures: Dict[str, int] = {}
        self._circuit_opened_at: Dict[str, datetime] = {}

    @property
    @abstractmethod
    def name(self) -> str:
        """Venue identifier (e.g., 'paper')."""
        pass

    # ==================== Trading ====================

    async def submit_order(
        self,
        exchange: str,
        symbol: str,
        side: OrderSide,
        size_eur: Decimal,
    ) -> LegFill:
        """
        Open one leg with a market order.

        Args:
            exchange: Exchange code
            symbol: Asset symbol (e.g., 'BTC')
            side: BUY for the long leg, SELL for the short leg
            size_eur: Leg notional in EUR

        Returns:
            LegFill for the filled order

        Raises:
            ExecutionError: If the order is rejected or cannot be filled
            CircuitBreakerOpenError: If the exchange's breaker is open
        """
        self._check_circuit_breaker(exchange)
        try:
            fill = await self._submit_order(exchange, symbol, side, size_eur)
        except Exception as e:
            self._record_failure(exchange, e)
            raise
        self._record_success(exchange)
        return fill

    async def close_position(self, exchange: str, symbol: str) -> LegFill:
        """
        Flatten the leg held on an exchange for a symbol.

        Returns:
            LegFill for the closing order

        Raises:
            ExecutionError: If the close cannot be filled
            CircuitBreakerOpenError: If the exchange's breaker is open
        """
        self._check_circuit_breaker(exchange)
        try:
            fill = await self._close_position(exchange, symbol)
        except Exception as e:
            self._record_failure(exchange, e)
            raise
        self._record_success(exchange)
        return fill

    @abstractmethod
    async def _submit_order(
        self,
        exchange: str,
        symbol: str,
        side: OrderSide,
        size_eur: Decimal,
    ) -> LegFill:
        pass

    @abstractmethod
    async def _close_position(self, exchange: str, symbol: str) -> LegFill:
        pass

    # ==================== Circuit Breaker ====================

    def _check_circuit_breaker(self, exchange: str) -> None:
        """Check if the exchange's circuit breaker is open and should block orders."""
        opened_at = self._circuit_opened_at.get(exchange)
        if opened_at is None:
            return

        # Check if enough time has passed to reset
        elapsed = (datetime.now(timezone.utc) - opened_at).total_seconds()
        if elapsed >= self.CIRCUIT_BREAKER_RESET_TIME:
            logger.info("circuit_breaker_reset", venue=self.name, exchange=exchange)
            del self._circuit_opened_at[exchange]
            self._consecutive_failures[exchange] = 0
            return

        raise CircuitBreakerOpenError(
            f"{exchange} circuit breaker is open after "
            f"{self._consecutive_failures.get(exchange, 0)} consecutive failures",
            exchange=exchange,
        )

    def _record_success(self, exchange: str) -> None:
        """Record a successful order."""
        self._consecutive_failures[exchange] = 0
        if self._circuit_opened_at.pop(exchange, None) is not None:
            logger.info("circuit_breaker_closed_on_success", venue=self.name, exchange=exchange)

    def _record_failure(self, exchange: str, error: Exception) -> None:
        """Record a failed order."""
        failures = self._consecutive_failures.get(exchange, 0) + 1
        self._consecutive_failures[exchange] = failures
        logger.warning(
            "order_failed",
            venue=self.name,
            exchange=exchange,
            consecutive_failures=failures,
            error=str(error),
        )

        if failures >= self.CIRCUIT_BREAKER_THRESHOLD and exchange not in self._circuit_opened_at:
            logger.error(
                "circuit_breaker_opened",
                venue=self.name,
                exchange=exchange,
                consecutive_failures=failures,
            )
            self._circuit_opened_at[exchange] = datetime.now(timezone.utc)

    @property
    def open_circuits(self) -> List[str]:
        """Exchanges whose circuit breaker is currently open."""
        return sorted(self._circuit_opened_at)

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}(open_circuits={self.open_circuits})>"
