"""
Hedge execution.

Opens and closes the two legs of a hedge as one unit. Both entry legs
are submitted concurrently; if either fails, times out or the filled
notionals disagree, whatever did fill is closed again so no single leg
is ever left open.
"""

import asyncio
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Tuple, Union

from ..audit.base import AuditSink
from ..config.schema import Config
from ..database.models import HedgePosition, generate_uuid
from ..errors import ExecutionError, OrderTimeoutError
from ..exchanges.base import ExecutionPort
from ..exchanges.types import LegFill, OrderSide
from ..types import Opportunity
from ..utils.logging import get_logger
from .formulas import BPS, check_notional_match

logger = get_logger(__name__)


@dataclass
class HedgeExecutionResult:
    """Result of opening a hedge."""
    success: bool
    hedge_id: Optional[str]
    long_order: Optional[LegFill]
    short_order: Optional[LegFill]
    error: Optional[str] = None
    execution_time_ms: int = 0
    simulated: bool = False


@dataclass
class HedgeCloseResult:
    """Result of closing both legs of a hedge."""
    success: bool
    long_close: Optional[LegFill]
    short_close: Optional[LegFill]
    error: Optional[str] = None

    @property
    def total_fees_eur(self) -> Decimal:
        fees = Decimal("0")
        for fill in (self.long_close, self.short_close):
            if fill is not None:
                fees += fill.fee_eur
        return fees


class HedgeExecutor:
    """
    Executes two-leg hedges through an execution port.

    Key features:
    - Both legs submitted concurrently, each bounded by a timeout
    - A timeout counts as a failed fill
    - Rollback of any filled leg when the other leg fails
    - Notional match check on the filled legs
    - Dry-run mode synthesizes fills without touching the port
    """

    def __init__(self, config: Config, port: ExecutionPort, audit: AuditSink):
        """
        Initialize hedge executor.

        Args:
            config: Application configuration
            port: Execution venue used outside dry-run
            audit: Audit sink
        """
        self.config = config
        self.port = port
        self.audit = audit

    @property
    def order_timeout(self) -> float:
        return self.config.execution.order_timeout_seconds

    # ==================== Entry ====================

    async def execute_hedge(
        self,
        opportunity: Opportunity,
        leg_size_eur: Decimal,
        dry_run: bool,
    ) -> HedgeExecutionResult:
        """
        Open both legs of a hedge.

        Never raises; every failure is returned with success=False and
        recorded as an error audit event.

        Args:
            opportunity: Admitted opportunity
            leg_size_eur: Notional of each leg
            dry_run: Synthesize fills instead of using the port

        Returns:
            HedgeExecutionResult with a hedge_id on success
        """
        start_time = time.time()
        hedge_id = generate_uuid()

        violation = self.config.hedge_pair_violation(opportunity.long_exchange, opportunity.short_exchange)
        if violation:
            return self._failed(hedge_id, start_time, f"Invalid hedge pair: {violation}", opportunity)

        self.audit.info(
            "HEDGE_EXECUTION_START",
            entity_type="hedge",
            entity_id=hedge_id,
            details={
                "symbol": opportunity.symbol,
                "long_exchange": opportunity.long_exchange,
                "short_exchange": opportunity.short_exchange,
                "leg_size_eur": leg_size_eur,
                "dry_run": dry_run,
            },
        )

        logger.info(
            "executing_hedge",
            hedge_id=hedge_id,
            symbol=opportunity.symbol,
            long_exchange=opportunity.long_exchange,
            short_exchange=opportunity.short_exchange,
            leg_size_eur=float(leg_size_eur),
            dry_run=dry_run,
        )

        try:
            if dry_run:
                long_fill, short_fill = self._simulate_entry(opportunity, leg_size_eur)
            else:
                result = await self._execute_live(hedge_id, opportunity, leg_size_eur, start_time)
                if isinstance(result, HedgeExecutionResult):
                    return result
                long_fill, short_fill = result
        except Exception as e:
            logger.exception("hedge_execution_error", hedge_id=hedge_id, error=str(e))
            return self._failed(hedge_id, start_time, str(e), opportunity, action="HEDGE_EXECUTION_ERROR")

        self.audit.action(
            "HEDGE_EXECUTED",
            entity_type="hedge",
            entity_id=hedge_id,
            details={
                "symbol": opportunity.symbol,
                "long_fill_price": long_fill.price,
                "short_fill_price": short_fill.price,
                "total_fees_eur": long_fill.fee_eur + short_fill.fee_eur,
                "dry_run": dry_run,
            },
        )

        execution_time_ms = int((time.time() - start_time) * 1000)
        logger.info(
            "hedge_executed",
            hedge_id=hedge_id,
            symbol=opportunity.symbol,
            long_price=float(long_fill.price),
            short_price=float(short_fill.price),
            execution_time_ms=execution_time_ms,
        )

        return HedgeExecutionResult(
            success=True,
            hedge_id=hedge_id,
            long_order=long_fill,
            short_order=short_fill,
            execution_time_ms=execution_time_ms,
            simulated=dry_run,
        )

    async def _execute_live(
        self,
        hedge_id: str,
        opportunity: Opportunity,
        leg_size_eur: Decimal,
        start_time: float,
    ) -> Union[HedgeExecutionResult, Tuple[LegFill, LegFill]]:
        """Submit both legs; returns the fills, or a failed result after rollback."""
        long_result, short_result = await asyncio.gather(
            self._submit_leg(opportunity.long_exchange, opportunity.symbol, OrderSide.BUY, leg_size_eur),
            self._submit_leg(opportunity.short_exchange, opportunity.symbol, OrderSide.SELL, leg_size_eur),
            return_exceptions=True,
        )

        long_fill = long_result if isinstance(long_result, LegFill) else None
        short_fill = short_result if isinstance(short_result, LegFill) else None

        if long_fill is None or short_fill is None:
            long_error = None if long_fill else str(long_result)
            short_error = None if short_fill else str(short_result)

            logger.error(
                "hedge_leg_failed",
                hedge_id=hedge_id,
                long_error=long_error,
                short_error=short_error,
            )

            if long_fill is not None:
                await self._rollback_leg(hedge_id, "HEDGE_ROLLBACK_LONG", long_fill)
            if short_fill is not None:
                await self._rollback_leg(hedge_id, "HEDGE_ROLLBACK_SHORT", short_fill)

            return self._failed(
                hedge_id,
                start_time,
                f"Hedge failed: Long={long_error or 'OK'}, Short={short_error or 'OK'}",
                opportunity,
                long_order=long_fill,
                short_order=short_fill,
            )

        tolerance = self.config.risk.notional_match_tolerance_percent
        if not check_notional_match(long_fill.notional, short_fill.notional, tolerance):
            await self._rollback_leg(hedge_id, "HEDGE_ROLLBACK_LONG", long_fill)
            await self._rollback_leg(hedge_id, "HEDGE_ROLLBACK_SHORT", short_fill)

            average = (long_fill.notional + short_fill.notional) / 2
            diff_percent = abs(long_fill.notional - short_fill.notional) / average * 100
            return self._failed(
                hedge_id,
                start_time,
                f"Notional mismatch: {diff_percent:.2f}% > {tolerance}% tolerance",
                opportunity,
                action="HEDGE_NOTIONAL_MISMATCH",
                long_order=long_fill,
                short_order=short_fill,
                details={
                    "long_notional": long_fill.notional,
                    "short_notional": short_fill.notional,
                    "diff_percent": diff_percent,
                },
            )

        return long_fill, short_fill

    async def _submit_leg(
        self,
        exchange: str,
        symbol: str,
        side: OrderSide,
        size_eur: Decimal,
    ) -> LegFill:
        try:
            return await asyncio.wait_for(
                self.port.submit_order(exchange, symbol, side, size_eur),
                timeout=self.order_timeout,
            )
        except asyncio.TimeoutError:
            raise OrderTimeoutError(
                f"{side.value} {symbol} on {exchange} timed out after {self.order_timeout}s",
                exchange=exchange,
                symbol=symbol,
            )

    async def _close_leg(self, exchange: str, symbol: str) -> LegFill:
        try:
            return await asyncio.wait_for(
                self.port.close_position(exchange, symbol),
                timeout=self.order_timeout,
            )
        except asyncio.TimeoutError:
            raise OrderTimeoutError(
                f"Close {symbol} on {exchange} timed out after {self.order_timeout}s",
                exchange=exchange,
                symbol=symbol,
            )

    async def _rollback_leg(self, hedge_id: str, action: str, fill: LegFill) -> None:
        """Close a leg that filled while its counterpart did not."""
        self.audit.warn(
            action,
            entity_type="order",
            entity_id=fill.order_id,
            details={"hedge_id": hedge_id, "exchange": fill.exchange, "symbol": fill.symbol},
        )
        logger.warning(
            "rolling_back_leg",
            hedge_id=hedge_id,
            exchange=fill.exchange,
            symbol=fill.symbol,
            side=fill.side.value,
        )

        try:
            await self._close_leg(fill.exchange, fill.symbol)
            logger.info("rollback_completed", hedge_id=hedge_id, exchange=fill.exchange)
        except Exception as e:
            logger.error(
                "rollback_failed",
                hedge_id=hedge_id,
                exchange=fill.exchange,
                symbol=fill.symbol,
                error=str(e),
            )
            self.audit.error(
                "HEDGE_ROLLBACK_FAILED",
                entity_type="order",
                entity_id=fill.order_id,
                details={"hedge_id": hedge_id, "exchange": fill.exchange, "error": str(e)},
            )

    async def unwind_hedge(self, execution: HedgeExecutionResult) -> None:
        """
        Close both legs of a hedge that executed but cannot be tracked.

        Simulated hedges have nothing open at a venue. Rollback failures
        are audited per leg and not raised.
        """
        if not execution.success or execution.simulated:
            return

        logger.warning("unwinding_hedge", hedge_id=execution.hedge_id)
        await asyncio.gather(
            self._rollback_leg(execution.hedge_id, "HEDGE_ROLLBACK_LONG", execution.long_order),
            self._rollback_leg(execution.hedge_id, "HEDGE_ROLLBACK_SHORT", execution.short_order),
        )

    def _simulate_entry(self, opportunity: Opportunity, leg_size_eur: Decimal) -> Tuple[LegFill, LegFill]:
        """Synthetic fills at the scanned marks with adverse slippage."""
        slippage = self.config.execution.dry_run_slippage_bps / BPS

        long_fill = LegFill(
            exchange=opportunity.long_exchange,
            symbol=opportunity.symbol,
            side=OrderSide.BUY,
            quantity=leg_size_eur / opportunity.long_mark_price,
            price=opportunity.long_mark_price * (1 + slippage),
            fee_eur=leg_size_eur * self.config.taker_fee_bps_for(opportunity.long_exchange) / BPS,
            simulated=True,
        )
        short_fill = LegFill(
            exchange=opportunity.short_exchange,
            symbol=opportunity.symbol,
            side=OrderSide.SELL,
            quantity=leg_size_eur / opportunity.short_mark_price,
            price=opportunity.short_mark_price * (1 - slippage),
            fee_eur=leg_size_eur * self.config.taker_fee_bps_for(opportunity.short_exchange) / BPS,
            simulated=True,
        )
        return long_fill, short_fill

    def _failed(
        self,
        hedge_id: str,
        start_time: float,
        error: str,
        opportunity: Opportunity,
        action: str = "HEDGE_EXECUTION_FAILED",
        long_order: Optional[LegFill] = None,
        short_order: Optional[LegFill] = None,
        details: Optional[dict] = None,
    ) -> HedgeExecutionResult:
        self.audit.error(
            action,
            entity_type="hedge",
            entity_id=hedge_id,
            details={
                "symbol": opportunity.symbol,
                "long_exchange": opportunity.long_exchange,
                "short_exchange": opportunity.short_exchange,
                "error": error,
                **(details or {}),
            },
        )
        logger.warning("hedge_not_opened", hedge_id=hedge_id, symbol=opportunity.symbol, error=error)

        return HedgeExecutionResult(
            success=False,
            hedge_id=None,
            long_order=long_order,
            short_order=short_order,
            error=error,
            execution_time_ms=int((time.time() - start_time) * 1000),
        )

    # ==================== Exit ====================

    async def close_hedge(self, position: HedgePosition, dry_run: bool) -> HedgeCloseResult:
        """
        Close both legs of an open hedge concurrently.

        Args:
            position: Open hedge position
            dry_run: Synthesize closing fills at the current marks

        Returns:
            HedgeCloseResult; success only when both legs closed
        """
        if dry_run:
            long_close, short_close = self._simulate_close(position)
            self.audit.action(
                "HEDGE_CLOSED",
                entity_type="hedge",
                entity_id=position.hedge_id,
                details={"position_id": position.id, "dry_run": True},
            )
            return HedgeCloseResult(success=True, long_close=long_close, short_close=short_close)

        long_result, short_result = await asyncio.gather(
            self._close_leg(position.long_exchange, position.symbol),
            self._close_leg(position.short_exchange, position.symbol),
            return_exceptions=True,
        )

        long_close = long_result if isinstance(long_result, LegFill) else None
        short_close = short_result if isinstance(short_result, LegFill) else None

        if long_close is None or short_close is None:
            long_error = None if long_close else str(long_result)
            short_error = None if short_close else str(short_result)
            self.audit.error(
                "HEDGE_CLOSE_PARTIAL",
                entity_type="hedge",
                entity_id=position.hedge_id,
                details={
                    "position_id": position.id,
                    "long_error": long_error,
                    "short_error": short_error,
                },
            )
            logger.error(
                "hedge_close_failed",
                position_id=position.id,
                long_error=long_error,
                short_error=short_error,
            )
            return HedgeCloseResult(
                success=False,
                long_close=long_close,
                short_close=short_close,
                error=f"Close failed: Long={long_error or 'OK'}, Short={short_error or 'OK'}",
            )

        result = HedgeCloseResult(success=True, long_close=long_close, short_close=short_close)
        self.audit.action(
            "HEDGE_CLOSED",
            entity_type="hedge",
            entity_id=position.hedge_id,
            details={"position_id": position.id, "total_fees_eur": result.total_fees_eur},
        )
        return result

    def _simulate_close(self, position: HedgePosition) -> Tuple[LegFill, LegFill]:
        leg_size = position.size_eur / 2
        long_price = position.long_mark.or_entry(position.entry_long_price)
        short_price = position.short_mark.or_entry(position.entry_short_price)

        long_close = LegFill(
            exchange=position.long_exchange,
            symbol=position.symbol,
            side=OrderSide.SELL,
            quantity=leg_size / position.entry_long_price,
            price=long_price,
            fee_eur=leg_size * self.config.taker_fee_bps_for(position.long_exchange) / BPS,
            simulated=True,
        )
        short_close = LegFill(
            exchange=position.short_exchange,
            symbol=position.symbol,
            side=OrderSide.BUY,
            quantity=leg_size / position.entry_short_price,
            price=short_price,
            fee_eur=leg_size * self.config.taker_fee_bps_for(position.short_exchange) / BPS,
            simulated=True,
        )
        return long_close, short_close
