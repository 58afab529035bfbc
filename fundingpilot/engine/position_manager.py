"""
Position lifecycle manager.

Owns every state change of a hedge position: open, mark-to-market,
funding accrual, exit evaluation and close. Other components only
read positions.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple

from ..audit.base import AuditSink
from ..config.schema import Config
from ..database.models import HedgePosition, PositionStatus
from ..errors import PositionNotFoundError, PositionRecordError, StoreError
from ..market.reader import MarketDataReader
from ..market.types import MarketMetric
from ..store.base import StateStore
from ..types import Opportunity
from ..utils.logging import get_logger
from . import formulas
from .commands import MANUAL_CLOSE_REASON
from .hedge_executor import HedgeExecutionResult, HedgeExecutor

logger = get_logger(__name__)

_HUNDRED = Decimal("100")


class PositionManager:
    """
    Manages the lifecycle of hedge positions.

    Responsibilities:
    - Record positions from successful hedge executions
    - Mark open positions to market every cycle
    - Accrue funding per elapsed interval, exactly once per interval
    - Evaluate exit rules and close positions
    - Update lifetime realized PnL and funding totals on close
    """

    def __init__(
        self,
        config: Config,
        store: StateStore,
        reader: MarketDataReader,
        executor: HedgeExecutor,
        audit: AuditSink,
    ):
        """
        Initialize position manager.

        Args:
            config: Application configuration
            store: State store for positions and totals
            reader: Source of fresh mark prices
            executor: Hedge executor used to close legs
            audit: Audit sink
        """
        self.config = config
        self.store = store
        self.reader = reader
        self.executor = executor
        self.audit = audit

    async def get_open_positions(self) -> List[HedgePosition]:
        return await self.store.get_open_positions()

    # ==================== Open ====================

    async def open_position(
        self,
        opportunity: Opportunity,
        execution: HedgeExecutionResult,
    ) -> Optional[HedgePosition]:
        """
        Record a new position from a successful hedge execution.

        Entry prices are the executor's fill prices. The current marks
        start out not yet observed.

        Args:
            opportunity: The opportunity that was executed
            execution: Successful execution result

        Returns:
            Created position, or None if the execution did not succeed

        Raises:
            PositionRecordError: The position insert failed; the legs are still open
        """
        if not execution.success or execution.long_order is None or execution.short_order is None:
            logger.warning("open_position_skipped", symbol=opportunity.symbol, error=execution.error)
            return None

        now = datetime.now(timezone.utc)
        position = HedgePosition(
            hedge_id=execution.hedge_id,
            symbol=opportunity.symbol,
            long_exchange=opportunity.long_exchange,
            short_exchange=opportunity.short_exchange,
            size_eur=self.config.capital.hedge_size_eur,
            leverage=1,
            risk_tier=opportunity.risk_tier,
            is_simulated=execution.simulated,
            entry_ts=now,
            entry_long_price=execution.long_order.price,
            entry_short_price=execution.short_order.price,
            entry_long_rate_8h=opportunity.long_rate_8h,
            entry_short_rate_8h=opportunity.short_rate_8h,
            entry_funding_spread_8h=opportunity.funding_spread_8h,
            entry_score=opportunity.score,
            funding_interval_hours=formulas.REFERENCE_INTERVAL_HOURS,
            funding_collected_eur=Decimal("0"),
            intervals_collected=0,
            unrealized_pnl_eur=Decimal("0"),
            unrealized_pnl_percent=Decimal("0"),
            pnl_drift=Decimal("0"),
            status=PositionStatus.OPEN,
        )

        try:
            position = await self.store.create_position(position)
        except StoreError as e:
            raise PositionRecordError(
                f"Hedge {execution.hedge_id} executed but was not recorded: {e}",
                hedge_id=execution.hedge_id,
            ) from e
        await self.store.update_risk_state(last_trade_at=now)

        self.audit.action(
            "HEDGE_POSITION_OPENED",
            entity_type="position",
            entity_id=position.id,
            details={
                "symbol": position.symbol,
                "hedge_id": position.hedge_id,
                "long_exchange": position.long_exchange,
                "short_exchange": position.short_exchange,
                "size_eur": position.size_eur,
                "risk_tier": position.risk_tier,
                "score": opportunity.score,
                "net_profit_bps": opportunity.net_profit_bps,
                "apr": opportunity.apr,
                "simulated": execution.simulated,
            },
        )

        logger.info(
            "position_opened",
            position_id=position.id,
            symbol=position.symbol,
            long_exchange=position.long_exchange,
            short_exchange=position.short_exchange,
            size_eur=float(position.size_eur),
            tier=position.risk_tier.value,
        )
        return position

    # ==================== Mark-to-Market ====================

    @staticmethod
    def _fresh_marks(metrics: Sequence[MarketMetric]) -> Dict[Tuple[str, str], Decimal]:
        return {
            (metric.symbol.upper(), metric.exchange.lower()): metric.mark_price
            for metric in metrics
            if metric.is_usable()
        }

    async def update_all_positions(
        self,
        metrics: Optional[Sequence[MarketMetric]] = None,
    ) -> List[HedgePosition]:
        """
        Mark every open position to market and persist the result.

        A leg without a fresh quote keeps its last observed mark; only a
        leg that was never observed is valued at its entry price.

        Args:
            metrics: Latest metrics; read from the market data reader when omitted

        Returns:
            The open positions with refreshed marks and PnL
        """
        positions = await self.store.get_open_positions()
        if not positions:
            return []

        if metrics is None:
            metrics = await self.reader.latest_metrics()
        quotes = self._fresh_marks(metrics)

        for position in positions:
            long_mark = position.long_mark.refresh(quotes.get((position.symbol, position.long_exchange)))
            short_mark = position.short_mark.refresh(quotes.get((position.symbol, position.short_exchange)))

            pnl = formulas.calculate_unrealized_pnl(
                position.entry_long_price,
                position.entry_short_price,
                long_mark.or_entry(position.entry_long_price),
                short_mark.or_entry(position.entry_short_price),
                position.size_eur,
            )
            unrealized = position.funding_collected_eur + pnl.pnl_eur

            fields = {
                "current_long_price": long_mark.to_column(),
                "current_short_price": short_mark.to_column(),
                "unrealized_pnl_eur": unrealized,
                "unrealized_pnl_percent": pnl.pnl_percent,
                "pnl_drift": pnl.drift_percent,
            }
            await self.store.update_position(position.id, **fields)
            for name, value in fields.items():
                setattr(position, name, value)

            logger.debug(
                "position_marked",
                position_id=position.id,
                symbol=position.symbol,
                long_observed=long_mark.observed,
                short_observed=short_mark.observed,
                unrealized_eur=float(unrealized),
                drift_percent=float(pnl.drift_percent),
            )

        return positions

    # ==================== Funding ====================

    async def simulate_funding_collection(self, now: Optional[datetime] = None) -> Decimal:
        """
        Accrue funding for every whole interval elapsed since entry.

        Running it twice without a new interval elapsing accrues nothing
        the second time; a missed cycle catches up on the next one.

        Returns:
            Total funding added across all positions
        """
        now = now or datetime.now(timezone.utc)
        positions = await self.store.get_open_positions()
        total_added = Decimal("0")

        for position in positions:
            intervals = formulas.funding_intervals_elapsed(
                position.hours_held(now),
                position.funding_interval_hours,
            )
            if intervals <= position.intervals_collected:
                continue

            new_intervals = intervals - position.intervals_collected
            per_interval = formulas.funding_per_interval(
                position.entry_long_rate_8h,
                position.entry_short_rate_8h,
                position.size_eur,
            )
            funding_added = per_interval * new_intervals

            accrued = await self.store.accrue_funding(
                position.id,
                expected_intervals=position.intervals_collected,
                intervals=intervals,
                funding_eur=funding_added,
            )
            if not accrued:
                logger.warning("funding_accrual_conflict", position_id=position.id)
                continue

            total_added += funding_added
            self.audit.info(
                "FUNDING_COLLECTED",
                entity_type="position",
                entity_id=position.id,
                details={
                    "symbol": position.symbol,
                    "intervals_added": new_intervals,
                    "funding_added": funding_added,
                    "total_funding": position.funding_collected_eur + funding_added,
                },
            )
            logger.info(
                "funding_collected",
                position_id=position.id,
                symbol=position.symbol,
                intervals_added=new_intervals,
                funding_added=float(funding_added),
            )

        return total_added

    # ==================== Exit ====================

    async def check_exit_conditions(self, now: Optional[datetime] = None) -> List[str]:
        """
        Close every open position whose exit rules fire.

        Returns:
            IDs of the positions closed
        """
        now = now or datetime.now(timezone.utc)
        positions = await self.store.get_open_positions()
        closed: List[str] = []

        for position in positions:
            total_pnl_bps = (
                position.unrealized_pnl_eur / position.size_eur * formulas.BPS
                if position.size_eur > 0 else Decimal("0")
            )
            reason = formulas.evaluate_exit(
                hours_held=position.hours_held(now),
                intervals_collected=position.intervals_collected,
                drift_percent=position.pnl_drift,
                total_pnl_bps=total_pnl_bps,
                config=self.config.exit,
                expected_profit_bps=formulas.expected_funding_bps(
                    position.entry_funding_spread_8h,
                    position.intervals_collected,
                ),
            )
            if reason is None:
                continue

            logger.info("exit_condition_met", position_id=position.id, symbol=position.symbol, reason=reason)
            if await self._close(position, reason, PositionStatus.CLOSED):
                closed.append(position.id)

        return closed

    async def close_position(
        self,
        position_id: str,
        reason: str = MANUAL_CLOSE_REASON,
        status: PositionStatus = PositionStatus.CLOSED,
    ) -> bool:
        """
        Close a position by ID.

        Args:
            position_id: Position to close
            reason: Exit reason recorded verbatim
            status: Terminal status (closed, or stopped for operator stops)

        Returns:
            True if the position was closed by this call

        Raises:
            PositionNotFoundError: If the position does not exist
        """
        position = await self.store.get_position(position_id)
        if position is None:
            raise PositionNotFoundError(position_id)

        if not position.is_open:
            logger.warning("position_already_closed", position_id=position_id, status=position.status.value)
            return False

        return await self._close(position, reason, status)

    async def close_all(self, reason: str, status: PositionStatus = PositionStatus.STOPPED) -> int:
        """Close every open position. Returns how many were closed."""
        positions = await self.store.get_open_positions()
        closed = 0
        for position in positions:
            if await self._close(position, reason, status):
                closed += 1
        return closed

    async def _close(self, position: HedgePosition, reason: str, status: PositionStatus) -> bool:
        close_result = await self.executor.close_hedge(position, dry_run=position.is_simulated)
        if not close_result.success:
            self.audit.error(
                "HEDGE_POSITION_CLOSE_FAILED",
                entity_type="position",
                entity_id=position.id,
                details={"symbol": position.symbol, "reason": reason, "error": close_result.error},
            )
            logger.error(
                "position_close_failed",
                position_id=position.id,
                symbol=position.symbol,
                error=close_result.error,
            )
            return False

        exit_long = position.long_mark.or_entry(position.entry_long_price)
        exit_short = position.short_mark.or_entry(position.entry_short_price)
        realized = position.unrealized_pnl_eur
        funding = position.funding_collected_eur

        closed = await self.store.close_position(
            position.id,
            status=status,
            exit_long_price=exit_long,
            exit_short_price=exit_short,
            realized_pnl_eur=realized,
            exit_reason=reason,
        )
        if not closed:
            logger.warning("position_close_raced", position_id=position.id)
            return False

        await self.store.increment_totals(realized, funding)

        realized_percent = realized / position.size_eur * _HUNDRED if position.size_eur > 0 else Decimal("0")
        self.audit.action(
            "HEDGE_POSITION_CLOSED",
            entity_type="position",
            entity_id=position.id,
            details={
                "symbol": position.symbol,
                "hedge_id": position.hedge_id,
                "status": status,
                "reason": reason,
                "realized_pnl": realized,
                "realized_pnl_percent": realized_percent,
                "funding_collected": funding,
                "intervals_held": position.intervals_collected,
                "pnl_drift": position.pnl_drift,
                "close_fees_eur": close_result.total_fees_eur,
            },
        )

        logger.info(
            "position_closed",
            position_id=position.id,
            symbol=position.symbol,
            status=status.value,
            reason=reason,
            realized_pnl_eur=float(realized),
            funding_eur=float(funding),
        )
        return True
