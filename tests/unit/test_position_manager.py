"""
Unit tests for the position manager.
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from conftest import make_metric, make_opportunity, make_position
from fundingpilot.database.models import PositionStatus, utc_now
from fundingpilot.engine.hedge_executor import HedgeExecutionResult, HedgeExecutor
from fundingpilot.engine.position_manager import PositionManager
from fundingpilot.errors import PositionNotFoundError
from fundingpilot.types import AuditLevel


class TestPositionManager:
    """Tests for PositionManager."""

    @pytest.fixture
    def executor(self, mock_config, paper_port, audit) -> HedgeExecutor:
        return HedgeExecutor(mock_config, paper_port, audit)

    @pytest.fixture
    def manager(self, mock_config, store, reader, executor, audit) -> PositionManager:
        """Create position manager instance."""
        return PositionManager(mock_config, store, reader, executor, audit)

    # ==================== Open ====================

    @pytest.mark.asyncio
    async def test_open_position_from_dry_run(self, manager, executor, mock_config, store, audit):
        """Test a dry-run execution becomes a simulated open position."""
        opportunity = make_opportunity(mock_config)
        execution = await executor.execute_hedge(opportunity, mock_config.capital.leg_size_eur, dry_run=True)

        position = await manager.open_position(opportunity, execution)

        assert position is not None
        assert position.status == PositionStatus.OPEN
        assert position.is_simulated is True
        assert position.hedge_id == execution.hedge_id
        assert position.size_eur == Decimal("20")
        assert position.entry_long_price == Decimal("50010")
        assert position.entry_short_price == Decimal("49990")
        assert position.current_long_price is None
        assert position.intervals_collected == 0

        snapshot = await store.get_risk_state()
        assert snapshot.last_trade_at is not None
        assert audit.find("HEDGE_POSITION_OPENED")[0]["entity_id"] == position.id

    @pytest.mark.asyncio
    async def test_open_position_failed_execution(self, manager, mock_config, store):
        """Test a failed execution records nothing."""
        execution = HedgeExecutionResult(
            success=False, hedge_id=None, long_order=None, short_order=None, error="boom",
        )

        assert await manager.open_position(make_opportunity(mock_config), execution) is None
        assert await store.get_open_positions() == []

    # ==================== Mark-to-Market ====================

    @pytest.mark.asyncio
    async def test_update_marks(self, manager, store):
        """Test fresh quotes update marks, PnL and drift."""
        position = await store.create_position(make_position())

        positions = await manager.update_all_positions([
            make_metric(exchange="binance", mark_price="50500"),
            make_metric(exchange="bybit", mark_price="50000"),
        ])

        assert len(positions) == 1
        # Long leg up 1% on a 10 EUR leg
        assert positions[0].unrealized_pnl_eur == Decimal("0.1")
        assert positions[0].pnl_drift == Decimal("1")

        stored = await store.get_position(position.id)
        assert stored.current_long_price == Decimal("50500")
        assert stored.current_short_price == Decimal("50000")
        assert stored.unrealized_pnl_eur == Decimal("0.1")

    @pytest.mark.asyncio
    async def test_parallel_move_is_neutral(self, manager, store):
        await store.create_position(make_position())

        positions = await manager.update_all_positions([
            make_metric(exchange="binance", mark_price="55000"),
            make_metric(exchange="bybit", mark_price="55000"),
        ])

        assert positions[0].unrealized_pnl_eur == Decimal("0")

    @pytest.mark.asyncio
    async def test_missing_quote_keeps_last_observed_mark(self, manager, store):
        """Test a leg without a fresh quote is not reset to its entry price."""
        position = await store.create_position(make_position())
        await manager.update_all_positions([
            make_metric(exchange="binance", mark_price="50000"),
            make_metric(exchange="bybit", mark_price="49500"),
        ])

        await manager.update_all_positions([make_metric(exchange="binance", mark_price="50000")])

        stored = await store.get_position(position.id)
        assert stored.current_short_price == Decimal("49500")
        assert stored.unrealized_pnl_eur == Decimal("0.1")

    @pytest.mark.asyncio
    async def test_never_observed_leg_stays_unobserved(self, manager, store):
        """Test a leg with no quote yet is valued at entry and stored as unobserved."""
        position = await store.create_position(make_position())

        await manager.update_all_positions([make_metric(exchange="binance", mark_price="50000")])

        stored = await store.get_position(position.id)
        assert stored.current_long_price == Decimal("50000")
        assert stored.current_short_price is None
        assert stored.short_mark.observed is False

    @pytest.mark.asyncio
    async def test_update_without_positions(self, manager):
        assert await manager.update_all_positions([]) == []

    # ==================== Funding ====================

    @pytest.mark.asyncio
    async def test_funding_accrued_once_per_interval(self, manager, store, audit):
        """Test repeated accrual within the same interval adds nothing."""
        position = await store.create_position(make_position(hours_ago=17))

        first = await manager.simulate_funding_collection()
        second = await manager.simulate_funding_collection()

        # 2 intervals x 10 EUR short leg x 0.1%
        assert first == Decimal("0.02")
        assert second == Decimal("0")

        stored = await store.get_position(position.id)
        assert stored.intervals_collected == 2
        assert stored.funding_collected_eur == Decimal("0.02")
        assert len(audit.find("FUNDING_COLLECTED")) == 1

    @pytest.mark.asyncio
    async def test_missed_intervals_catch_up(self, manager, store):
        """Test a later cycle collects every interval it missed."""
        position = await store.create_position(make_position(hours_ago=9))
        await manager.simulate_funding_collection()

        added = await manager.simulate_funding_collection(now=utc_now() + timedelta(hours=16))

        assert added == Decimal("0.02")
        stored = await store.get_position(position.id)
        assert stored.intervals_collected == 3

    @pytest.mark.asyncio
    async def test_no_funding_before_first_interval(self, manager, store):
        await store.create_position(make_position(hours_ago=1))
        assert await manager.simulate_funding_collection() == Decimal("0")

    # ==================== Close ====================

    @pytest.mark.asyncio
    async def test_round_trip_realizes_funding(self, manager, store):
        """Test a hedge with no price move realizes exactly its funding."""
        position = await store.create_position(make_position(hours_ago=9))
        await manager.simulate_funding_collection()
        await manager.update_all_positions([
            make_metric(exchange="binance", mark_price="50000"),
            make_metric(exchange="bybit", mark_price="50000"),
        ])

        assert await manager.close_position(position.id) is True

        stored = await store.get_position(position.id)
        assert stored.status == PositionStatus.CLOSED
        assert stored.exit_reason == "Manual close"
        assert stored.realized_pnl_eur == stored.funding_collected_eur == Decimal("0.01")
        assert stored.exit_long_price == Decimal("50000")
        assert stored.exit_ts is not None

        snapshot = await store.get_risk_state()
        assert snapshot.total_realized_pnl_eur == Decimal("0.01")
        assert snapshot.total_funding_collected_eur == Decimal("0.01")

    @pytest.mark.asyncio
    async def test_close_not_found(self, manager):
        """Test closing an unknown id raises."""
        with pytest.raises(PositionNotFoundError):
            await manager.close_position("missing")

    @pytest.mark.asyncio
    async def test_close_twice(self, manager, store):
        """Test a closed position is never closed again."""
        position = await store.create_position(make_position())

        assert await manager.close_position(position.id) is True
        assert await manager.close_position(position.id) is False

        snapshot = await store.get_risk_state()
        assert snapshot.total_realized_pnl_eur == Decimal("0")

    @pytest.mark.asyncio
    async def test_close_all_marks_stopped(self, manager, store):
        """Test stop-all closes every open position as stopped."""
        first = await store.create_position(make_position(symbol="BTC"))
        second = await store.create_position(make_position(symbol="ETH", entry_long_price="3000", entry_short_price="3000"))

        assert await manager.close_all("Manual STOP ALL") == 2

        assert await store.get_open_positions() == []
        for position_id in (first.id, second.id):
            stored = await store.get_position(position_id)
            assert stored.status == PositionStatus.STOPPED
            assert stored.exit_reason == "Manual STOP ALL"

    @pytest.mark.asyncio
    async def test_close_failure_keeps_position_open(self, manager, store, audit):
        """Test a failed leg close leaves the position open."""
        unsimulated = make_position()
        unsimulated.is_simulated = False
        position = await store.create_position(unsimulated)

        # The paper venue has no marks and no legs for this position
        assert await manager.close_position(position.id) is False

        stored = await store.get_position(position.id)
        assert stored.status == PositionStatus.OPEN
        failed = audit.find("HEDGE_POSITION_CLOSE_FAILED")
        assert len(failed) == 1
        assert failed[0]["level"] == AuditLevel.ERROR

    # ==================== Exit ====================

    @pytest.mark.asyncio
    async def test_max_holding_exit(self, manager, store):
        """Test positions past the holding limit are closed."""
        old = await store.create_position(make_position(symbol="BTC", hours_ago=25))
        fresh = await store.create_position(make_position(symbol="ETH", hours_ago=0))

        closed = await manager.check_exit_conditions()

        assert closed == [old.id]
        stored = await store.get_position(old.id)
        assert stored.status == PositionStatus.CLOSED
        assert stored.exit_reason.startswith("Max holding time")
        assert (await store.get_position(fresh.id)).is_open

    @pytest.mark.asyncio
    async def test_profit_floor_exit(self, manager, store):
        """Test a position under the profit floor is closed after the holding period."""
        position = await store.create_position(make_position(hours_ago=9))
        await manager.simulate_funding_collection()
        await store.update_position(position.id, unrealized_pnl_eur=Decimal("-0.1"))

        closed = await manager.check_exit_conditions()

        assert closed == [position.id]
        stored = await store.get_position(position.id)
        assert stored.exit_reason.startswith("Profit floor breached")
        assert stored.realized_pnl_eur == Decimal("-0.1")

    @pytest.mark.asyncio
    async def test_profit_target_exit(self, manager, store):
        """Test a position that earned its expected funding is closed."""
        position = await store.create_position(make_position(hours_ago=9))
        await manager.simulate_funding_collection()
        # One interval at a 0.001 spread on 20 EUR is 0.01 EUR, i.e. 5 bps
        await store.update_position(position.id, unrealized_pnl_eur=Decimal("0.01"))

        closed = await manager.check_exit_conditions()

        assert closed == [position.id]
        stored = await store.get_position(position.id)
        assert stored.exit_reason == "Profit target reached (100% of expected)"
        assert stored.realized_pnl_eur == Decimal("0.01")

    @pytest.mark.asyncio
    async def test_profit_target_not_reached_keeps_position(self, manager, store):
        position = await store.create_position(make_position(hours_ago=9))
        await manager.simulate_funding_collection()
        await store.update_position(position.id, unrealized_pnl_eur=Decimal("0.011"))
        # 5.5 bps clears the floor; a stricter target is not met
        manager.config.exit.profit_target_percent = Decimal("150")

        assert await manager.check_exit_conditions() == []
        assert (await store.get_position(position.id)).is_open
