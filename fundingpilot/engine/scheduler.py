"""
Autopilot scheduler.

Runs the control cycle at a fixed interval and owns the wiring of the
engine components. Each cycle produces a CycleReport that callers can
poll or receive through on_cycle callbacks.
"""

import asyncio
import inspect
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, List, Optional, Set

from ..audit.base import AuditSink
from ..config.schema import Config
from ..database.models import PositionStatus
from ..errors import PositionNotFoundError, PositionRecordError
from ..exchanges.base import ExecutionPort
from ..market.reader import MarketDataReader
from ..store.base import RiskSnapshot, StateStore
from ..types import AutopilotMode, RiskLevel
from ..utils.logging import bound_context, get_logger
from .commands import CommandQueue, CommandType, ControlCommand
from .hedge_executor import HedgeExecutor
from .opportunity_engine import OpportunityEngine
from .position_manager import PositionManager
from .risk_manager import RiskManager

logger = get_logger(__name__)


class CycleStatus:
    """Outcome of one cycle."""
    COMPLETED = "completed"
    SKIPPED = "skipped"
    DEGRADED = "degraded"  # Positions managed, no new entries
    ERROR = "error"


@dataclass
class CycleReport:
    """Summary of one scheduler cycle."""
    sequence: int
    started_at: datetime
    status: str = CycleStatus.COMPLETED
    changed: bool = False
    finished_at: Optional[datetime] = None
    duration_ms: int = 0
    mode: Optional[AutopilotMode] = None
    risk_level: Optional[RiskLevel] = None
    skip_reason: Optional[str] = None
    commands_applied: int = 0
    funding_accrued_eur: Decimal = Decimal("0")
    opportunities_found: int = 0
    positions_opened: List[str] = field(default_factory=list)
    positions_closed: List[str] = field(default_factory=list)
    kill_switch_triggered: bool = False
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "sequence": self.sequence,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration_ms": self.duration_ms,
            "status": self.status,
            "changed": self.changed,
            "mode": self.mode.value if self.mode else None,
            "risk_level": self.risk_level.value if self.risk_level else None,
            "skip_reason": self.skip_reason,
            "commands_applied": self.commands_applied,
            "funding_accrued_eur": float(self.funding_accrued_eur),
            "opportunities_found": self.opportunities_found,
            "positions_opened": list(self.positions_opened),
            "positions_closed": list(self.positions_closed),
            "kill_switch_triggered": self.kill_switch_triggered,
            "error": self.error,
        }


class Scheduler:
    """
    Fixed-interval autopilot control loop.

    Cycle order:
    - Apply queued control commands
    - Accrue funding, mark positions to market, evaluate exits
    - Update risk stats and derive the risk level
    - Scan, risk-filter and execute at most one new hedge
    - Emit a CycleReport

    A tick that fires while a cycle is still running is skipped.
    """

    def __init__(
        self,
        config: Config,
        store: StateStore,
        reader: MarketDataReader,
        port: ExecutionPort,
        audit: AuditSink,
        commands: Optional[CommandQueue] = None,
    ):
        """
        Initialize the scheduler and its engine components.

        Args:
            config: Application configuration
            store: State store for positions and risk state
            reader: Market data reader
            port: Execution venue used in live mode
            audit: Audit sink shared by every component
            commands: Control command queue; a new one when omitted
        """
        self.config = config
        self.store = store
        self.reader = reader
        self.audit = audit
        self.commands = commands or CommandQueue()

        # Components
        self.opportunity_engine = OpportunityEngine(config, reader)
        self.risk_manager = RiskManager(config, store, audit)
        self.executor = HedgeExecutor(config, port, audit)
        self.position_manager = PositionManager(config, store, reader, self.executor, audit)

        # State
        self._sequence = 0
        self._last_report: Optional[CycleReport] = None
        self._cycle_lock = asyncio.Lock()
        self._skipped_ticks = 0

        # Background tasks
        self._running = False
        self._loop_task: Optional[asyncio.Task] = None
        self._inflight: Set[asyncio.Task] = set()

        # Event callbacks
        self._on_cycle: List[Callable] = []

    @property
    def interval(self) -> float:
        return self.config.scheduler.interval_seconds

    @property
    def last_report(self) -> Optional[CycleReport]:
        return self._last_report

    @property
    def sequence(self) -> int:
        return self._sequence

    @property
    def skipped_ticks(self) -> int:
        return self._skipped_ticks

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_busy(self) -> bool:
        return self._cycle_lock.locked()

    def on_cycle(self, callback: Callable) -> None:
        """Register a callback receiving every CycleReport (sync or async)."""
        self._on_cycle.append(callback)

    def submit(self, command: ControlCommand) -> ControlCommand:
        """Queue a control command for the next cycle."""
        return self.commands.submit(command)

    async def initialize(self) -> RiskSnapshot:
        """Create the risk state on first start."""
        dry_run = self.config.execution.dry_run
        snapshot = await self.store.ensure_risk_state(
            mode=AutopilotMode.PAPER if dry_run else AutopilotMode.LIVE,
            is_running=self.config.scheduler.start_running,
            dry_run=dry_run,
        )
        logger.info(
            "scheduler_initialized",
            mode=snapshot.mode.value,
            is_running=snapshot.is_running,
            kill_switch_active=snapshot.kill_switch_active,
        )
        return snapshot

    # ==================== Loop ====================

    async def start(self) -> None:
        """Start firing ticks in the background."""
        if self._running:
            logger.warning("scheduler_already_running")
            return

        self._running = True
        self._loop_task = asyncio.create_task(self._loop())
        logger.info("scheduler_started", interval_seconds=self.interval)

    async def stop(self) -> None:
        """Stop ticking and wait for an in-flight cycle to finish."""
        if not self._running:
            return

        self._running = False
        if self._loop_task:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None

        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)

        logger.info("scheduler_stopped", cycles=self._sequence, skipped_ticks=self._skipped_ticks)

    async def _loop(self) -> None:
        logger.info("scheduler_loop_started")
        while self._running:
            task = asyncio.create_task(self.tick())
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)
            await asyncio.sleep(self.interval)

    async def tick(self) -> Optional[CycleReport]:
        """
        Run one cycle unless the previous one is still running.

        Returns:
            The cycle report, or None if the tick was skipped
        """
        if self._cycle_lock.locked():
            self._skipped_ticks += 1
            logger.warning("cycle_skipped_busy", sequence=self._sequence, skipped_ticks=self._skipped_ticks)
            return None

        async with self._cycle_lock:
            return await self.run_cycle()

    # ==================== Cycle ====================

    async def run_cycle(self) -> CycleReport:
        """
        Run one full control cycle.

        Infrastructure failures abort the cycle; they are logged, audited
        and reported, and the next tick tries again.
        """
        self._sequence += 1
        start_time = time.time()
        report = CycleReport(sequence=self._sequence, started_at=datetime.now(timezone.utc))

        with bound_context(cycle=self._sequence):
            try:
                await self._run(report)
            except Exception as e:
                report.status = CycleStatus.ERROR
                report.error = str(e)
                logger.exception("cycle_error", error=str(e))
                self.audit.error(
                    "CYCLE_ERROR",
                    entity_type="cycle",
                    details={"sequence": self._sequence, "error": str(e)},
                )

            report.finished_at = datetime.now(timezone.utc)
            report.duration_ms = int((time.time() - start_time) * 1000)
            report.changed = self._has_changed(report)
            self._last_report = report

            logger.info(
                "cycle_complete",
                status=report.status,
                changed=report.changed,
                opened=len(report.positions_opened),
                closed=len(report.positions_closed),
                duration_ms=report.duration_ms,
            )
            await self._notify(report)

        return report

    async def _run(self, report: CycleReport) -> None:
        report.commands_applied = await self._apply_commands()

        snapshot = await self.store.get_risk_state()
        report.mode = snapshot.mode
        was_killed = snapshot.kill_switch_active
        now = datetime.now(timezone.utc)

        if not snapshot.is_active:
            report.status = CycleStatus.SKIPPED
            if snapshot.mode == AutopilotMode.OFF:
                report.skip_reason = "Mode is off"
            elif snapshot.kill_switch_active:
                report.skip_reason = f"Kill switch active: {snapshot.kill_switch_reason}"
                self.audit.warn("CYCLE_SKIP", entity_type="cycle", details={"reason": report.skip_reason})
            else:
                report.skip_reason = "Autopilot stopped"
            logger.info("cycle_skipped", reason=report.skip_reason)
            await self.store.update_risk_state(last_cycle_at=now)
            return

        metrics = await self.reader.latest_metrics()
        self.opportunity_engine.observe(metrics)

        # Existing positions first, before any new capital is committed
        report.funding_accrued_eur = await self.position_manager.simulate_funding_collection()
        await self.position_manager.update_all_positions(metrics)
        report.positions_closed = await self.position_manager.check_exit_conditions()

        open_positions = await self.position_manager.get_open_positions()
        await self.risk_manager.update_daily_stats(open_positions)

        snapshot = await self.store.get_risk_state()
        report.kill_switch_triggered = snapshot.kill_switch_active and not was_killed
        level = self.risk_manager.risk_level(snapshot)
        report.risk_level = level

        age = self.opportunity_engine.newest_metric_age_seconds()
        timeout = self.config.exit.data_stale_timeout_seconds
        if age is not None and age > timeout:
            report.status = CycleStatus.DEGRADED
            report.skip_reason = f"Market data stale ({age:.0f}s > {timeout}s)"
            logger.error("market_data_stale", age_seconds=age, timeout_seconds=timeout)
            self.audit.error(
                "DATA_STALE",
                entity_type="cycle",
                details={"age_seconds": age, "timeout_seconds": timeout},
            )
            await self.store.update_risk_state(last_cycle_at=now)
            return

        if level == RiskLevel.STOPPED:
            report.status = CycleStatus.DEGRADED
            report.skip_reason = "Risk level stopped"
            self.audit.warn(
                "RISK_STOPPED",
                entity_type="risk_state",
                details={
                    "daily_drawdown_eur": snapshot.daily_drawdown_eur,
                    "kill_switch_active": snapshot.kill_switch_active,
                },
            )
            await self.store.update_risk_state(last_cycle_at=now)
            return

        if level == RiskLevel.CAUTIOUS:
            report.status = CycleStatus.DEGRADED
            report.skip_reason = "Risk level cautious"
            self.audit.info(
                "RISK_CAUTIOUS",
                entity_type="risk_state",
                details={"daily_drawdown_eur": snapshot.daily_drawdown_eur},
            )
            await self.store.update_risk_state(last_cycle_at=now)
            return

        opportunities = await self.opportunity_engine.scan_and_rank(metrics)
        report.opportunities_found = len(opportunities)

        admitted = await self.risk_manager.filter_within_budget(opportunities, open_positions, snapshot)
        for opportunity in admitted:
            if snapshot.dry_run:
                self.audit.info(
                    "HEDGE_DECISION_DRYRUN",
                    entity_type="opportunity",
                    details={
                        "symbol": opportunity.symbol,
                        "long_exchange": opportunity.long_exchange,
                        "short_exchange": opportunity.short_exchange,
                        "net_profit_bps": opportunity.net_profit_bps,
                        "score": opportunity.score,
                    },
                )

            result = await self.executor.execute_hedge(
                opportunity,
                self.config.capital.leg_size_eur,
                dry_run=snapshot.dry_run,
            )
            if not result.success:
                continue

            try:
                position = await self.position_manager.open_position(opportunity, result)
            except PositionRecordError as e:
                # No position tracks these legs, so they must not stay open
                await self.executor.unwind_hedge(result)
                self.audit.error(
                    "POSITION_RECORD_FAILED",
                    entity_type="hedge",
                    entity_id=result.hedge_id,
                    details={
                        "symbol": opportunity.symbol,
                        "long_exchange": opportunity.long_exchange,
                        "short_exchange": opportunity.short_exchange,
                        "simulated": result.simulated,
                        "error": str(e),
                    },
                )
                raise
            if position is not None:
                report.positions_opened.append(position.id)

        if report.positions_opened:
            open_positions = await self.position_manager.get_open_positions()
            await self.risk_manager.update_daily_stats(open_positions)

        await self.store.update_risk_state(last_scan_at=now, last_cycle_at=now)

    # ==================== Commands ====================

    async def _apply_commands(self) -> int:
        """Apply every queued command in order. Returns how many were applied."""
        pending = self.commands.drain()
        applied = 0
        for index, command in enumerate(pending):
            try:
                await self._apply_command(command)
            except PositionNotFoundError as e:
                logger.warning("command_failed", command_id=command.id, type=command.type.value, error=str(e))
                self.audit.warn(
                    "COMMAND_FAILED",
                    entity_type="command",
                    entity_id=command.id,
                    details={"type": command.type, "error": str(e)},
                )
            except Exception:
                # Keep the failed command and everything after it for the next cycle
                self.commands.requeue(pending[index:])
                raise
            applied += 1
        return applied

    async def _apply_command(self, command: ControlCommand) -> None:
        logger.info("command_applying", command_id=command.id, type=command.type.value)

        if command.type == CommandType.SET_MODE:
            snapshot = await self.store.get_risk_state()
            await self.store.update_risk_state(
                mode=command.mode,
                dry_run=command.mode != AutopilotMode.LIVE,
            )
            self.audit.action(
                "MODE_CHANGE",
                entity_type="risk_state",
                details={"from": snapshot.mode, "to": command.mode},
            )

        elif command.type == CommandType.SET_RUNNING:
            await self.store.update_risk_state(is_running=command.running)
            self.audit.action(
                "BOT_STARTED" if command.running else "BOT_STOPPED",
                entity_type="risk_state",
            )

        elif command.type == CommandType.RESET_KILL_SWITCH:
            await self.risk_manager.reset_kill_switch()

        elif command.type == CommandType.STOP_ALL:
            await self.store.update_risk_state(is_running=False)
            closed = await self.position_manager.close_all(command.reason, PositionStatus.STOPPED)
            self.audit.action(
                "STOP_ALL",
                entity_type="risk_state",
                details={"positions_closed": closed, "reason": command.reason},
            )

        elif command.type == CommandType.CLOSE_POSITION:
            await self.position_manager.close_position(command.position_id, command.reason)

    # ==================== Reporting ====================

    def _has_changed(self, report: CycleReport) -> bool:
        """Whether anything an observer would care about differs from the previous cycle."""
        if (
            report.commands_applied
            or report.positions_opened
            or report.positions_closed
            or report.funding_accrued_eur > 0
            or report.kill_switch_triggered
            or report.status == CycleStatus.ERROR
        ):
            return True

        previous = self._last_report
        if previous is None:
            return True
        return (
            previous.status != report.status
            or previous.mode != report.mode
            or previous.risk_level != report.risk_level
            or previous.skip_reason != report.skip_reason
        )

    async def _notify(self, report: CycleReport) -> None:
        for callback in self._on_cycle:
            try:
                result = callback(report)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error("cycle_callback_error", error=str(e))
