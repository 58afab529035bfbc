"""
Risk management module.

Gates new hedges against the capital and risk budget, tracks the
daily drawdown and owns the sticky kill switch.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple

from ..audit.base import AuditSink
from ..config.schema import Config
from ..database.models import HedgePosition
from ..store.base import RiskSnapshot, StateStore
from ..types import Opportunity, RiskLevel, RiskTier
from ..utils.logging import get_logger

logger = get_logger(__name__)

_ZERO = Decimal("0")
_HUNDRED = Decimal("100")


def bucket_counts(positions: Sequence[HedgePosition]) -> Dict[RiskTier, int]:
    """Open positions per risk tier, zero-filled."""
    counts = {tier: 0 for tier in RiskTier}
    for position in positions:
        counts[position.risk_tier] += 1
    return counts


def deployed_eur(positions: Sequence[HedgePosition]) -> Decimal:
    """Total notional of the given positions."""
    return sum((position.size_eur for position in positions), _ZERO)


class RiskManager:
    """
    Manages risk controls for the autopilot.

    Features:
    - Risk level from daily drawdown (normal, cautious, stopped)
    - Admission filter: capacity, one position per symbol, tier
      buckets, stress test, at most one new hedge per cycle
    - Kill switch that trips on a drawdown breach and stays active
      until an explicit reset
    """

    def __init__(self, config: Config, store: StateStore, audit: AuditSink):
        """
        Initialize risk manager.

        Args:
            config: Application configuration
            store: State store holding the risk state
            audit: Audit sink
        """
        self.config = config
        self.store = store
        self.audit = audit

    # ==================== Risk Level ====================

    def risk_level(self, snapshot: RiskSnapshot) -> RiskLevel:
        """Map the risk state to an admission level."""
        if snapshot.kill_switch_active:
            return RiskLevel.STOPPED
        if snapshot.daily_drawdown_eur >= self.config.risk.max_daily_drawdown_eur:
            return RiskLevel.STOPPED
        if snapshot.daily_drawdown_eur >= self.config.risk.caution_drawdown_eur:
            return RiskLevel.CAUTIOUS
        return RiskLevel.NORMAL

    # ==================== Admission ====================

    def can_open_new_hedge(self, open_positions: Sequence[HedgePosition]) -> Tuple[bool, str]:
        """
        Check global capacity for one more hedge.

        Returns:
            Tuple of (can_open, reason)
        """
        max_hedges = self.config.risk.max_concurrent_hedges
        if len(open_positions) >= max_hedges:
            return False, f"Open positions {len(open_positions)} at max {max_hedges}"

        deployed = deployed_eur(open_positions)
        hedge_size = self.config.capital.hedge_size_eur
        max_deployed = self.config.capital.max_deployed_eur
        if deployed + hedge_size > max_deployed:
            return False, f"Deployed €{deployed} + €{hedge_size} exceeds max €{max_deployed}"

        return True, "OK"

    def stress_loss(self, open_positions: Sequence[HedgePosition]) -> Decimal:
        """Loss if every position plus one new hedge moved by the stress multiplier in percent."""
        exposure = deployed_eur(open_positions) + self.config.capital.hedge_size_eur
        return exposure * self.config.risk.stress_test_multiplier / _HUNDRED

    async def filter_within_budget(
        self,
        opportunities: Sequence[Opportunity],
        open_positions: Sequence[HedgePosition],
        snapshot: Optional[RiskSnapshot] = None,
    ) -> List[Opportunity]:
        """
        Select the opportunity to open this cycle, if any.

        Args:
            opportunities: Ranked opportunities, best first
            open_positions: Currently open hedges
            snapshot: Risk state; read from the store when omitted

        Returns:
            Empty list or a single admitted opportunity
        """
        if snapshot is None:
            snapshot = await self.store.get_risk_state()

        if snapshot.kill_switch_active:
            logger.info("admission_blocked", reason="kill switch active")
            return []

        can_open, reason = self.can_open_new_hedge(open_positions)
        if not can_open:
            logger.info("admission_blocked", reason=reason)
            return []

        held_symbols = {position.symbol for position in open_positions}
        occupancy = bucket_counts(open_positions)
        stress_loss = self.stress_loss(open_positions)
        max_drawdown = self.config.risk.max_daily_drawdown_eur

        for opportunity in opportunities:
            tier = opportunity.risk_tier
            bucket_max = self.config.buckets.max_for(tier.value)

            if opportunity.symbol in held_symbols:
                logger.debug("opportunity_filtered", pair=opportunity.pair_key, reason="symbol already held")
                continue

            if tier == RiskTier.HIGH and bucket_max == 0:
                logger.debug("opportunity_filtered", pair=opportunity.pair_key, reason="high tier disabled")
                continue

            if occupancy[tier] >= bucket_max:
                logger.debug(
                    "opportunity_filtered",
                    pair=opportunity.pair_key,
                    reason="bucket full",
                    tier=tier.value,
                    occupancy=occupancy[tier],
                    bucket_max=bucket_max,
                )
                continue

            if stress_loss > max_drawdown:
                self.audit.warn(
                    "STRESS_TEST_EXCEEDED",
                    entity_type="opportunity",
                    details={
                        "symbol": opportunity.symbol,
                        "long_exchange": opportunity.long_exchange,
                        "short_exchange": opportunity.short_exchange,
                        "stress_loss": stress_loss,
                        "max_daily_drawdown_eur": max_drawdown,
                    },
                )
                continue

            logger.info(
                "opportunity_admitted",
                pair=opportunity.pair_key,
                tier=tier.value,
                score=opportunity.score,
                net_profit_bps=float(opportunity.net_profit_bps),
            )
            return [opportunity]

        return []

    # ==================== Daily Stats ====================

    async def update_daily_stats(self, open_positions: Sequence[HedgePosition]) -> Decimal:
        """
        Recompute drawdown and bucket occupancy; trip the kill switch on a breach.

        Returns:
            The daily drawdown as a non-negative loss in EUR
        """
        total_unrealized = sum(
            (position.unrealized_pnl_eur or _ZERO for position in open_positions), _ZERO
        )
        drawdown = max(_ZERO, -total_unrealized)
        occupancy = bucket_counts(open_positions)

        await self.store.update_risk_state(
            daily_drawdown_eur=drawdown,
            bucket_safe=occupancy[RiskTier.SAFE],
            bucket_medium=occupancy[RiskTier.MEDIUM],
            bucket_high=occupancy[RiskTier.HIGH],
        )

        max_drawdown = self.config.risk.max_daily_drawdown_eur
        if total_unrealized < -max_drawdown:
            await self.trigger_kill_switch(
                f"Unrealized loss €{abs(total_unrealized):.2f} exceeds max €{max_drawdown}"
            )

        logger.debug(
            "daily_stats_updated",
            unrealized_eur=float(total_unrealized),
            drawdown_eur=float(drawdown),
            open_positions=len(open_positions),
        )
        return drawdown

    # ==================== Kill Switch ====================

    async def trigger_kill_switch(self, reason: str) -> bool:
        """
        Activate the kill switch and stop the autopilot.

        Flag, reason and timestamp are written in one update.

        Returns:
            True if this call activated it, False if it was already active
        """
        snapshot = await self.store.get_risk_state()
        if snapshot.kill_switch_active:
            logger.warning("kill_switch_already_active", reason=snapshot.kill_switch_reason)
            return False

        await self.store.update_risk_state(
            kill_switch_active=True,
            kill_switch_reason=reason,
            kill_switch_at=datetime.now(timezone.utc),
            is_running=False,
        )

        logger.critical("kill_switch_activated", reason=reason)
        self.audit.error("KILL_SWITCH_TRIGGERED", entity_type="risk_state", details={"reason": reason})
        return True

    async def reset_kill_switch(self) -> bool:
        """
        Clear the kill switch (manual action only).

        The autopilot stays stopped until it is started again.

        Returns:
            True if the switch was active
        """
        snapshot = await self.store.get_risk_state()
        if not snapshot.kill_switch_active:
            return False

        await self.store.update_risk_state(
            kill_switch_active=False,
            kill_switch_reason=None,
            kill_switch_at=None,
            daily_drawdown_eur=_ZERO,
        )

        logger.info("kill_switch_deactivated", previous_reason=snapshot.kill_switch_reason)
        self.audit.action(
            "KILL_SWITCH_RESET",
            entity_type="risk_state",
            details={"previous_reason": snapshot.kill_switch_reason},
        )
        return True

    def get_risk_status(self, snapshot: RiskSnapshot) -> dict:
        """Get current risk status summary."""
        return {
            "risk_level": self.risk_level(snapshot).value,
            "kill_switch_active": snapshot.kill_switch_active,
            "kill_switch_reason": snapshot.kill_switch_reason,
            "daily_drawdown_eur": float(snapshot.daily_drawdown_eur),
            "max_daily_drawdown_eur": float(self.config.risk.max_daily_drawdown_eur),
            "caution_drawdown_eur": float(self.config.risk.caution_drawdown_eur),
            "bucket_occupancy": {tier.value: count for tier, count in snapshot.bucket_occupancy.items()},
            "bucket_max": {tier.value: self.config.buckets.max_for(tier.value) for tier in RiskTier},
        }
