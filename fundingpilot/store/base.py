"""
State store interface.

The engine persists hedge positions and the single global risk state
through this interface only. Components receive a store at construction
instead of reaching for module-level state.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from ..database.models import HedgePosition, PositionStatus, RiskStateRecord, as_utc
from ..types import AutopilotMode, RiskTier


@dataclass(frozen=True)
class RiskSnapshot:
    """
    Immutable copy of the global risk state.

    Built from one read of the whole record, so the kill-switch flag and
    its reason are always seen together.
    """
    mode: AutopilotMode
    is_running: bool
    dry_run: bool
    kill_switch_active: bool
    kill_switch_reason: Optional[str]
    kill_switch_at: Optional[datetime]
    daily_drawdown_eur: Decimal
    bucket_safe: int
    bucket_medium: int
    bucket_high: int
    total_realized_pnl_eur: Decimal
    total_funding_collected_eur: Decimal
    last_scan_at: Optional[datetime]
    last_trade_at: Optional[datetime]
    last_cycle_at: Optional[datetime]

    @classmethod
    def from_record(cls, record: RiskStateRecord) -> "RiskSnapshot":
        return cls(
            mode=record.mode,
            is_running=record.is_running,
            dry_run=record.dry_run,
            kill_switch_active=record.kill_switch_active,
            kill_switch_reason=record.kill_switch_reason,
            kill_switch_at=as_utc(record.kill_switch_at),
            daily_drawdown_eur=record.daily_drawdown_eur or Decimal("0"),
            bucket_safe=record.bucket_safe,
            bucket_medium=record.bucket_medium,
            bucket_high=record.bucket_high,
            total_realized_pnl_eur=record.total_realized_pnl_eur or Decimal("0"),
            total_funding_collected_eur=record.total_funding_collected_eur or Decimal("0"),
            last_scan_at=as_utc(record.last_scan_at),
            last_trade_at=as_utc(record.last_trade_at),
            last_cycle_at=as_utc(record.last_cycle_at),
        )

    @property
    def is_active(self) -> bool:
        """Running and not switched off."""
        return self.is_running and self.mode != AutopilotMode.OFF

    @property
    def bucket_occupancy(self) -> Dict[RiskTier, int]:
        return {
            RiskTier.SAFE: self.bucket_safe,
            RiskTier.MEDIUM: self.bucket_medium,
            RiskTier.HIGH: self.bucket_high,
        }

    def to_dict(self) -> dict:
        def iso(value: Optional[datetime]) -> Optional[str]:
            return value.isoformat() if value else None

        return {
            "mode": self.mode.value,
            "is_running": self.is_running,
            "dry_run": self.dry_run,
            "kill_switch_active": self.kill_switch_active,
            "kill_switch_reason": self.kill_switch_reason,
            "kill_switch_at": iso(self.kill_switch_at),
            "daily_drawdown_eur": float(self.daily_drawdown_eur),
            "bucket_occupancy": {tier.value: count for tier, count in self.bucket_occupancy.items()},
            "total_realized_pnl_eur": float(self.total_realized_pnl_eur),
            "total_funding_collected_eur": float(self.total_funding_collected_eur),
            "last_scan_at": iso(self.last_scan_at),
            "last_trade_at": iso(self.last_trade_at),
            "last_cycle_at": iso(self.last_cycle_at),
        }


class StateStore(ABC):
    """
    Abstract persistence for hedge positions and the risk state.

    Implementations must guarantee:
    - exactly one risk state record exists once ensure_risk_state has run
    - get_risk_state reads the whole record at once
    - increment_totals never loses an increment
    - close_position only affects positions that are still open
    """

    # ==================== Risk State ====================

    @abstractmethod
    async def ensure_risk_state(self, **defaults) -> RiskSnapshot:
        """Create the risk state record if it does not exist yet."""
        pass

    @abstractmethod
    async def get_risk_state(self) -> RiskSnapshot:
        """Consistent snapshot of the risk state."""
        pass

    @abstractmethod
    async def update_risk_state(self, **fields) -> None:
        """Write several risk state fields in one update."""
        pass

    @abstractmethod
    async def increment_totals(self, realized_pnl_eur: Decimal, funding_eur: Decimal) -> None:
        """Atomically add to lifetime realized PnL and funding totals."""
        pass

    # ==================== Positions ====================

    @abstractmethod
    async def create_position(self, position: HedgePosition) -> HedgePosition:
        pass

    @abstractmethod
    async def get_position(self, position_id: str) -> Optional[HedgePosition]:
        pass

    @abstractmethod
    async def get_open_positions(self) -> List[HedgePosition]:
        pass

    @abstractmethod
    async def list_positions(
        self,
        status: Optional[PositionStatus] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[HedgePosition]:
        pass

    @abstractmethod
    async def update_position(self, position_id: str, **fields) -> None:
        """Write mutable position fields. Entry fields raise StoreError."""
        pass

    @abstractmethod
    async def accrue_funding(
        self,
        position_id: str,
        expected_intervals: int,
        intervals: int,
        funding_eur: Decimal,
    ) -> bool:
        """
        Add funding and advance the interval counter in one update.

        Returns:
            False if the stored counter no longer equals expected_intervals
        """
        pass

    @abstractmethod
    async def close_position(
        self,
        position_id: str,
        status: PositionStatus,
        exit_long_price: Decimal,
        exit_short_price: Decimal,
        realized_pnl_eur: Decimal,
        exit_reason: str,
    ) -> bool:
        """
        Move an open position to a terminal state.

        Returns:
            True if this call closed it, False if it was not open
        """
        pass
