"""
SQLAlchemy ORM models for the autopilot.

Tables:
- hedge_positions: one row per hedge, retained after close for audit
- risk_state: single-row global risk record (id is always 1)
- audit_log: append-only decision trail
- market_metrics: per (symbol, exchange) market snapshots
"""

import enum
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from ..types import AuditLevel, AutopilotMode, MarkPrice, RiskTier

RISK_STATE_ID = 1

# Entry snapshot columns, written once at insert
ENTRY_FIELDS = frozenset({
    "entry_ts",
    "entry_long_price",
    "entry_short_price",
    "entry_long_rate_8h",
    "entry_short_rate_8h",
    "entry_funding_spread_8h",
    "entry_score",
})


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


class PositionStatus(enum.Enum):
    """Hedge lifecycle status. Terminal states are never reopened."""
    OPEN = "open"
    CLOSED = "closed"
    STOPPED = "stopped"  # Closed by an operator stop-all


def generate_uuid() -> str:
    """Generate a UUID string."""
    return str(uuid.uuid4())


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes read back from SQLite."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class HedgePosition(Base):
    """
    A matched long/short pair on one symbol across two exchanges.

    Entry fields are written once at open. Marks, funding and PnL are
    refreshed every cycle while open. Exit fields are written once at close.
    """
    __tablename__ = "hedge_positions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    hedge_id: Mapped[Optional[str]] = mapped_column(String(36))

    symbol: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    long_exchange: Mapped[str] = mapped_column(String(32), nullable=False)
    short_exchange: Mapped[str] = mapped_column(String(32), nullable=False)

    # Notional, split evenly across legs
    size_eur: Mapped[Decimal] = mapped_column(Numeric(20, 2), nullable=False)
    leverage: Mapped[int] = mapped_column(Integer, default=1)
    risk_tier: Mapped[RiskTier] = mapped_column(Enum(RiskTier), nullable=False)

    # Opened with synthetic fills; closed the same way
    is_simulated: Mapped[bool] = mapped_column(Boolean, default=True)

    # Entry snapshot (immutable)
    entry_ts: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    entry_long_price: Mapped[Decimal] = mapped_column(Numeric(20, 8), nullable=False)
    entry_short_price: Mapped[Decimal] = mapped_column(Numeric(20, 8), nullable=False)
    entry_long_rate_8h: Mapped[Decimal] = mapped_column(Numeric(16, 10), default=Decimal("0"))
    entry_short_rate_8h: Mapped[Decimal] = mapped_column(Numeric(16, 10), default=Decimal("0"))
    entry_funding_spread_8h: Mapped[Decimal] = mapped_column(Numeric(16, 10), nullable=False)
    entry_score: Mapped[int] = mapped_column(Integer, default=0)
    funding_interval_hours: Mapped[Decimal] = mapped_column(Numeric(6, 2), default=Decimal("8"))

    # Marks (NULL until first observed, see long_mark/short_mark)
    current_long_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(20, 8))
    current_short_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(20, 8))

    # Running totals
    funding_collected_eur: Mapped[Decimal] = mapped_column(Numeric(20, 8), default=Decimal("0"))
    intervals_collected: Mapped[int] = mapped_column(Integer, default=0)
    unrealized_pnl_eur: Mapped[Decimal] = mapped_column(Numeric(20, 8), default=Decimal("0"))
    unrealized_pnl_percent: Mapped[Decimal] = mapped_column(Numeric(12, 6), default=Decimal("0"))
    pnl_drift: Mapped[Decimal] = mapped_column(Numeric(12, 6), default=Decimal("0"))

    status: Mapped[PositionStatus] = mapped_column(
        Enum(PositionStatus), default=PositionStatus.OPEN, index=True
    )

    # Exit snapshot
    exit_ts: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    exit_long_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(20, 8))
    exit_short_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(20, 8))
    realized_pnl_eur: Mapped[Optional[Decimal]] = mapped_column(Numeric(20, 8))
    exit_reason: Mapped[Optional[str]] = mapped_column(Text)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        Index("ix_hedge_positions_symbol_status", "symbol", "status"),
        Index("ix_hedge_positions_entry_ts", "entry_ts"),
    )

    def __repr__(self) -> str:
        return (
            f"<HedgePosition(id={self.id[:8]}, symbol={self.symbol}, "
            f"long={self.long_exchange}, short={self.short_exchange}, "
            f"status={self.status.value})>"
        )

    @property
    def is_open(self) -> bool:
        return self.status == PositionStatus.OPEN

    @property
    def long_mark(self) -> MarkPrice:
        return MarkPrice.from_column(self.current_long_price)

    @property
    def short_mark(self) -> MarkPrice:
        return MarkPrice.from_column(self.current_short_price)

    def hours_held(self, now: Optional[datetime] = None) -> Decimal:
        """Hours since entry as a Decimal."""
        now = now or utc_now()
        elapsed = now - as_utc(self.entry_ts)
        return Decimal(str(elapsed.total_seconds())) / Decimal("3600")


class RiskStateRecord(Base):
    """
    Global risk and control state.

    Exactly one row exists; the state store creates it on first use
    and every read returns the whole row at once.
    """
    __tablename__ = "risk_state"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=RISK_STATE_ID)

    mode: Mapped[AutopilotMode] = mapped_column(Enum(AutopilotMode), default=AutopilotMode.PAPER)
    is_running: Mapped[bool] = mapped_column(Boolean, default=False)
    dry_run: Mapped[bool] = mapped_column(Boolean, default=True)

    kill_switch_active: Mapped[bool] = mapped_column(Boolean, default=False)
    kill_switch_reason: Mapped[Optional[str]] = mapped_column(Text)
    kill_switch_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # Non-negative loss magnitude of open positions
    daily_drawdown_eur: Mapped[Decimal] = mapped_column(Numeric(20, 8), default=Decimal("0"))

    bucket_safe: Mapped[int] = mapped_column(Integer, default=0)
    bucket_medium: Mapped[int] = mapped_column(Integer, default=0)
    bucket_high: Mapped[int] = mapped_column(Integer, default=0)

    total_realized_pnl_eur: Mapped[Decimal] = mapped_column(Numeric(20, 8), default=Decimal("0"))
    total_funding_collected_eur: Mapped[Decimal] = mapped_column(Numeric(20, 8), default=Decimal("0"))

    last_scan_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    last_trade_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    last_cycle_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    def __repr__(self) -> str:
        return (
            f"<RiskStateRecord(mode={self.mode.value}, running={self.is_running}, "
            f"kill_switch={self.kill_switch_active})>"
        )


class AuditLogEntry(Base):
    """One audit event: who did what to which entity, and why."""
    __tablename__ = "audit_log"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    ts: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, index=True)
    level: Mapped[AuditLevel] = mapped_column(Enum(AuditLevel), nullable=False)
    action: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    entity_type: Mapped[Optional[str]] = mapped_column(String(32))
    entity_id: Mapped[Optional[str]] = mapped_column(String(64))
    details: Mapped[dict] = mapped_column(JSON, default=dict)

    def __repr__(self) -> str:
        return f"<AuditLogEntry(level={self.level.value}, action={self.action})>"


class MarketMetricRecord(Base):
    """
    Market snapshot written by the ingestion side.

    The engine only reads the newest row per (symbol, exchange).
    """
    __tablename__ = "market_metrics"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    symbol: Mapped[str] = mapped_column(String(32), nullable=False)
    exchange: Mapped[str] = mapped_column(String(32), nullable=False)
    funding_rate: Mapped[Decimal] = mapped_column(Numeric(16, 10), nullable=False)
    funding_interval_hours: Mapped[Decimal] = mapped_column(Numeric(6, 2), default=Decimal("8"))
    mark_price: Mapped[Decimal] = mapped_column(Numeric(20, 8), nullable=False)
    spread_bps: Mapped[Decimal] = mapped_column(Numeric(12, 4), default=Decimal("0"))
    liquidity_score: Mapped[Decimal] = mapped_column(Numeric(6, 2), default=Decimal("0"))
    ts: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)

    __table_args__ = (
        Index("ix_market_metrics_symbol_exchange_ts", "symbol", "exchange", "ts"),
    )

    def __repr__(self) -> str:
        return (
            f"<MarketMetricRecord(symbol={self.symbol}, exchange={self.exchange}, "
            f"rate={self.funding_rate})>"
        )
