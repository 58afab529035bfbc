"""
Domain types shared across the autopilot (engine, store, API).
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import List, Optional


class RiskTier(str, Enum):
    """Risk classification of a hedge, also the name of its bucket."""
    SAFE = "safe"
    MEDIUM = "medium"
    HIGH = "high"


class RiskLevel(str, Enum):
    """Admission state derived from daily drawdown."""
    NORMAL = "normal"
    CAUTIOUS = "cautious"  # Existing positions managed, no new entries
    STOPPED = "stopped"


class AutopilotMode(str, Enum):
    """Operating mode selected by the operator."""
    OFF = "off"
    PAPER = "paper"
    LIVE = "live"


class AuditLevel(str, Enum):
    """Audit event severity."""
    INFO = "info"
    WARN = "warn"
    ERROR = "error"
    ACTION = "action"


@dataclass(frozen=True)
class MarkPrice:
    """
    Current mark of one hedge leg.

    A leg starts out not yet observed. Once a quote has been seen the
    mark stays observed; a missing quote later keeps the previous value.
    """
    observed: bool
    value: Optional[Decimal] = None

    @classmethod
    def of(cls, value: Decimal) -> "MarkPrice":
        return cls(observed=True, value=value)

    @classmethod
    def unobserved(cls) -> "MarkPrice":
        return cls(observed=False)

    @classmethod
    def from_column(cls, value: Optional[Decimal]) -> "MarkPrice":
        """Build from a nullable storage column."""
        return cls.unobserved() if value is None else cls.of(value)

    def refresh(self, quote: Optional[Decimal]) -> "MarkPrice":
        """Take a fresh quote when there is one, otherwise keep this mark."""
        if quote is not None and quote > 0:
            return MarkPrice.of(quote)
        return self

    def or_entry(self, entry_price: Decimal) -> Decimal:
        """Price to value the leg at; entry price only while never observed."""
        return self.value if self.observed else entry_price

    def to_column(self) -> Optional[Decimal]:
        return self.value if self.observed else None


@dataclass
class Opportunity:
    """
    Candidate hedge for one symbol: long on one exchange, short on another.

    Rates are fractions per 8h; profit and cost figures are in basis
    points of notional unless suffixed with _eur.
    """
    symbol: str
    long_exchange: str
    short_exchange: str
    long_rate_8h: Decimal
    short_rate_8h: Decimal
    funding_spread_8h: Decimal
    gross_profit_bps: Decimal
    total_cost_bps: Decimal
    net_profit_bps: Decimal
    net_profit_eur: Decimal
    apr: Decimal  # Percent, linear annualization
    score: int
    risk_tier: RiskTier
    is_valid: bool
    long_mark_price: Decimal
    short_mark_price: Decimal
    spread_bps: Decimal  # Mean bid/ask spread of the two legs
    liquidity_score: Decimal
    reasons: List[str] = field(default_factory=list)

    @property
    def pair_key(self) -> str:
        return f"{self.symbol}:{self.long_exchange}/{self.short_exchange}"

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "long_exchange": self.long_exchange,
            "short_exchange": self.short_exchange,
            "funding_spread_8h": float(self.funding_spread_8h),
            "gross_profit_bps": float(self.gross_profit_bps),
            "net_profit_bps": float(self.net_profit_bps),
            "net_profit_eur": float(self.net_profit_eur),
            "apr": float(self.apr),
            "score": self.score,
            "risk_tier": self.risk_tier.value,
            "is_valid": self.is_valid,
            "reasons": list(self.reasons),
        }


@dataclass(frozen=True)
class PnLResult:
    """Mark-to-market of a hedge, excluding funding."""
    long_pnl_percent: Decimal
    short_pnl_percent: Decimal
    pnl_eur: Decimal
    pnl_percent: Decimal
    drift_percent: Decimal
