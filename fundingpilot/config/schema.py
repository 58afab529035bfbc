"""
Pydantic configuration models for the autopilot.

All configuration is validated at startup to catch errors early.
Money is in EUR and every cost or threshold is in basis points
unless the field name says otherwise.
"""

from decimal import Decimal
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, SecretStr, Field, field_validator, model_validator


class CapitalConfig(BaseModel):
    """Capital allocation."""

    total_eur: Decimal = Field(default=Decimal("200"), gt=0)

    # Notional of one hedge, split evenly across the two legs
    hedge_size_eur: Decimal = Field(default=Decimal("20"), gt=0)

    # Ceiling on notional deployed across all open hedges
    max_deployed_eur: Decimal = Field(default=Decimal("160"), gt=0)

    # Reserve kept free for margin calls
    buffer_eur: Decimal = Field(default=Decimal("40"), ge=0)

    @property
    def leg_size_eur(self) -> Decimal:
        """Notional of a single leg."""
        return self.hedge_size_eur / 2

    @model_validator(mode="after")
    def validate_allocation(self) -> "CapitalConfig":
        if self.hedge_size_eur > self.max_deployed_eur:
            raise ValueError("hedge_size_eur cannot exceed max_deployed_eur")
        if self.max_deployed_eur > self.total_eur:
            raise ValueError("max_deployed_eur cannot exceed total_eur")
        return self


class BucketConfig(BaseModel):
    """Maximum concurrent positions per risk tier."""

    safe: int = Field(default=5, ge=0)
    medium: int = Field(default=2, ge=0)
    high: int = Field(default=1, ge=0)

    def max_for(self, tier: str) -> int:
        """Get the bucket cap for a tier name (safe, medium, high)."""
        return getattr(self, tier)


class TierThresholds(BaseModel):
    """Admission thresholds for one risk tier."""

    min_profit_bps: Decimal = Field(ge=0)
    max_spread_bps: Decimal = Field(gt=0)  # Bid/ask spread ceiling
    max_total_cost_bps: Optional[Decimal] = None  # Disabled when unset
    min_liquidity_score: Decimal = Field(ge=0, le=100)


class ThresholdsConfig(BaseModel):
    """Tier thresholds, from strictest liquidity demand to loosest."""

    safe: TierThresholds = Field(default_factory=lambda: TierThresholds(
        min_profit_bps=Decimal("25"),
        max_spread_bps=Decimal("20"),
        max_total_cost_bps=Decimal("15"),
        min_liquidity_score=Decimal("70"),
    ))
    medium: TierThresholds = Field(default_factory=lambda: TierThresholds(
        min_profit_bps=Decimal("35"),
        max_spread_bps=Decimal("25"),
        max_total_cost_bps=Decimal("18"),
        min_liquidity_score=Decimal("60"),
    ))
    high: TierThresholds = Field(default_factory=lambda: TierThresholds(
        min_profit_bps=Decimal("50"),
        max_spread_bps=Decimal("35"),
        max_total_cost_bps=Decimal("25"),
        min_liquidity_score=Decimal("40"),
    ))

    def for_tier(self, tier: str) -> TierThresholds:
        """Get thresholds for a tier name (safe, medium, high)."""
        return getattr(self, tier)


class CostConfig(BaseModel):
    """Global cost model. Per-exchange taker fees override taker_fee_bps."""

    taker_fee_bps: Decimal = Field(default=Decimal("4"), ge=0)
    slippage_bps: Decimal = Field(default=Decimal("3"), ge=0)
    safety_buffer_bps: Decimal = Field(default=Decimal("4"), ge=0)


class ExitConfig(BaseModel):
    """Exit rules for open hedges."""

    # Funding intervals a position must collect before soft exits apply
    holding_period_intervals: int = Field(default=1, ge=0)

    # Hard ceiling, overrides the holding period
    max_holding_hours: Decimal = Field(default=Decimal("24"), gt=0)

    # Close once total PnL reaches this share of the expected funding; None disables
    profit_target_percent: Optional[Decimal] = Field(default=Decimal("60"), gt=0)

    # Close when total PnL (bps of notional) falls below this floor
    profit_exit_threshold_bps: Decimal = Field(default=Decimal("5"))

    # Close when the legs stop cancelling each other beyond this
    pnl_drift_limit_percent: Decimal = Field(default=Decimal("0.6"), gt=0)

    # Newest metric older than this halts new entries
    data_stale_timeout_seconds: int = Field(default=120, ge=1)


class RiskConfig(BaseModel):
    """Drawdown limits and admission caps."""

    max_daily_drawdown_eur: Decimal = Field(default=Decimal("20"), gt=0)
    caution_drawdown_eur: Decimal = Field(default=Decimal("10"), ge=0)
    max_concurrent_hedges: int = Field(default=8, ge=1)
    stress_test_multiplier: Decimal = Field(default=Decimal("2"), ge=0)
    notional_match_tolerance_percent: Decimal = Field(default=Decimal("1"), gt=0)

    @model_validator(mode="after")
    def validate_drawdown_levels(self) -> "RiskConfig":
        if self.caution_drawdown_eur >= self.max_daily_drawdown_eur:
            raise ValueError("caution_drawdown_eur must be below max_daily_drawdown_eur")
        return self


class ExecutionConfig(BaseModel):
    """Hedge execution settings."""

    # Synthesize fills instead of submitting to the venue
    dry_run: bool = Field(default=True)

    # Per-leg bound; a timeout is treated as a failed fill
    order_timeout_seconds: float = Field(default=10.0, gt=0, le=120)

    # Adverse price adjustment applied to synthetic fills
    dry_run_slippage_bps: Decimal = Field(default=Decimal("2"), ge=0)

    # Execution venue backing the port (only "paper" ships)
    venue: str = Field(default="paper")


class ExchangeConfig(BaseModel):
    """Per-exchange trading rules."""

    purpose: Literal["long", "short", "both"] = "both"
    taker_fee_bps: Optional[Decimal] = Field(default=None, ge=0)
    funding_interval_hours: int = Field(default=8, ge=1, le=24)

    def can_go_long(self) -> bool:
        return self.purpose in ("long", "both")

    def can_go_short(self) -> bool:
        return self.purpose in ("short", "both")


class SymbolConfig(BaseModel):
    """Static metadata for a tradable asset."""

    is_meme: bool = False
    volatility_multiplier: Decimal = Field(default=Decimal("1"), gt=0)


class UniverseConfig(BaseModel):
    """Which symbols the autopilot may trade."""

    # Empty whitelist admits every symbol
    whitelist: List[str] = Field(default_factory=list)
    blacklist: List[str] = Field(default_factory=list)
    allow_meme: bool = False
    symbols: Dict[str, SymbolConfig] = Field(default_factory=dict)

    @field_validator("whitelist", "blacklist")
    @classmethod
    def normalize_symbol_lists(cls, v: List[str]) -> List[str]:
        return [symbol.upper() for symbol in v]

    def metadata(self, symbol: str) -> SymbolConfig:
        """Get metadata for a symbol, falling back to defaults."""
        return self.symbols.get(symbol.upper(), SymbolConfig())

    def is_whitelisted(self, symbol: str) -> bool:
        return not self.whitelist or symbol.upper() in self.whitelist

    def is_blacklisted(self, symbol: str) -> bool:
        return symbol.upper() in self.blacklist


class SchedulerConfig(BaseModel):
    """Control loop timing."""

    interval_seconds: float = Field(default=60.0, ge=1)

    # Initial is_running value when the risk state is first created
    start_running: bool = Field(default=True)


class DatabaseConfig(BaseModel):
    """Database connection configuration."""

    # Connection type: sqlite or postgresql
    driver: str = Field(default="sqlite")

    # SQLite settings (":memory:" for an in-process database)
    sqlite_path: str = Field(default="data/fundingpilot.db")

    # PostgreSQL settings
    host: str = Field(default="localhost")
    port: int = Field(default=5432)
    database: str = Field(default="fundingpilot")
    username: str = Field(default="")
    password: SecretStr = Field(default=SecretStr(""))

    # Full URL, takes precedence over the fields above
    url: Optional[SecretStr] = None

    # Connection pool settings
    pool_size: int = Field(default=5, ge=1, le=20)
    max_overflow: int = Field(default=10, ge=0, le=50)

    @property
    def is_memory(self) -> bool:
        return self.driver == "sqlite" and self.sqlite_path == ":memory:"

    def get_connection_url(self) -> str:
        """Generate SQLAlchemy connection URL."""
        if self.url is not None:
            url = self.url.get_secret_value()
            if url.startswith("postgresql://"):
                url = "postgresql+asyncpg://" + url[len("postgresql://"):]
            return url
        if self.driver == "sqlite":
            return f"sqlite+aiosqlite:///{self.sqlite_path}"
        elif self.driver == "postgresql":
            password = self.password.get_secret_value()
            return f"postgresql+asyncpg://{self.username}:{password}@{self.host}:{self.port}/{self.database}"
        else:
            raise ValueError(f"Unsupported database driver: {self.driver}")


class APIConfig(BaseModel):
    """Status and control API configuration."""

    enabled: bool = Field(default=True)
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=8000)
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])


class LoggingConfig(BaseModel):
    """Logging output."""

    level: str = Field(default="INFO")
    json_output: bool = Field(default=False)
    log_file: Optional[str] = None

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        v = v.upper()
        if v not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Invalid log level: {v}")
        return v


class Config(BaseModel):
    """Root configuration model."""

    capital: CapitalConfig = Field(default_factory=CapitalConfig)
    buckets: BucketConfig = Field(default_factory=BucketConfig)
    thresholds: ThresholdsConfig = Field(default_factory=ThresholdsConfig)
    costs: CostConfig = Field(default_factory=CostConfig)
    exit: ExitConfig = Field(default_factory=ExitConfig)
    risk: RiskConfig = Field(default_factory=RiskConfig)
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)

    # Exchange rules keyed by lowercase exchange code
    exchanges: Dict[str, ExchangeConfig] = Field(default_factory=dict)

    universe: UniverseConfig = Field(default_factory=UniverseConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    api: APIConfig = Field(default_factory=APIConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("exchanges")
    @classmethod
    def normalize_exchange_codes(cls, v: Dict[str, ExchangeConfig]) -> Dict[str, ExchangeConfig]:
        return {code.lower(): exchange for code, exchange in v.items()}

    def get_exchange_names(self) -> List[str]:
        """Get list of configured exchange codes."""
        return list(self.exchanges.keys())

    def taker_fee_bps_for(self, exchange: str) -> Decimal:
        """Taker fee for an exchange, falling back to the global cost model."""
        exchange_config = self.exchanges.get(exchange.lower())
        if exchange_config is not None and exchange_config.taker_fee_bps is not None:
            return exchange_config.taker_fee_bps
        return self.costs.taker_fee_bps

    def hedge_pair_violation(self, long_exchange: str, short_exchange: str) -> Optional[str]:
        """
        Check the pairing rules for a long/short exchange pair.

        Returns:
            None when the pair is tradable, otherwise the reason it is not
        """
        long_code = long_exchange.lower()
        short_code = short_exchange.lower()

        if long_code == short_code:
            return "Long and short legs on the same exchange"

        long_config = self.exchanges.get(long_code)
        short_config = self.exchanges.get(short_code)
        if long_config is None:
            return f"Exchange {long_code} is not configured"
        if short_config is None:
            return f"Exchange {short_code} is not configured"
        if not long_config.can_go_long():
            return f"Exchange {long_code} cannot hold a long leg (purpose={long_config.purpose})"
        if not short_config.can_go_short():
            return f"Exchange {short_code} cannot hold a short leg (purpose={short_config.purpose})"
        return None
