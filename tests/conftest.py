"""
Pytest configuration and fixtures.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, AsyncGenerator, Dict, List, Optional

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from fundingpilot.api.server import create_app
from fundingpilot.audit.base import AuditSink
from fundingpilot.config.schema import (
    APIConfig,
    Config,
    DatabaseConfig,
    ExchangeConfig,
    SymbolConfig,
    UniverseConfig,
)
from fundingpilot.database.connection import DatabaseSessionManager
from fundingpilot.database.models import HedgePosition, PositionStatus
from fundingpilot.engine import formulas
from fundingpilot.engine.scheduler import Scheduler
from fundingpilot.exchanges.paper import PaperExecutionPort
from fundingpilot.market.reader import MarketDataReader
from fundingpilot.market.types import MarketMetric
from fundingpilot.store.sql import SqlStateStore
from fundingpilot.types import AuditLevel, AutopilotMode, Opportunity, RiskTier


# ============================================================
# Test Doubles
# ============================================================
class RecordingAuditSink(AuditSink):
    """Audit sink that keeps every event in memory."""

    def __init__(self):
        self.entries: List[Dict[str, Any]] = []

    def log(
        self,
        level: AuditLevel,
        action: str,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.entries.append({
            "level": level,
            "action": action,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "details": details or {},
        })

    def actions(self) -> List[str]:
        return [entry["action"] for entry in self.entries]

    def find(self, action: str) -> List[Dict[str, Any]]:
        return [entry for entry in self.entries if entry["action"] == action]


class StaticMarketDataReader(MarketDataReader):
    """Market data reader serving a fixed, replaceable list of metrics."""

    def __init__(self, metrics: Optional[List[MarketMetric]] = None):
        self.metrics: List[MarketMetric] = list(metrics or [])

    async def latest_metrics(self) -> List[MarketMetric]:
        return list(self.metrics)


# ============================================================
# Builders
# ============================================================
def make_metric(
    symbol: str = "BTC",
    exchange: str = "binance",
    funding_rate: str = "0.0001",
    interval_hours: str = "8",
    mark_price: str = "50000",
    spread_bps: str = "2",
    liquidity_score: str = "90",
    timestamp: Optional[datetime] = None,
) -> MarketMetric:
    """Build a market metric from string inputs."""
    return MarketMetric(
        symbol=symbol,
        exchange=exchange,
        funding_rate=Decimal(funding_rate),
        funding_interval_hours=Decimal(interval_hours),
        mark_price=Decimal(mark_price),
        spread_bps=Decimal(spread_bps),
        liquidity_score=Decimal(liquidity_score),
        timestamp=timestamp or datetime.now(timezone.utc),
    )


def make_opportunity(
    config: Config,
    symbol: str = "BTC",
    long_exchange: str = "binance",
    short_exchange: str = "bybit",
    long_rate: str = "0",
    short_rate: str = "0.0059",
    tier: RiskTier = RiskTier.SAFE,
    mark_price: str = "50000",
) -> Opportunity:
    """Evaluate an opportunity with the formula engine."""
    return formulas.calculate_opportunity(
        symbol=symbol,
        long_exchange=long_exchange,
        short_exchange=short_exchange,
        long_rate=Decimal(long_rate),
        short_rate=Decimal(short_rate),
        long_interval_hours=Decimal("8"),
        short_interval_hours=Decimal("8"),
        long_mark_price=Decimal(mark_price),
        short_mark_price=Decimal(mark_price),
        spread_bps=Decimal("2"),
        liquidity_score=Decimal("90"),
        tier=tier,
        costs=config.costs,
        thresholds=config.thresholds.for_tier(tier.value),
        hedge_size_eur=config.capital.hedge_size_eur,
    )


def make_position(
    symbol: str = "BTC",
    long_exchange: str = "binance",
    short_exchange: str = "bybit",
    size_eur: str = "20",
    risk_tier: RiskTier = RiskTier.SAFE,
    entry_long_price: str = "50000",
    entry_short_price: str = "50000",
    long_rate_8h: str = "0",
    short_rate_8h: str = "0.001",
    hours_ago: float = 0,
    unrealized_pnl_eur: str = "0",
    status: PositionStatus = PositionStatus.OPEN,
) -> HedgePosition:
    """Build an unsaved hedge position."""
    spread = Decimal(short_rate_8h) - Decimal(long_rate_8h)
    return HedgePosition(
        hedge_id="hedge-" + symbol.lower(),
        symbol=symbol,
        long_exchange=long_exchange,
        short_exchange=short_exchange,
        size_eur=Decimal(size_eur),
        leverage=1,
        risk_tier=risk_tier,
        is_simulated=True,
        entry_ts=datetime.now(timezone.utc) - timedelta(hours=hours_ago),
        entry_long_price=Decimal(entry_long_price),
        entry_short_price=Decimal(entry_short_price),
        entry_long_rate_8h=Decimal(long_rate_8h),
        entry_short_rate_8h=Decimal(short_rate_8h),
        entry_funding_spread_8h=spread,
        entry_score=80,
        funding_interval_hours=Decimal("8"),
        funding_collected_eur=Decimal("0"),
        intervals_collected=0,
        unrealized_pnl_eur=Decimal(unrealized_pnl_eur),
        unrealized_pnl_percent=Decimal("0"),
        pnl_drift=Decimal("0"),
        status=status,
    )


# ============================================================
# Configuration Fixtures
# ============================================================
@pytest.fixture
def mock_config() -> Config:
    """Configuration with three exchanges and an in-memory database."""
    return Config(
        exchanges={
            "binance": ExchangeConfig(purpose="both", taker_fee_bps=Decimal("4")),
            "bybit": ExchangeConfig(purpose="both", taker_fee_bps=Decimal("4")),
            "okx": ExchangeConfig(purpose="both", taker_fee_bps=Decimal("4")),
        },
        universe=UniverseConfig(
            symbols={
                "DOGE": SymbolConfig(is_meme=True),
                "SOL": SymbolConfig(volatility_multiplier=Decimal("1.6")),
            },
        ),
        database=DatabaseConfig(driver="sqlite", sqlite_path=":memory:"),
        api=APIConfig(host="127.0.0.1", port=8000),
    )


# ============================================================
# Database Fixtures
# ============================================================
@pytest_asyncio.fixture
async def db(mock_config: Config) -> AsyncGenerator[DatabaseSessionManager, None]:
    """In-memory aiosqlite database with all tables created."""
    manager = DatabaseSessionManager()
    await manager.init(mock_config.database)
    yield manager
    await manager.close()


@pytest_asyncio.fixture
async def store(db: DatabaseSessionManager) -> SqlStateStore:
    """State store with the risk state initialized (paper, running)."""
    state_store = SqlStateStore(db)
    await state_store.ensure_risk_state(mode=AutopilotMode.PAPER, is_running=True, dry_run=True)
    return state_store


@pytest.fixture
def audit() -> RecordingAuditSink:
    return RecordingAuditSink()


@pytest.fixture
def reader() -> StaticMarketDataReader:
    return StaticMarketDataReader()


# ============================================================
# Engine Fixtures
# ============================================================
@pytest.fixture
def paper_port(mock_config: Config, reader: StaticMarketDataReader) -> PaperExecutionPort:
    return PaperExecutionPort(mock_config, reader)


@pytest_asyncio.fixture
async def scheduler(mock_config, store, reader, paper_port, audit) -> Scheduler:
    """Scheduler wired to the in-memory store and the paper venue."""
    instance = Scheduler(mock_config, store, reader, paper_port, audit)
    await instance.initialize()
    return instance


# ============================================================
# API Test Fixtures
# ============================================================
@pytest_asyncio.fixture
async def test_app(mock_config: Config, scheduler: Scheduler, db: DatabaseSessionManager):
    """FastAPI application wired to the test scheduler."""
    return create_app(config=mock_config, scheduler=scheduler, db=db)


@pytest_asyncio.fixture
async def async_client(test_app) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP client for API testing."""
    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
