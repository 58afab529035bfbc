"""
Market data readers.

The engine pulls the newest snapshot per (symbol, exchange) once per
cycle; how the snapshots get there is the ingestion side's business.
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import List

from ..database.connection import DatabaseSessionManager
from ..database.models import MarketMetricRecord, as_utc
from ..database.repository import MarketMetricRepository
from ..utils.logging import get_logger
from .types import MarketMetric

logger = get_logger(__name__)


class MarketDataReader(ABC):
    """Source of the latest market metrics."""

    @abstractmethod
    async def latest_metrics(self) -> List[MarketMetric]:
        """
        Newest metric for every (symbol, exchange).

        Returns:
            One MarketMetric per market, in no particular order
        """
        pass


class DatabaseMarketDataReader(MarketDataReader):
    """Reads the market_metrics table."""

    def __init__(self, db: DatabaseSessionManager):
        self.db = db

    async def latest_metrics(self) -> List[MarketMetric]:
        async with self.db.session() as session:
            records = await MarketMetricRepository(session).get_latest_per_market()

        metrics = [self._to_metric(record) for record in records]
        logger.debug("market_metrics_loaded", count=len(metrics))
        return metrics

    @staticmethod
    def _to_metric(record: MarketMetricRecord) -> MarketMetric:
        return MarketMetric(
            symbol=record.symbol.upper(),
            exchange=record.exchange.lower(),
            funding_rate=Decimal(record.funding_rate),
            funding_interval_hours=Decimal(record.funding_interval_hours),
            mark_price=Decimal(record.mark_price),
            spread_bps=Decimal(record.spread_bps),
            liquidity_score=Decimal(record.liquidity_score),
            timestamp=as_utc(record.ts),
        )
