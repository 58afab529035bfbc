"""
Opportunity engine.

Turns the latest market metrics into a ranked list of candidate
hedges. Every ordered pair of configured exchanges quoting a symbol is
evaluated with the formula engine; only valid results are kept.
"""

from collections import defaultdict
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional, Sequence

from ..config.schema import Config
from ..market.reader import MarketDataReader
from ..market.types import MarketMetric
from ..types import Opportunity
from ..utils.logging import get_logger
from . import formulas

logger = get_logger(__name__)


class OpportunityEngine:
    """
    Scans and ranks funding arbitrage opportunities.

    Features:
    - Drops non-finite or non-positive metrics before scoring
    - Honors the symbol whitelist and the meme filter
    - Validates exchange pairings (purpose long/short/both)
    - Per-pair cost model from exchange taker fees
    - Tracks the newest metric timestamp for staleness checks
    """

    def __init__(self, config: Config, reader: MarketDataReader):
        """
        Initialize the engine.

        Args:
            config: Application configuration
            reader: Source of the latest market metrics
        """
        self.config = config
        self.reader = reader

        self._newest_metric_at: Optional[datetime] = None
        self._last_opportunities: List[Opportunity] = []
        self._last_scan_at: Optional[datetime] = None

    def observe(self, metrics: Sequence[MarketMetric]) -> None:
        """Track the newest metric timestamp for staleness checks."""
        if metrics:
            newest = max(metric.timestamp for metric in metrics)
            if self._newest_metric_at is None or newest > self._newest_metric_at:
                self._newest_metric_at = newest

    async def scan_and_rank(self, metrics: Optional[Sequence[MarketMetric]] = None) -> List[Opportunity]:
        """
        Evaluate every tradable pairing on the latest metrics.

        Args:
            metrics: Metrics already read this cycle; read from the reader when omitted

        Returns:
            Valid opportunities, highest score first
        """
        if metrics is None:
            metrics = await self.reader.latest_metrics()
        self.observe(metrics)

        by_symbol = self._group_usable(metrics)

        opportunities: List[Opportunity] = []
        rejected = 0
        for symbol, symbol_metrics in by_symbol.items():
            skip_reason = self._symbol_skip_reason(symbol, symbol_metrics)
            if skip_reason:
                logger.debug("symbol_skipped", symbol=symbol, reason=skip_reason)
                continue

            for opportunity in self._evaluate_symbol(symbol, symbol_metrics):
                if opportunity.is_valid:
                    opportunities.append(opportunity)
                else:
                    rejected += 1
                    logger.debug(
                        "opportunity_rejected",
                        pair=opportunity.pair_key,
                        reason=opportunity.reasons[0] if opportunity.reasons else None,
                    )

        opportunities.sort(
            key=lambda o: (-o.score, -o.net_profit_bps, o.pair_key),
        )

        self._last_opportunities = opportunities
        self._last_scan_at = datetime.now(timezone.utc)

        logger.info(
            "scan_complete",
            metrics=len(metrics),
            symbols=len(by_symbol),
            valid=len(opportunities),
            rejected=rejected,
            best=opportunities[0].pair_key if opportunities else None,
        )
        return opportunities

    def _group_usable(self, metrics: Sequence[MarketMetric]) -> Dict[str, Dict[str, MarketMetric]]:
        """Group usable metrics by symbol, then exchange."""
        allowed = set(self.config.get_exchange_names())
        grouped: Dict[str, Dict[str, MarketMetric]] = defaultdict(dict)
        dropped = 0

        for metric in metrics:
            exchange = metric.exchange.lower()
            if exchange not in allowed or not metric.is_usable():
                dropped += 1
                continue
            grouped[metric.symbol.upper()][exchange] = metric

        if dropped:
            logger.debug("metrics_dropped", count=dropped)
        return grouped

    def _symbol_skip_reason(self, symbol: str, metrics: Dict[str, MarketMetric]) -> Optional[str]:
        universe = self.config.universe
        if len(metrics) < 2:
            return "fewer than two exchanges"
        if universe.is_blacklisted(symbol):
            return "blacklisted"
        if not universe.is_whitelisted(symbol):
            return "not whitelisted"
        if universe.metadata(symbol).is_meme and not universe.allow_meme:
            return "meme asset"
        return None

    def _evaluate_symbol(self, symbol: str, metrics: Dict[str, MarketMetric]) -> List[Opportunity]:
        """Score every legal long/short pairing for one symbol."""
        meta = self.config.universe.metadata(symbol)
        tier = formulas.risk_tier(
            meta.is_meme,
            meta.volatility_multiplier,
            max(metric.liquidity_score for metric in metrics.values()),
        )
        thresholds = self.config.thresholds.for_tier(tier.value)

        results: List[Opportunity] = []
        for long_exchange, long_metric in metrics.items():
            for short_exchange, short_metric in metrics.items():
                if long_exchange == short_exchange:
                    continue
                if self.config.hedge_pair_violation(long_exchange, short_exchange):
                    continue

                costs = formulas.pair_cost_model(
                    self.config.costs,
                    self.config.taker_fee_bps_for(long_exchange),
                    self.config.taker_fee_bps_for(short_exchange),
                )

                results.append(formulas.calculate_opportunity(
                    symbol=symbol,
                    long_exchange=long_exchange,
                    short_exchange=short_exchange,
                    long_rate=long_metric.funding_rate,
                    short_rate=short_metric.funding_rate,
                    long_interval_hours=long_metric.funding_interval_hours,
                    short_interval_hours=short_metric.funding_interval_hours,
                    long_mark_price=long_metric.mark_price,
                    short_mark_price=short_metric.mark_price,
                    spread_bps=(long_metric.spread_bps + short_metric.spread_bps) / 2,
                    liquidity_score=(long_metric.liquidity_score + short_metric.liquidity_score) / 2,
                    tier=tier,
                    costs=costs,
                    thresholds=thresholds,
                    hedge_size_eur=self.config.capital.hedge_size_eur,
                ))
        return results

    def newest_metric_age_seconds(self, now: Optional[datetime] = None) -> Optional[float]:
        """
        Age of the newest metric seen by any scan.

        Returns:
            Seconds since the newest metric, or None before the first metric
        """
        if self._newest_metric_at is None:
            return None
        now = now or datetime.now(timezone.utc)
        return max(0.0, (now - self._newest_metric_at).total_seconds())

    @property
    def last_opportunities(self) -> List[Opportunity]:
        """Result of the most recent scan."""
        return list(self._last_opportunities)

    @property
    def last_scan_at(self) -> Optional[datetime]:
        return self._last_scan_at
