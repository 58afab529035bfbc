"""
Pure formulas for funding arbitrage.

Covers rate normalization, the cost model, risk tiers, scoring,
opportunity evaluation, mark-to-market and exit rules. Nothing here
touches state or I/O; inputs are assumed finite (the opportunity
engine filters bad metrics before they get here).

All arithmetic is Decimal. Rates are fractions (0.0001 = 0.01%),
costs and profits are basis points of notional.
"""

from decimal import Decimal, ROUND_FLOOR, ROUND_HALF_UP
from typing import List, Optional

from ..config.schema import CostConfig, ExitConfig, TierThresholds
from ..types import Opportunity, PnLResult, RiskTier

REFERENCE_INTERVAL_HOURS = Decimal("8")
INTERVALS_PER_YEAR = Decimal("1095")  # 365 days x 3 eight-hour intervals
BPS = Decimal("10000")

_ZERO = Decimal("0")
_HUNDRED = Decimal("100")


# ==================== Rates ====================

def normalize_to_8h(rate: Decimal, interval_hours: Decimal) -> Decimal:
    """
    Rescale a funding rate paid every interval_hours to its 8h equivalent.

    A 1h venue paying 0.0001 per interval is worth 0.0008 per 8h.
    Non-positive intervals yield 0.
    """
    interval = Decimal(interval_hours)
    if interval <= 0:
        return _ZERO
    return Decimal(rate) * REFERENCE_INTERVAL_HOURS / interval


def annualize_8h(rate_8h: Decimal) -> Decimal:
    """Linear annualization of an 8h rate (no compounding)."""
    return Decimal(rate_8h) * INTERVALS_PER_YEAR


# ==================== Costs ====================

def total_cost_bps(costs: CostConfig) -> Decimal:
    """Round-trip cost: taker fee on both legs plus slippage and buffer."""
    return 2 * costs.taker_fee_bps + costs.slippage_bps + costs.safety_buffer_bps


def pair_cost_model(
    costs: CostConfig,
    long_taker_fee_bps: Decimal,
    short_taker_fee_bps: Decimal,
) -> CostConfig:
    """
    Cost model for a specific exchange pair.

    The effective taker fee is the mean of the two venues, so that
    2 x taker equals the sum of the legs' fees.
    """
    effective_taker = (long_taker_fee_bps + short_taker_fee_bps) / 2
    return costs.model_copy(update={"taker_fee_bps": effective_taker})


# ==================== Classification ====================

def risk_tier(
    is_meme: bool,
    volatility_multiplier: Decimal,
    liquidity_score: Decimal,
) -> RiskTier:
    """Classify an asset. Meme and volatility rules take precedence over liquidity."""
    if is_meme:
        return RiskTier.HIGH
    if volatility_multiplier > 2:
        return RiskTier.HIGH
    if volatility_multiplier > Decimal("1.5"):
        return RiskTier.MEDIUM
    if liquidity_score < 30:
        return RiskTier.HIGH
    if liquidity_score < 50:
        return RiskTier.MEDIUM
    return RiskTier.SAFE


def _clamp(value: Decimal, low: Decimal = _ZERO, high: Decimal = _HUNDRED) -> Decimal:
    return max(low, min(high, value))


def score(
    net_profit_bps: Decimal,
    liquidity_score: Decimal,
    stability_score: Decimal = Decimal("50"),
) -> int:
    """
    Composite 0-100 score.

    Profit saturates at 50 bps net. Weights: 50% profit, 30% liquidity,
    20% stability.
    """
    profit_term = _clamp(Decimal(net_profit_bps) * 2)
    liquidity_term = _clamp(Decimal(liquidity_score))
    stability_term = _clamp(Decimal(stability_score))

    weighted = (
        Decimal("0.5") * profit_term
        + Decimal("0.3") * liquidity_term
        + Decimal("0.2") * stability_term
    )
    return int(weighted.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


# ==================== Opportunity ====================

def calculate_opportunity(
    symbol: str,
    long_exchange: str,
    short_exchange: str,
    long_rate: Decimal,
    short_rate: Decimal,
    long_interval_hours: Decimal,
    short_interval_hours: Decimal,
    long_mark_price: Decimal,
    short_mark_price: Decimal,
    spread_bps: Decimal,
    liquidity_score: Decimal,
    tier: RiskTier,
    costs: CostConfig,
    thresholds: TierThresholds,
    hedge_size_eur: Decimal,
    stability_score: Decimal = Decimal("50"),
) -> Opportunity:
    """
    Evaluate a long/short pairing for one symbol.

    Rejection checks run in order and the first failure wins:
    non-positive funding spread, net profit under the tier floor,
    bid/ask spread over the tier ceiling, total cost over the tier
    ceiling (when configured), liquidity under the tier floor.

    Returns:
        Opportunity with is_valid and a reasons list; reasons start with
        "✓" on acceptance and "✗" on rejection
    """
    long_8h = normalize_to_8h(long_rate, long_interval_hours)
    short_8h = normalize_to_8h(short_rate, short_interval_hours)
    funding_spread_8h = short_8h - long_8h

    gross_bps = funding_spread_8h * BPS
    cost_bps = total_cost_bps(costs)
    net_bps = gross_bps - cost_bps
    net_percent = net_bps / _HUNDRED
    net_eur = hedge_size_eur * net_percent / _HUNDRED
    apr = annualize_8h(net_percent)

    rejection: Optional[str] = None
    if funding_spread_8h <= 0:
        rejection = f"Funding spread {funding_spread_8h * _HUNDRED:.4f}% is not positive"
    elif net_bps < thresholds.min_profit_bps:
        rejection = f"Net {net_bps:.1f}bps < min {thresholds.min_profit_bps}bps"
    elif spread_bps > thresholds.max_spread_bps:
        rejection = f"Bid/ask spread {spread_bps:.1f}bps > max {thresholds.max_spread_bps}bps"
    elif thresholds.max_total_cost_bps is not None and cost_bps > thresholds.max_total_cost_bps:
        rejection = f"Total cost {cost_bps:.1f}bps > max {thresholds.max_total_cost_bps}bps"
    elif liquidity_score < thresholds.min_liquidity_score:
        rejection = f"Liquidity {liquidity_score:.0f} < min {thresholds.min_liquidity_score}"

    composite = score(net_bps, liquidity_score, stability_score)

    reasons: List[str]
    if rejection is None:
        reasons = [
            f"✓ Net: {net_bps:.1f}bps per 8h",
            f"✓ APR: {apr:.0f}%",
            f"✓ Score: {composite}",
            f"✓ Long: {long_exchange} ({long_8h * _HUNDRED:.4f}%)",
            f"✓ Short: {short_exchange} ({short_8h * _HUNDRED:.4f}%)",
        ]
    else:
        reasons = [f"✗ {rejection}"]

    return Opportunity(
        symbol=symbol,
        long_exchange=long_exchange,
        short_exchange=short_exchange,
        long_rate_8h=long_8h,
        short_rate_8h=short_8h,
        funding_spread_8h=funding_spread_8h,
        gross_profit_bps=gross_bps,
        total_cost_bps=cost_bps,
        net_profit_bps=net_bps,
        net_profit_eur=net_eur,
        apr=apr,
        score=composite,
        risk_tier=tier,
        is_valid=rejection is None,
        long_mark_price=long_mark_price,
        short_mark_price=short_mark_price,
        spread_bps=spread_bps,
        liquidity_score=liquidity_score,
        reasons=reasons,
    )


# ==================== Positions ====================

def calculate_unrealized_pnl(
    entry_long: Decimal,
    entry_short: Decimal,
    current_long: Decimal,
    current_short: Decimal,
    size_eur: Decimal,
) -> PnLResult:
    """
    Price PnL of a hedge whose notional is split evenly across both legs.

    The combined percentage is the average of the two legs, which is
    zero for a perfectly hedged pair. Drift is the absolute sum of the
    legs and measures how far the pair is from perfect cancellation.
    """
    leg_size = size_eur / 2
    long_fraction = (current_long - entry_long) / entry_long
    short_fraction = (entry_short - current_short) / entry_short

    pnl_eur = leg_size * (long_fraction + short_fraction)
    pnl_percent = pnl_eur / size_eur * _HUNDRED if size_eur > 0 else _ZERO

    return PnLResult(
        long_pnl_percent=long_fraction * _HUNDRED,
        short_pnl_percent=short_fraction * _HUNDRED,
        pnl_eur=pnl_eur,
        pnl_percent=pnl_percent,
        drift_percent=abs(long_fraction + short_fraction) * _HUNDRED,
    )


def calculate_funding_payment(rate: Decimal, size_eur: Decimal, is_long: bool) -> Decimal:
    """
    Funding received by one leg for one interval (negative when paid).

    Longs pay positive rates, shorts receive them.
    """
    leg_size = size_eur / 2
    sign = -1 if is_long else 1
    return leg_size * rate * sign


def funding_per_interval(long_rate_8h: Decimal, short_rate_8h: Decimal, size_eur: Decimal) -> Decimal:
    """Net funding of both legs for one 8h interval."""
    return (
        calculate_funding_payment(long_rate_8h, size_eur, is_long=True)
        + calculate_funding_payment(short_rate_8h, size_eur, is_long=False)
    )


def funding_intervals_elapsed(hours_elapsed: Decimal, interval_hours: Decimal) -> int:
    """Whole funding intervals completed since entry."""
    if interval_hours <= 0 or hours_elapsed <= 0:
        return 0
    return int((Decimal(hours_elapsed) / Decimal(interval_hours)).to_integral_value(rounding=ROUND_FLOOR))


def check_notional_match(
    long_notional: Decimal,
    short_notional: Decimal,
    tolerance_percent: Decimal,
) -> bool:
    """True when the legs differ by at most tolerance_percent of their mean."""
    average = (long_notional + short_notional) / 2
    if average <= 0:
        return False
    diff_percent = abs(long_notional - short_notional) / average * _HUNDRED
    return diff_percent <= tolerance_percent


def expected_funding_bps(entry_spread_8h: Decimal, intervals_collected: int) -> Decimal:
    """
    Funding the entry spread should have earned so far, in bps of the hedge size.

    Each leg carries half the size, matching funding_per_interval.
    """
    return Decimal(entry_spread_8h) * BPS / 2 * intervals_collected


def evaluate_exit(
    hours_held: Decimal,
    intervals_collected: int,
    drift_percent: Decimal,
    total_pnl_bps: Decimal,
    config: ExitConfig,
    expected_profit_bps: Decimal = _ZERO,
) -> Optional[str]:
    """
    Decide whether a hedge should be closed.

    Rules in priority order, first match wins:
    1. max holding time (overrides the minimum holding period)
    2. minimum holding period not reached -> keep
    3. profit target: total PnL reached profit_target_percent of the expected funding
    4. drift over limit
    5. total PnL under the profit floor

    Returns:
        Exit reason, or None to keep the position
    """
    if hours_held >= config.max_holding_hours:
        return f"Max holding time ({config.max_holding_hours}h) exceeded"

    if intervals_collected < config.holding_period_intervals:
        return None

    if config.profit_target_percent is not None and expected_profit_bps > 0:
        achieved_percent = total_pnl_bps / expected_profit_bps * _HUNDRED
        if achieved_percent >= config.profit_target_percent:
            return f"Profit target reached ({achieved_percent:.0f}% of expected)"

    if drift_percent > config.pnl_drift_limit_percent:
        return f"PnL drift {drift_percent:.2f}% > limit {config.pnl_drift_limit_percent}%"

    if total_pnl_bps < config.profit_exit_threshold_bps:
        return f"Profit floor breached ({total_pnl_bps:.1f}bps < {config.profit_exit_threshold_bps}bps)"

    return None
