"""
Unit tests for the formula engine.
"""

from decimal import Decimal

import pytest

from fundingpilot.config.schema import Config, CostConfig, ExitConfig
from fundingpilot.engine import formulas
from fundingpilot.types import RiskTier


def btc_opportunity(short_rate: str, config: Config = None):
    """BTC hedge: long leg at 0, short leg at short_rate, both 8h venues."""
    config = config or Config()
    return formulas.calculate_opportunity(
        symbol="BTC",
        long_exchange="binance",
        short_exchange="bybit",
        long_rate=Decimal("0"),
        short_rate=Decimal(short_rate),
        long_interval_hours=Decimal("8"),
        short_interval_hours=Decimal("8"),
        long_mark_price=Decimal("50000"),
        short_mark_price=Decimal("50000"),
        spread_bps=Decimal("2"),
        liquidity_score=Decimal("90"),
        tier=RiskTier.SAFE,
        costs=config.costs,
        thresholds=config.thresholds.safe,
        hedge_size_eur=config.capital.hedge_size_eur,
    )


class TestRates:
    """Tests for rate normalization."""

    def test_8h_rate_unchanged(self):
        """Test an 8h rate normalizes to itself."""
        assert formulas.normalize_to_8h(Decimal("0.0003"), Decimal("8")) == Decimal("0.0003")

    def test_1h_rate_scaled(self):
        """Test a 1h rate is worth eight times as much per 8h."""
        assert formulas.normalize_to_8h(Decimal("0.0001"), Decimal("1")) == Decimal("0.0008")

    def test_4h_rate_scaled(self):
        assert formulas.normalize_to_8h(Decimal("0.0001"), Decimal("4")) == Decimal("0.0002")

    def test_non_positive_interval(self):
        """Test a non-positive interval yields zero."""
        assert formulas.normalize_to_8h(Decimal("0.0001"), Decimal("0")) == Decimal("0")

    def test_annualize(self):
        """Test linear annualization over 1095 intervals."""
        assert formulas.annualize_8h(Decimal("0.0001")) == Decimal("0.1095")


class TestCosts:
    """Tests for the cost model."""

    def test_total_cost_defaults(self):
        """Test 2 x 4 taker + 3 slippage + 4 buffer = 15 bps."""
        assert formulas.total_cost_bps(CostConfig()) == Decimal("15")

    def test_pair_cost_model_averages_taker(self):
        """Test the pair model charges each leg its own venue's fee."""
        costs = formulas.pair_cost_model(CostConfig(), Decimal("2"), Decimal("6"))
        assert costs.taker_fee_bps == Decimal("4")
        assert formulas.total_cost_bps(costs) == Decimal("15")


class TestRiskTier:
    """Tests for risk tier classification."""

    @pytest.mark.parametrize(
        "is_meme,volatility,liquidity,expected",
        [
            (True, "1", "100", RiskTier.HIGH),
            (False, "2.5", "100", RiskTier.HIGH),
            (False, "1.6", "100", RiskTier.MEDIUM),
            (False, "1", "20", RiskTier.HIGH),
            (False, "1", "40", RiskTier.MEDIUM),
            (False, "1", "50", RiskTier.SAFE),
            (False, "1.5", "90", RiskTier.SAFE),
        ],
    )
    def test_classification(self, is_meme, volatility, liquidity, expected):
        """Test every input maps to exactly one tier."""
        assert formulas.risk_tier(is_meme, Decimal(volatility), Decimal(liquidity)) == expected


class TestScore:
    """Tests for the composite score."""

    def test_saturates_at_50_bps(self):
        """Test the profit term saturates at 50 bps net."""
        assert formulas.score(Decimal("50"), Decimal("100")) == formulas.score(Decimal("500"), Decimal("100"))

    def test_weights(self):
        """Test 50/30/20 weighting."""
        # 0.5 * 88 + 0.3 * 90 + 0.2 * 50 = 81
        assert formulas.score(Decimal("44"), Decimal("90")) == 81

    def test_bounded(self):
        assert 0 <= formulas.score(Decimal("-100"), Decimal("-5"), Decimal("-5")) <= 100
        assert formulas.score(Decimal("1000"), Decimal("1000"), Decimal("1000")) == 100


class TestCalculateOpportunity:
    """Tests for opportunity evaluation."""

    def test_btc_below_min_profit(self):
        """Test a 0.29% spread nets 14 bps and is rejected."""
        opportunity = btc_opportunity("0.0029")
        assert opportunity.gross_profit_bps == Decimal("29")
        assert opportunity.net_profit_bps == Decimal("14")
        assert opportunity.is_valid is False
        assert opportunity.reasons[0].startswith("✗ Net")

    def test_btc_valid(self):
        """Test a 0.59% spread nets 44 bps with an APR of about 481.8%."""
        opportunity = btc_opportunity("0.0059")
        assert opportunity.net_profit_bps == Decimal("44")
        assert opportunity.is_valid is True
        assert float(opportunity.apr) == pytest.approx(481.8)
        assert opportunity.net_profit_eur == Decimal("0.088")
        assert all(reason.startswith("✓") for reason in opportunity.reasons)

    def test_non_positive_spread_invalid(self):
        """Test a zero or negative funding spread is never valid."""
        assert btc_opportunity("0").is_valid is False
        assert btc_opportunity("-0.01").is_valid is False
        assert "not positive" in btc_opportunity("-0.01").reasons[0]

    def test_cost_ceiling(self):
        """Test the tier total-cost ceiling rejects expensive pairs."""
        config = Config(costs=CostConfig(taker_fee_bps=Decimal("6")))
        opportunity = btc_opportunity("0.0100", config)
        assert opportunity.is_valid is False
        assert "Total cost" in opportunity.reasons[0]

    def test_valid_implies_positive_spread_and_min_profit(self):
        """Test validity always implies spread > 0 and net >= tier minimum."""
        config = Config()
        for rate in ("0.001", "0.003", "0.004", "0.005", "0.02"):
            opportunity = btc_opportunity(rate, config)
            if opportunity.is_valid:
                assert opportunity.funding_spread_8h > 0
                assert opportunity.net_profit_bps >= config.thresholds.safe.min_profit_bps


class TestUnrealizedPnL:
    """Tests for mark-to-market."""

    def test_neutral_move(self):
        """Test a parallel 10% move on both legs leaves PnL at zero."""
        pnl = formulas.calculate_unrealized_pnl(
            Decimal("100"), Decimal("100"), Decimal("110"), Decimal("110"), Decimal("20"),
        )
        assert pnl.pnl_eur == Decimal("0")
        assert pnl.drift_percent == Decimal("0")
        assert pnl.long_pnl_percent == Decimal("10")
        assert pnl.short_pnl_percent == Decimal("-10")

    def test_divergence_creates_drift(self):
        """Test diverging legs produce PnL and drift."""
        pnl = formulas.calculate_unrealized_pnl(
            Decimal("100"), Decimal("100"), Decimal("101"), Decimal("100"), Decimal("20"),
        )
        # 10 EUR leg * 1% = 0.1 EUR
        assert pnl.pnl_eur == Decimal("0.1")
        assert pnl.pnl_percent == Decimal("0.5")
        assert pnl.drift_percent == Decimal("1")


class TestFunding:
    """Tests for funding accrual helpers."""

    def test_leg_payments(self):
        """Test longs pay positive rates and shorts receive them."""
        assert formulas.calculate_funding_payment(Decimal("0.001"), Decimal("20"), is_long=True) == Decimal("-0.010")
        assert formulas.calculate_funding_payment(Decimal("0.001"), Decimal("20"), is_long=False) == Decimal("0.010")

    def test_per_interval_uses_leg_size(self):
        """Test net funding per interval is leg size times the spread."""
        assert formulas.funding_per_interval(Decimal("0.0001"), Decimal("0.0011"), Decimal("20")) == Decimal("0.0100")

    def test_intervals_elapsed(self):
        assert formulas.funding_intervals_elapsed(Decimal("7.99"), Decimal("8")) == 0
        assert formulas.funding_intervals_elapsed(Decimal("8"), Decimal("8")) == 1
        assert formulas.funding_intervals_elapsed(Decimal("17"), Decimal("8")) == 2
        assert formulas.funding_intervals_elapsed(Decimal("-1"), Decimal("8")) == 0


class TestNotionalMatch:
    """Tests for the two-leg notional check."""

    def test_within_tolerance(self):
        assert formulas.check_notional_match(Decimal("10"), Decimal("10.05"), Decimal("1")) is True

    def test_outside_tolerance(self):
        assert formulas.check_notional_match(Decimal("10"), Decimal("10.5"), Decimal("1")) is False

    def test_zero_notional(self):
        assert formulas.check_notional_match(Decimal("0"), Decimal("0"), Decimal("1")) is False


class TestEvaluateExit:
    """Tests for exit rules."""

    @pytest.fixture
    def exit_config(self) -> ExitConfig:
        return ExitConfig()

    def test_max_holding_overrides_holding_period(self, exit_config):
        """Test the hard time limit fires before any interval is collected."""
        reason = formulas.evaluate_exit(Decimal("24"), 0, Decimal("0"), Decimal("100"), exit_config)
        assert reason.startswith("Max holding time")

    def test_holding_period_keeps_position(self, exit_config):
        """Test soft exits wait for the minimum holding period."""
        assert formulas.evaluate_exit(Decimal("2"), 0, Decimal("5"), Decimal("-50"), exit_config) is None

    def test_drift_exit(self, exit_config):
        reason = formulas.evaluate_exit(Decimal("9"), 1, Decimal("0.7"), Decimal("100"), exit_config)
        assert reason.startswith("PnL drift")

    def test_profit_floor_exit(self, exit_config):
        reason = formulas.evaluate_exit(Decimal("9"), 1, Decimal("0.1"), Decimal("3"), exit_config)
        assert reason.startswith("Profit floor breached")

    def test_keep_healthy_position(self, exit_config):
        assert formulas.evaluate_exit(Decimal("9"), 1, Decimal("0.1"), Decimal("20"), exit_config) is None

    def test_expected_funding(self):
        """Test expected funding counts half the size per leg."""
        assert formulas.expected_funding_bps(Decimal("0.0059"), 2) == Decimal("59")
        assert formulas.expected_funding_bps(Decimal("0.0059"), 0) == Decimal("0")

    def test_profit_target_exit(self, exit_config):
        """Test the profit target fires before the drift check."""
        reason = formulas.evaluate_exit(
            Decimal("9"), 1, Decimal("0.7"), Decimal("18"), exit_config,
            expected_profit_bps=Decimal("29.5"),
        )
        assert reason == "Profit target reached (61% of expected)"

    def test_profit_target_not_reached(self, exit_config):
        reason = formulas.evaluate_exit(
            Decimal("9"), 1, Decimal("0.7"), Decimal("17"), exit_config,
            expected_profit_bps=Decimal("29.5"),
        )
        assert reason.startswith("PnL drift")

    def test_profit_target_waits_for_holding_period(self, exit_config):
        reason = formulas.evaluate_exit(
            Decimal("2"), 0, Decimal("0"), Decimal("100"), exit_config,
            expected_profit_bps=Decimal("10"),
        )
        assert reason is None

    def test_profit_target_disabled(self):
        """Test a None target leaves the remaining rules in charge."""
        config = ExitConfig(profit_target_percent=None)
        reason = formulas.evaluate_exit(
            Decimal("9"), 1, Decimal("0.1"), Decimal("20"), config,
            expected_profit_bps=Decimal("10"),
        )
        assert reason is None
