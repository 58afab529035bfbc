"""
Configuration loader.

Supports loading from:
- A YAML file
- Environment variable overrides (FUNDINGPILOT_* and DATABASE_URL)
"""

import os
from pathlib import Path
from typing import Optional

import yaml

from .schema import Config

_TRUTHY = ("true", "1", "yes", "on")


def load_config(config_path: Optional[str] = "config/config.yaml") -> Config:
    """
    Load configuration from file.

    Args:
        config_path: Path to a YAML configuration file. When None, only
            defaults and environment overrides are used.

    Returns:
        Validated Config object

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValidationError: If config validation fails
    """
    config_dict: dict = {}

    if config_path is not None:
        path = Path(config_path)
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(path, "r", encoding="utf-8") as f:
            config_dict = yaml.safe_load(f) or {}

    config_dict = _apply_env_overrides(config_dict)

    return Config.model_validate(config_dict)


def _apply_env_overrides(config_dict: dict) -> dict:
    """Apply environment variable overrides to config."""

    if db_driver := os.environ.get("FUNDINGPILOT_DB_DRIVER"):
        config_dict.setdefault("database", {})["driver"] = db_driver

    if sqlite_path := os.environ.get("FUNDINGPILOT_SQLITE_PATH"):
        config_dict.setdefault("database", {})["sqlite_path"] = sqlite_path

    # PostgreSQL connection from DATABASE_URL (common pattern)
    if database_url := os.environ.get("DATABASE_URL"):
        database = config_dict.setdefault("database", {})
        database["url"] = database_url
        if database_url.startswith("postgresql"):
            database["driver"] = "postgresql"

    if api_host := os.environ.get("FUNDINGPILOT_API_HOST"):
        config_dict.setdefault("api", {})["host"] = api_host

    if api_port := os.environ.get("FUNDINGPILOT_API_PORT"):
        config_dict.setdefault("api", {})["port"] = int(api_port)

    if dry_run := os.environ.get("FUNDINGPILOT_DRY_RUN"):
        config_dict.setdefault("execution", {})["dry_run"] = dry_run.lower() in _TRUTHY

    if interval := os.environ.get("FUNDINGPILOT_SCAN_INTERVAL"):
        config_dict.setdefault("scheduler", {})["interval_seconds"] = float(interval)

    if log_level := os.environ.get("FUNDINGPILOT_LOG_LEVEL"):
        config_dict.setdefault("logging", {})["level"] = log_level

    if log_json := os.environ.get("FUNDINGPILOT_LOG_JSON"):
        config_dict.setdefault("logging", {})["json_output"] = log_json.lower() in _TRUTHY

    return config_dict


def create_example_config() -> str:
    """Generate example configuration YAML."""

    example = """# Funding-rate arbitrage autopilot configuration
# Copy this file to config/config.yaml and adjust

capital:
  total_eur: 200
  hedge_size_eur: 20       # Split evenly: 10 EUR per leg
  max_deployed_eur: 160
  buffer_eur: 40

# Maximum concurrent hedges per risk tier (0 disables the tier)
buckets:
  safe: 5
  medium: 2
  high: 1

thresholds:
  safe:   {min_profit_bps: 25, max_spread_bps: 20, max_total_cost_bps: 15, min_liquidity_score: 70}
  medium: {min_profit_bps: 35, max_spread_bps: 25, max_total_cost_bps: 18, min_liquidity_score: 60}
  high:   {min_profit_bps: 50, max_spread_bps: 35, max_total_cost_bps: 25, min_liquidity_score: 40}

# Total cost = 2 x taker + slippage + safety buffer
costs:
  taker_fee_bps: 4
  slippage_bps: 3
  safety_buffer_bps: 4

exit:
  holding_period_intervals: 1
  max_holding_hours: 24
  profit_target_percent: 60
  profit_exit_threshold_bps: 5
  pnl_drift_limit_percent: 0.6
  data_stale_timeout_seconds: 120

risk:
  max_daily_drawdown_eur: 20   # Kill switch trips beyond this unrealized loss
  caution_drawdown_eur: 10     # No new entries beyond this
  max_concurrent_hedges: 8
  stress_test_multiplier: 2
  notional_match_tolerance_percent: 1

execution:
  dry_run: true                # Synthesized fills, nothing reaches a venue
  order_timeout_seconds: 10
  dry_run_slippage_bps: 2
  venue: paper

exchanges:
  binance:     {purpose: long,  taker_fee_bps: 4,   funding_interval_hours: 8}
  bybit:       {purpose: both,  taker_fee_bps: 5.5, funding_interval_hours: 8}
  okx:         {purpose: both,  taker_fee_bps: 5,   funding_interval_hours: 8}
  hyperliquid: {purpose: short, taker_fee_bps: 3.5, funding_interval_hours: 1}

universe:
  whitelist: [BTC, ETH, SOL]
  blacklist: []
  allow_meme: false
  symbols:
    BTC: {volatility_multiplier: 1.0}
    ETH: {volatility_multiplier: 1.2}
    SOL: {volatility_multiplier: 1.6}

scheduler:
  interval_seconds: 60

database:
  driver: sqlite  # sqlite or postgresql
  sqlite_path: data/fundingpilot.db

api:
  enabled: true
  host: "127.0.0.1"
  port: 8000

logging:
  level: INFO
  json_output: false
"""
    return example
