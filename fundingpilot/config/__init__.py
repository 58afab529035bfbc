"""Configuration management module."""

from .schema import (
    Config,
    CapitalConfig,
    BucketConfig,
    TierThresholds,
    ThresholdsConfig,
    CostConfig,
    ExitConfig,
    RiskConfig,
    ExecutionConfig,
    ExchangeConfig,
    SymbolConfig,
    UniverseConfig,
    SchedulerConfig,
    DatabaseConfig,
    APIConfig,
    LoggingConfig,
)
from .loader import load_config, create_example_config

__all__ = [
    "Config",
    "CapitalConfig",
    "BucketConfig",
    "TierThresholds",
    "ThresholdsConfig",
    "CostConfig",
    "ExitConfig",
    "RiskConfig",
    "ExecutionConfig",
    "ExchangeConfig",
    "SymbolConfig",
    "UniverseConfig",
    "SchedulerConfig",
    "DatabaseConfig",
    "APIConfig",
    "LoggingConfig",
    "load_config",
    "create_example_config",
]
