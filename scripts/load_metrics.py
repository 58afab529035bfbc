#!/usr/bin/env python3
"""
Market metrics loader for paper runs.

Usage:
    python scripts/load_metrics.py config/metrics.example.yaml
    python scripts/load_metrics.py metrics.yaml -c config/config.yaml --keep-timestamps
"""

import argparse
import asyncio
import sys
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import List

import yaml

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from fundingpilot.config import load_config
from fundingpilot.database import DatabaseSessionManager, MarketMetricRecord, MarketMetricRepository
from fundingpilot.utils.logging import get_logger, setup_logging

logger = get_logger("load_metrics")

REQUIRED_FIELDS = ("symbol", "exchange", "funding_rate", "mark_price")


def parse_metrics(path: str, keep_timestamps: bool = False) -> List[MarketMetricRecord]:
    """Read metric rows from a YAML file with a top-level 'metrics' list."""
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    now = datetime.now(timezone.utc)
    records = []
    for index, row in enumerate(data.get("metrics", [])):
        missing = [name for name in REQUIRED_FIELDS if name not in row]
        if missing:
            raise ValueError(f"Metric #{index} is missing {', '.join(missing)}")

        ts = now
        if keep_timestamps and row.get("ts"):
            ts = row["ts"] if isinstance(row["ts"], datetime) else datetime.fromisoformat(str(row["ts"]))
            if ts.tzinfo is None:
                ts = ts.replace(tzinfo=timezone.utc)

        records.append(MarketMetricRecord(
            symbol=str(row["symbol"]).upper(),
            exchange=str(row["exchange"]).lower(),
            funding_rate=Decimal(str(row["funding_rate"])),
            funding_interval_hours=Decimal(str(row.get("funding_interval_hours", 8))),
            mark_price=Decimal(str(row["mark_price"])),
            spread_bps=Decimal(str(row.get("spread_bps", 0))),
            liquidity_score=Decimal(str(row.get("liquidity_score", 0))),
            ts=ts,
        ))
    return records


async def load(config_path: str, metrics_path: str, keep_timestamps: bool) -> int:
    config = load_config(config_path)
    if config.database.driver == "sqlite" and not config.database.is_memory:
        Path(config.database.sqlite_path).parent.mkdir(parents=True, exist_ok=True)

    records = parse_metrics(metrics_path, keep_timestamps)

    db = DatabaseSessionManager()
    await db.init(config.database)
    try:
        async with db.session() as session:
            repo = MarketMetricRepository(session)
            for record in records:
                await repo.add(record)
    finally:
        await db.close()

    logger.info("metrics_loaded", count=len(records), source=metrics_path)
    return len(records)


def main() -> None:
    parser = argparse.ArgumentParser(description="Load market metrics into the autopilot database")
    parser.add_argument("metrics", help="YAML file with a top-level 'metrics' list")
    parser.add_argument(
        "-c", "--config",
        default="config/config.yaml",
        help="Path to configuration file (default: config/config.yaml)"
    )
    parser.add_argument(
        "--keep-timestamps",
        action="store_true",
        help="Use the 'ts' field of each row instead of the current time"
    )

    args = parser.parse_args()
    setup_logging(level="INFO")

    if not Path(args.metrics).exists():
        print(f"Error: Metrics file '{args.metrics}' not found")
        sys.exit(1)

    try:
        count = asyncio.run(load(args.config, args.metrics, args.keep_timestamps))
    except (FileNotFoundError, ValueError) as e:
        print(f"Error: {e}")
        sys.exit(1)

    print(f"Loaded {count} metrics from '{args.metrics}'")


if __name__ == "__main__":
    main()
