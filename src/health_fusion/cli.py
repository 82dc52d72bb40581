"""Command-line tools: run fusion cycles, inspect usage, print the tier table."""

import argparse
import asyncio
import json
import sys
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

from .config import get_settings
from .logging import setup_logging
from .metrics import MetricsSink
from .pipeline import (
    HealthDataPipeline,
    HTTPEnvironmentalSource,
    JSONFileHealthSource,
    StaticLocationSource,
)
from .subscription import TIER_TABLE
from .usage import UsageCategory, UsageStats, UsageStore


async def _collect(
    samples: Path,
    latitude: float,
    longitude: float,
    cycles: int,
    interval: float,
    environment_url: str | None,
) -> int:
    settings = get_settings()
    env_settings = settings.environment
    if environment_url:
        env_settings = env_settings.model_copy(update={"base_url": environment_url})

    metrics = MetricsSink(settings.metrics)
    environment = HTTPEnvironmentalSource(env_settings)
    pipeline = HealthDataPipeline(
        JSONFileHealthSource(samples),
        environment,
        StaticLocationSource(latitude, longitude),
        metrics=metrics,
        settings=settings.pipeline,
    )

    emitted = 0
    try:
        async for record in pipeline.collect(max_cycles=cycles, interval=interval):
            print(json.dumps(record.to_dict()))
            emitted += 1
    finally:
        await environment.close()
        metrics.flush()
    print(f"{emitted} record(s) from {cycles} cycle(s)", file=sys.stderr)
    return emitted


async def _usage(db_path: Path, category: UsageCategory | None, hours: int) -> dict[str, Any]:
    store = UsageStore(db_path)
    since = datetime.now(UTC) - timedelta(hours=hours)
    records = await store.query(category, since)
    stats = UsageStats.from_records(records)
    return {
        "db_path": str(db_path),
        "category": category.value if category else "all",
        "window_hours": hours,
        **stats.to_dict(),
    }


def _tier_rows() -> list[dict[str, Any]]:
    rows = []
    for tier, definition in TIER_TABLE.items():
        rows.append(
            {
                "tier": tier.value,
                "product_id": tier.product_id,
                "channel": definition.channel.value,
                "storage_limit": definition.storage_limit,
                "analytics_limit": definition.analytics_limit,
                "features": sorted(f.value for f in definition.features),
                "plans": [
                    {
                        "interval": plan.interval.value,
                        "price": plan.price,
                        "price_per_month": round(plan.price_per_month, 2),
                        "savings_percent": plan.savings_percent,
                    }
                    for plan in definition.plans.values()
                ],
            }
        )
    return rows


def _print_tiers_table(rows: list[dict[str, Any]]) -> None:
    print(f"{'TIER':<14} {'CHANNEL':<16} {'ANALYTICS/DAY':>14} {'STORAGE':>12} {'FEATURES':>9}")
    for row in rows:
        print(
            f"{row['tier']:<14} {row['channel']:<16} {row['analytics_limit']:>14,} "
            f"{row['storage_limit']:>12,} {len(row['features']):>9}"
        )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="health-fusion",
        description="Health and environment data fusion tools",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    collect = subparsers.add_parser("collect", help="Run fusion cycles and print records as JSON")
    collect.add_argument("--samples", type=Path, required=True, help="Health samples JSON file")
    collect.add_argument("--lat", type=float, required=True, help="Latitude")
    collect.add_argument("--lon", type=float, required=True, help="Longitude")
    collect.add_argument("--cycles", type=int, default=1, help="Number of cycles (default: 1)")
    collect.add_argument(
        "--interval", type=float, default=0.0, help="Seconds between cycles (default: 0)"
    )
    collect.add_argument("--environment-url", help="Override ENVIRONMENT_BASE_URL")

    usage = subparsers.add_parser("usage", help="Show usage statistics")
    usage.add_argument("--db-path", type=Path, help="Usage database (default: USAGE_DB_PATH)")
    usage.add_argument(
        "--category",
        choices=[c.value for c in UsageCategory],
        help="Only this category",
    )
    usage.add_argument("--hours", type=int, default=24, help="Trailing window (default: 24)")

    tiers = subparsers.add_parser("tiers", help="Print the subscription tier table")
    tiers.add_argument("--json", action="store_true", help="Output as JSON")

    return parser


def main(argv: list[str] | None = None) -> int:
    """CLI entry point.

    Usage:
        health-fusion collect --samples export.json --lat 52.52 --lon 13.40 --cycles 3
        health-fusion usage --category analytics --hours 48
        health-fusion tiers --json
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    settings = get_settings()
    setup_logging(settings.app, stream=sys.stderr)

    if args.command == "collect":
        if args.cycles < 1:
            print("Error: --cycles must be at least 1", file=sys.stderr)
            return 1
        if not args.samples.exists():
            print(f"Error: samples file not found: {args.samples}", file=sys.stderr)
            return 1
        asyncio.run(
            _collect(
                args.samples,
                args.lat,
                args.lon,
                args.cycles,
                args.interval,
                args.environment_url,
            )
        )
        return 0

    if args.command == "usage":
        if args.hours < 1:
            print("Error: --hours must be at least 1", file=sys.stderr)
            return 1
        db_path = args.db_path or Path(settings.usage.db_path)
        category = UsageCategory(args.category) if args.category else None
        print(json.dumps(asyncio.run(_usage(db_path, category, args.hours)), indent=2))
        return 0

    rows = _tier_rows()
    if args.json:
        print(json.dumps(rows, indent=2))
    else:
        _print_tiers_table(rows)
    return 0


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()
