#!/usr/bin/env python3
"""
Backfill aggregated metrics or prune old ones from the command line.

Usage:
    python scripts/backfill.py aggregate --start 2024-01-01 --end 2024-02-01 --granularity day
    python scripts/backfill.py aggregate --start 2024-01-01 --end 2024-01-02 --families ecommerce
    python scripts/backfill.py prune --cutoff 2023-01-01
    python scripts/backfill.py prune
"""

import argparse
import sys
from datetime import datetime
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from dashcore.dependencies import get_aggregator, get_pruner
from dashcore.exceptions import DashcoreError
from dashcore.models.enums import TimeGranularity
from dashcore.utils.logging import configure_logging, get_logger

logger = get_logger(__name__)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="dashcore aggregation backfill")
    sub = parser.add_subparsers(dest="command", required=True)

    agg = sub.add_parser("aggregate", help="Aggregate a range")
    agg.add_argument("--start", required=True, type=datetime.fromisoformat)
    agg.add_argument("--end", required=True, type=datetime.fromisoformat)
    agg.add_argument(
        "--granularity",
        default=TimeGranularity.DAY.value,
        choices=[g.value for g in TimeGranularity if g != TimeGranularity.CUSTOM],
    )
    agg.add_argument("--families", nargs="*", default=None, help="Family names (default: all)")

    prune = sub.add_parser("prune", help="Delete aggregated metrics past a cutoff")
    prune.add_argument(
        "--cutoff",
        type=datetime.fromisoformat,
        default=None,
        help="Delete rows ending before this (default: now minus retention)",
    )
    return parser.parse_args(argv)


def main(argv=None) -> int:
    configure_logging()
    args = parse_args(argv)

    try:
        if args.command == "aggregate":
            run = get_aggregator().aggregate(
                args.start,
                args.end,
                TimeGranularity(args.granularity),
                families=args.families,
            )
            print(
                f"{run.status.value}: {run.windows_processed} windows, "
                f"{run.metrics_written} rows (run {run.run_id})"
            )
        else:
            pruner = get_pruner()
            if args.cutoff is not None:
                deleted = pruner.prune(args.cutoff)
                cutoff = args.cutoff
            else:
                result = pruner.prune_expired()
                deleted, cutoff = result.deleted, result.cutoff
            print(f"deleted {deleted} rows ending before {cutoff.isoformat()}")
    except (DashcoreError, KeyError, ValueError) as e:
        logger.error("backfill_failed", command=args.command, error=str(e))
        print(f"error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
