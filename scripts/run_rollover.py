"""
Daily Rollover Runner.

Entry point for an external cron: freezes yesterday's closing snapshot and
opens today's, or backfills a range of reference dates.

    python scripts/run_rollover.py
    python scripts/run_rollover.py --date 2024-01-02
    python scripts/run_rollover.py --backfill-from 2024-01-01 [--date 2024-01-10]

Exits 1 when any phase failed, 2 when the requested dates are rejected.
"""

import argparse
import asyncio
import json
import sys
from datetime import date
from pathlib import Path

from dotenv import load_dotenv

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))
load_dotenv()

from backend.app.core.calendar import calendar
from backend.app.core.config import settings
from backend.app.core.exceptions import InvalidBusinessDateError
from backend.app.core.observability import configure_logging
from backend.app.core.redis_client import redis_client
from backend.app.db.session import AsyncSessionLocal, engine
from backend.app.domain.ledger.scheduler import SnapshotRolloverScheduler
from backend.app.services.rollover_monitor import RolloverMonitor


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Run the daily snapshot rollover")
    parser.add_argument("--date", type=date.fromisoformat, default=None,
                        help="Reference date (default: today in the business timezone)")
    parser.add_argument("--backfill-from", type=date.fromisoformat, default=None,
                        help="Run every reference date from this one through --date")
    return parser.parse_args(argv)


async def main(argv=None) -> int:
    args = parse_args(argv)
    configure_logging(settings.log_level)

    scheduler = SnapshotRolloverScheduler(
        calendar,
        session_factory=AsyncSessionLocal,
        monitor=RolloverMonitor(redis_client),
    )

    try:
        if args.backfill_from:
            reports = await scheduler.backfill(args.backfill_from, args.date or calendar.today())
        else:
            reports = [await scheduler.run_daily_rollover(args.date)]
    except InvalidBusinessDateError as e:
        print(json.dumps({"error_code": e.error_code, "message": e.message, "details": e.details}), file=sys.stderr)
        return 2
    finally:
        await engine.dispose()

    for report in reports:
        print(json.dumps(report.to_dict()))

    return 0 if all(report.ok for report in reports) else 1


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
