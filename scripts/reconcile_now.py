#!/usr/bin/env python3
"""
Run attendance reconciliation once, outside the scheduler.

Useful after a provider outage or when backfilling a deployment.

Usage:
    python scripts/reconcile_now.py [--catch-up] [--at 2025-01-10T07:00:00Z]
"""

import argparse
import asyncio
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv

load_dotenv(Path(__file__).parent.parent / ".env.local")
load_dotenv()

from vigil.database import close_engine
from vigil.reconciler import run_catch_up, run_live_poll


def _parse_instant(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


async def main(catch_up: bool, now: datetime | None):
    try:
        if catch_up:
            stats = await run_catch_up(now=now)
        else:
            stats = await run_live_poll(now=now)
    finally:
        await close_engine()

    print(f"{'Catch-up' if catch_up else 'Live poll'} finished:")
    for key, value in stats.items():
        print(f"  {key}: {value}")


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    parser = argparse.ArgumentParser()
    parser.add_argument(
        "--catch-up", action="store_true", help="Sweep the last few days instead of the live window"
    )
    parser.add_argument("--at", type=_parse_instant, help="Pretend the current time is this instant")
    args = parser.parse_args()

    asyncio.run(main(args.catch_up, args.at))
