"""Management CLI for ledger maintenance.

Usage:
    python -m app.cli reconcile          # Replay the ledger and record alerts
    python -m app.cli check-locations    # Print the location integrity report
"""

import argparse
import asyncio
import json
import sys

from app.database import async_session
from app.logging_config import setup_logging
from app.services.locations import check_location_integrity
from app.services.reconciliation import run_full_reconciliation


async def reconcile() -> int:
    async with async_session() as db:
        try:
            summary = await run_full_reconciliation(db)
            await db.commit()
        except Exception:
            await db.rollback()
            raise

    print(f"Run {summary['run_id']}: {summary['total_alerts']} alert(s)")
    for alert_type, count in sorted(summary["by_type"].items()):
        print(f"  {alert_type}: {count}")
    return 1 if summary["total_alerts"] else 0


async def check_locations() -> int:
    async with async_session() as db:
        report = await check_location_integrity(db)

    print(json.dumps(report.as_dict(), indent=2))
    return 0 if report.ok else 1


COMMANDS = {
    "reconcile": reconcile,
    "check-locations": check_locations,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="FieldStock ledger maintenance")
    parser.add_argument(
        "command",
        choices=sorted(COMMANDS),
        help="reconcile: replay the ledger and record alerts; "
             "check-locations: print the location integrity report",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    """Run one command; the exit code is non-zero when problems were found."""
    args = build_parser().parse_args(argv)
    setup_logging()
    return asyncio.run(COMMANDS[args.command]())


if __name__ == "__main__":
    sys.exit(main())
