#!/usr/bin/env python3
"""
Orbit — Maintenance CLI

Operational commands run from cron or by hand against the configured
database:

  expire  — Move lapsed PENDING sneak peeks to EXPIRED.
  stats   — Report sneak-peek counts per status.

Usage examples
--------------
  # Nightly sweep
  python scripts/maintenance.py expire

  # Count what a sweep would touch without writing
  python scripts/maintenance.py expire --dry-run

  # Status breakdown as JSON
  python scripts/maintenance.py stats --json
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys

from orbit.database import async_session_factory, engine
from orbit.services.sneak_peek_service import SneakPeekService


# ──────────────────────────────────────────────────────────────────────────────
# Subcommand: expire
# ──────────────────────────────────────────────────────────────────────────────

async def cmd_expire(args: argparse.Namespace) -> None:
    service = SneakPeekService()

    async with async_session_factory() as session:
        if args.dry_run:
            counts = await service.status_counts(session)
            print(f"  Would expire: {counts['LAPSED']}")
        else:
            expired = await service.expire_stale(session)
            await session.commit()
            print(f"  Expired: {expired}")

    await engine.dispose()


# ──────────────────────────────────────────────────────────────────────────────
# Subcommand: stats
# ──────────────────────────────────────────────────────────────────────────────

async def cmd_stats(args: argparse.Namespace) -> None:
    service = SneakPeekService()

    async with async_session_factory() as session:
        counts = await service.status_counts(session)
    await engine.dispose()

    if args.json:
        print(json.dumps(counts, indent=2))
        return

    print(f"\n{'=' * 40}")
    print("  Sneak Peek Statistics")
    print(f"{'=' * 40}")
    for status, count in counts.items():
        print(f"  {status:<14} {count}")
    print()


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Orbit maintenance: sneak-peek expiry sweep and status counts.",
    )

    subparsers = parser.add_subparsers(
        dest="command",
        help="Available subcommands",
    )

    # ── expire ────────────────────────────────────────────────────────
    expire_parser = subparsers.add_parser(
        "expire",
        help="Move lapsed PENDING sneak peeks to EXPIRED.",
    )
    expire_parser.add_argument(
        "--dry-run",
        action="store_true",
        default=False,
        help="Only count the rows a sweep would expire.",
    )

    # ── stats ─────────────────────────────────────────────────────────
    stats_parser = subparsers.add_parser(
        "stats",
        help="Report sneak-peek counts per status.",
    )
    stats_parser.add_argument(
        "--json",
        action="store_true",
        default=False,
        help="Output raw JSON instead of a table.",
    )

    args = parser.parse_args()

    if args.command == "expire":
        asyncio.run(cmd_expire(args))
    elif args.command == "stats":
        asyncio.run(cmd_stats(args))
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
