#!/usr/bin/env python3
"""
Hamme — Match expiry sweep

Flips every active match older than the interaction window to ``expired``.
Listing endpoints already sweep lazily per user; run this periodically
(cron / Cloud Scheduler) so that rows for inactive users are flipped too.

Usage examples
--------------
  # Flip stale matches
  python scripts/expire_matches.py

  # Only report how many would be flipped
  python scripts/expire_matches.py --dry-run
"""

from __future__ import annotations

import argparse
import asyncio
import sys

# Ensure the project root is importable
sys.path.insert(0, ".")

from sqlalchemy import func, select

from app.database import async_session_factory, engine
from app.models.match import MATCH_STATUS_ACTIVE, Match
from app.services.matching_service import MatchingService


async def count_stale(service: MatchingService) -> int:
    cutoff = service.expiry.cutoff(service.now())
    async with async_session_factory() as session:
        result = await session.execute(
            select(func.count(Match.id)).where(
                Match.status == MATCH_STATUS_ACTIVE,
                Match.created_at <= cutoff,
            )
        )
        return result.scalar_one()


async def sweep(service: MatchingService) -> int:
    async with async_session_factory() as session:
        flipped = await service.expire_matches(session)
        await session.commit()
    return flipped


async def run(args: argparse.Namespace) -> None:
    service = MatchingService()
    try:
        if args.dry_run:
            stale = await count_stale(service)
            print(f"{stale} active match(es) past the interaction window (dry run).")
        else:
            flipped = await sweep(service)
            print(f"Expired {flipped} match(es).")
    finally:
        await engine.dispose()


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Hamme — expire active matches older than the interaction window.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        default=False,
        help="Count stale matches without modifying them.",
    )
    args = parser.parse_args()
    asyncio.run(run(args))


if __name__ == "__main__":
    main()
