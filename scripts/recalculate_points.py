#!/usr/bin/env python3
"""
Recalculate prediction points for finished matches.

Usage:
    DATABASE_URL=<url> python3 scripts/recalculate_points.py
    DATABASE_URL=<url> python3 scripts/recalculate_points.py --match-id 42
    DATABASE_URL=<url> python3 scripts/recalculate_points.py --pending-only

Points are overwritten, never accumulated, so the script is safe to rerun.

Options:
    --match-id N     Rescore a single match
    --pending-only   Only matches that still have unscored predictions (what the scoring sweep does)
"""

import argparse
import asyncio
import logging
import os
import sys

# Ensure volleyprono package is importable when run from a checkout
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


async def run(match_id: int = None, pending_only: bool = False) -> dict:
    from volleyprono.database import AsyncSessionLocal, close_db, init_db
    from volleyprono.predictions.scoring import find_matches_pending_scoring, rescore_all, score_match

    await init_db()
    try:
        async with AsyncSessionLocal() as session:
            if match_id is not None:
                count = await score_match(session, match_id, trigger="rescore")
                return {"matches": 1, "predictions": count, "errors": 0}

            if pending_only:
                scored = predictions = errors = 0
                for pending_id in await find_matches_pending_scoring(session):
                    try:
                        predictions += await score_match(session, pending_id, trigger="rescore")
                        scored += 1
                    except Exception as e:
                        errors += 1
                        await session.rollback()
                        logger.error(f"Match {pending_id} failed: {e}")
                return {"matches": scored, "predictions": predictions, "errors": errors}

            return await rescore_all(session)
    finally:
        await close_db()


async def main():
    parser = argparse.ArgumentParser(description="Recalculate prediction points for finished matches")
    parser.add_argument("--match-id", type=int, default=None, help="Rescore a single match")
    parser.add_argument("--pending-only", action="store_true", help="Only matches with unscored predictions")
    args = parser.parse_args()

    summary = await run(match_id=args.match_id, pending_only=args.pending_only)
    logger.info(
        f"Done: {summary['matches']} match(es), {summary['predictions']} prediction(s), "
        f"{summary['errors']} error(s)"
    )
    if summary["errors"]:
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
