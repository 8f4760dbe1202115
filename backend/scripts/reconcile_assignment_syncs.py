"""
Retry assignment quantity updates that stayed pending after their ledger entry committed.

Safe to run at any time (e.g. from cron); a sync is claimed before it is applied,
so concurrent runs never apply one twice.

This script can be run from either:
- backend/: `python scripts/reconcile_assignment_syncs.py`
- repo root: `python backend/scripts/reconcile_assignment_syncs.py`
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Allow running from repo root by ensuring `backend/` is on sys.path
BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from core.config import settings  # noqa: E402
from db.database import async_session_maker  # noqa: E402
from services.ledger import reconcile_pending_syncs  # noqa: E402


async def main(limit: int) -> int:
    async with async_session_maker() as db:
        counts = await reconcile_pending_syncs(db, limit=limit)
    print(f"Applied: {counts['applied']}, still pending: {counts['pending']}")
    return 1 if counts["pending"] else 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    parser.add_argument("--limit", type=int, default=500, help="max syncs to process in this run")
    args = parser.parse_args()

    logging.basicConfig(level=getattr(logging, settings.log_level, logging.INFO))
    sys.exit(asyncio.run(main(args.limit)))
