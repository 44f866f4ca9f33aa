#!/usr/bin/env python3
"""Mark stale provisional certificates as failed.

A provisional record whose issuance crashed keeps its id reserved but is
never exposed as a certificate. This flags every provisional record older
than CERTANCHOR_PROVISIONAL_STALE_AFTER seconds (or --older-than) as failed.
Records are never deleted.

Usage:
    python scripts/reconcile_provisional.py [--older-than SECONDS]
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Ensure project root is on path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "src"))

from certanchor.common.config import get_settings
from certanchor.common.database import DatabaseManager
from certanchor.maintenance.cleanup import ProvisionalReconciler


async def reconcile(older_than: int | None) -> None:
    settings = get_settings()
    db = DatabaseManager(settings)
    await db.init()
    await db.create_all()

    reconciler = ProvisionalReconciler(db, older_than or settings.provisional_stale_after)
    try:
        stale = await reconciler.sweep()
    finally:
        await db.close()

    for certificate_id in stale:
        print(f"  [failed] {certificate_id}")
    print(f"\nDone. {len(stale)} provisional certificates reconciled.")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--older-than", type=int, default=None, help="Age threshold in seconds")
    args = parser.parse_args()
    asyncio.run(reconcile(args.older_than))
