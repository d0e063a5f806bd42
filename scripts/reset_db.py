#!/usr/bin/env python3
"""
Drop and recreate every ledger table (leaderboard, donations, splits,
payouts, access requests) to start fresh.

Usage:
  python3 scripts/reset_db.py [--config ledger.yaml] [--database-url URL] --yes
"""

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def _parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Reset the ledger database")
    p.add_argument("--config", default=None, help="YAML config (default: $LEDGER_CONFIG)")
    p.add_argument("--database-url", default=None, help="Override the configured database URL")
    p.add_argument("--yes", action="store_true", help="Confirm that all data is deleted")
    return p.parse_args()


def main() -> int:
    args = _parse_args()
    if not args.yes:
        print("Refusing to reset without --yes", file=sys.stderr)
        return 2

    from ledger_config import get_active_config
    from ledger_kernel.db.engine import LedgerStore
    from ledger_kernel.logging_config import configure_logging

    configure_logging()
    config = get_active_config(args.config)
    url = args.database_url or config.database_url

    with LedgerStore(url) as store:
        store.drop_tables()
        store.create_tables()
    print(f"Reset complete: {url}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
