#!/usr/bin/env python3
"""
Run the periodic payout worker in the foreground until interrupted.

Wires config -> store -> zap client -> dispatcher -> worker.  ``--once``
runs a single cycle and exits.

Usage:
  python3 scripts/run_payout_worker.py [--config ledger.yaml] [--once]
"""

import argparse
import sys
import threading
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def _parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Periodic payout worker")
    p.add_argument("--config", default=None, help="YAML config (default: $LEDGER_CONFIG)")
    p.add_argument("--once", action="store_true", help="Run one cycle and exit")
    return p.parse_args()


def main() -> int:
    args = _parse_args()

    from ledger_batch.payout_worker import PayoutWorker
    from ledger_config import get_active_config
    from ledger_kernel.db.engine import LedgerStore
    from ledger_kernel.logging_config import configure_logging
    from ledger_kernel.services.payout_dispatcher import PayoutDispatcher
    from ledger_services.zap_client import ZapClient

    configure_logging()
    config = get_active_config(args.config)
    worker_config = config.payout_worker

    with LedgerStore(config.database_url) as store:
        store.create_tables()
        client = ZapClient(worker_config.zap_endpoint)
        dispatcher = PayoutDispatcher(
            store,
            client,
            payment_timeout=worker_config.timeout_seconds,
        )
        worker = PayoutWorker(dispatcher, worker_config)
        try:
            if args.once:
                result = worker.tick()
                print(f"Cycle: {len(result.payouts)} payouts, {len(result.skipped)} skipped, {len(result.errors)} errors")
                return 0

            worker.start()
            try:
                threading.Event().wait()
            except KeyboardInterrupt:
                pass
            finally:
                worker.stop()
        finally:
            client.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
