#!/usr/bin/env python3
"""
Split report: donations vs. what is owed to and was paid to each payee.

For every configured payee prints the owed balance, sent / pending /
failed payouts, then the reconciliation line
``Donations - (Owed + Sent)``, which is zero when every donated unit is
accounted for.  ``--check`` adds the split-ledger integrity report and
``--repair`` reconciles any drifted accumulator.

Usage:
  python3 scripts/splits_report.py [--config ledger.yaml] [--database-url URL]
                                   [--recent N] [--check] [--repair]
"""

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def fmt(n: int) -> str:
    return f"{n:,}"


def _parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Donation split report")
    p.add_argument("--config", default=None, help="YAML config (default: $LEDGER_CONFIG)")
    p.add_argument("--database-url", default=None, help="Override the configured database URL")
    p.add_argument("--recent", type=int, default=5, help="Recent donations / payouts to list")
    p.add_argument("--check", action="store_true", help="Run the split integrity check")
    p.add_argument("--repair", action="store_true", help="Reconcile drifted accumulators")
    return p.parse_args()


def main() -> int:
    args = _parse_args()

    from ledger_config import get_active_config
    from ledger_kernel.db.engine import LedgerStore
    from ledger_kernel.logging_config import configure_logging
    from ledger_kernel.selectors.payout_selector import PayoutSelector
    from ledger_kernel.services.reconciliation_service import SPLITS, ReconciliationService

    configure_logging()
    config = get_active_config(args.config)
    payee_keys = [p.subject_key for p in config.splits.payees]

    with LedgerStore(args.database_url or config.database_url) as store:
        store.create_tables()

        if args.repair:
            with store.session_scope("splits_repair") as session:
                results = ReconciliationService(session, SPLITS).reconcile_all()
            repaired = [r for r in results if r.was_inconsistent]
            print(f"Repaired {len(repaired)} of {len(results)} accumulators")
            for r in repaired:
                print(f"  {r.subject_key}: {fmt(r.old_total)} -> {fmt(r.new_total)}")
            print("")

        with store.session_scope("splits_report") as session:
            selector = PayoutSelector(session)
            report = selector.split_report(payee_keys)

            print("=== Split Report ===")
            print(f"Threshold: {fmt(config.splits.threshold)} sats")
            for i, key in enumerate(payee_keys, start=1):
                print(f"payee {i}: {key}")
            print("")

            print("-- All-time Donations --")
            print(f"Count: {fmt(report.donation_count)}  Total: {fmt(report.donation_total)} sats")
            print("")

            for s in report.payees:
                print(f"-- {s.subject_key} --")
                print(f"Owed now: {fmt(s.owed)} sats")
                print(f"Payouts sent: {fmt(s.sent_count)}  Amount: {fmt(s.sent_amount)} sats")
                print(f"Pending payouts: {fmt(s.pending_count)}  Amount: {fmt(s.pending_amount)} sats")
                print(f"Failed payouts: {fmt(s.failed_count)}")
                print("")

            print("-- Reconciliation --")
            print(f"Total owed: {fmt(report.owed_total)} sats")
            print(f"Total payouts sent: {fmt(report.sent_total)} sats")
            print(f"Donations - (Owed + Sent): {fmt(report.reconciliation_delta)} sats")
            print("")

            print(f"-- Recent Donations ({args.recent}) --")
            donations = selector.recent_donations(args.recent)
            if not donations:
                print("None")
            for d in donations:
                print(f"{d.reference_id[:16]}  {fmt(d.amount)} sats  @ {d.recorded_at.isoformat()}")
            print("")

            for key in payee_keys:
                print(f"-- Recent Payouts ({args.recent}) for {key} --")
                payouts = selector.history(key, limit=args.recent)
                if not payouts:
                    print("None")
                for p in payouts:
                    finalized = p.finalized_at.isoformat() if p.finalized_at else "-"
                    print(
                        f"{str(p.payout_id)[:8]}  {fmt(p.amount)} sats  {p.status}  "
                        f"created:{p.created_at.isoformat()}  finalized:{finalized}  "
                        f"ref:{p.external_reference or '-'}"
                    )
                print("")

            if args.check:
                integrity = ReconciliationService(session, SPLITS).integrity_check()
                print("-- Integrity --")
                print(
                    f"Subjects: {integrity.total_subjects}  "
                    f"consistent: {integrity.consistent_subjects}  "
                    f"inconsistent: {integrity.inconsistent_subjects}  "
                    f"discrepancy: {fmt(integrity.total_discrepancy)} sats"
                )
                for issue in integrity.issues:
                    print(
                        f"  {issue.subject_key}: stored {fmt(issue.stored_total)}, "
                        f"computed {fmt(issue.computed_total)}"
                    )

    return 0


if __name__ == "__main__":
    sys.exit(main())
