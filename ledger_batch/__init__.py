"""Background jobs: the periodic payout worker."""

from ledger_batch.payout_worker import PayoutWorker

__all__ = ["PayoutWorker"]
