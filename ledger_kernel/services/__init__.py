"""Kernel services: event ledger, aggregates, reconciliation, payouts."""

from ledger_kernel.services.aggregate_store import AggregateStore
from ledger_kernel.services.base import BaseService
from ledger_kernel.services.donation_service import DonationService
from ledger_kernel.services.event_store import EventStore, LeaderboardEventStore
from ledger_kernel.services.leaderboard_service import LeaderboardService
from ledger_kernel.services.payout_dispatcher import KeyedLock, PayoutDispatcher
from ledger_kernel.services.reconciliation_service import (
    LEADERBOARD,
    SPLITS,
    LedgerBinding,
    ReconciliationService,
)

__all__ = [
    "AggregateStore",
    "BaseService",
    "DonationService",
    "EventStore",
    "LeaderboardEventStore",
    "LeaderboardService",
    "KeyedLock",
    "PayoutDispatcher",
    "LedgerBinding",
    "LEADERBOARD",
    "SPLITS",
    "ReconciliationService",
]
