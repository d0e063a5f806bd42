"""ORM models for the ledger kernel."""

from ledger_kernel.models.access_request import AccessRequest
from ledger_kernel.models.donation import Donation, SplitAccumulator, SplitShare
from ledger_kernel.models.leaderboard import (
    INITIALS_LENGTH,
    LeaderboardEntry,
    LeaderboardUpdate,
)
from ledger_kernel.models.ledger import LedgerAggregateMixin, LedgerEventMixin
from ledger_kernel.models.payout import (
    VALID_TRANSITIONS,
    Payout,
    PayoutPolicy,
    PayoutStatus,
)

__all__ = [
    "AccessRequest",
    "Donation",
    "SplitShare",
    "SplitAccumulator",
    "LeaderboardUpdate",
    "LeaderboardEntry",
    "INITIALS_LENGTH",
    "LedgerEventMixin",
    "LedgerAggregateMixin",
    "Payout",
    "PayoutStatus",
    "PayoutPolicy",
    "VALID_TRANSITIONS",
]
