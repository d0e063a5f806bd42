"""Read-only query selectors for the ledger kernel."""

from ledger_kernel.selectors.base import BaseSelector
from ledger_kernel.selectors.leaderboard_selector import LeaderboardSelector
from ledger_kernel.selectors.payout_selector import PayoutSelector

__all__ = [
    "BaseSelector",
    "LeaderboardSelector",
    "PayoutSelector",
]
