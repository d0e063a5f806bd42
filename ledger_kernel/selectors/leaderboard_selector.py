"""
Module: ledger_kernel.selectors.leaderboard_selector
Responsibility: Leaderboard reads -- top players, one player's score and
    games played.
"""

from sqlalchemy import func, select

from ledger_kernel.domain.dtos import LeaderboardRow, PlayerDetails
from ledger_kernel.models.leaderboard import LeaderboardEntry, LeaderboardUpdate
from ledger_kernel.selectors.base import BaseSelector

DEFAULT_TOP_LIMIT = 10


class LeaderboardSelector(BaseSelector):

    def top(self, limit: int = DEFAULT_TOP_LIMIT) -> list[LeaderboardRow]:
        """Highest totals first; ties broken by subject key."""
        rows = self.session.execute(
            select(LeaderboardEntry)
            .order_by(LeaderboardEntry.total.desc(), LeaderboardEntry.subject_key)
            .limit(limit)
        ).scalars()
        return [
            LeaderboardRow(subject_key=r.subject_key, initials=r.initials, total=r.total)
            for r in rows
        ]

    def player(self, subject_key: str) -> PlayerDetails | None:
        entry = self.session.execute(
            select(LeaderboardEntry).where(LeaderboardEntry.subject_key == subject_key)
        ).scalar_one_or_none()
        if entry is None:
            return None

        played = self.session.execute(
            select(func.count(func.distinct(LeaderboardUpdate.reference_id))).where(
                LeaderboardUpdate.subject_key == subject_key
            )
        ).scalar_one()
        return PlayerDetails(
            subject_key=entry.subject_key,
            initials=entry.initials,
            score=entry.total,
            played=played,
        )
