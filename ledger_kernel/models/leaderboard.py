"""
Module: ledger_kernel.models.leaderboard
Responsibility: Game-result events and the per-player running loss total.

Invariants enforced:
    - leaderboard_updates.reference_id UNIQUE (duplicate game submissions
      are no-ops).
    - leaderboard_entries.total == SUM(leaderboard_updates.amount) for the
      same subject_key, outside an open transaction.
    - initials are exactly three characters, stored upper case.
"""

from datetime import datetime

from sqlalchemy import CheckConstraint, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import Base, UTCDateTime
from ledger_kernel.models.ledger import (
    LedgerAggregateMixin,
    LedgerEventMixin,
    make_append_only,
)

INITIALS_LENGTH = 3


class LeaderboardUpdate(LedgerEventMixin, Base):
    """One submitted game result (sats lost) for a player."""

    __tablename__ = "leaderboard_updates"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_leaderboard_updates_amount_positive"),
        Index("idx_leaderboard_updates_recorded_at", "recorded_at"),
    )

    initials: Mapped[str] = mapped_column(
        String(INITIALS_LENGTH),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<LeaderboardUpdate {self.reference_id} {self.subject_key}:{self.amount}>"


class LeaderboardEntry(LedgerAggregateMixin, Base):
    """Cumulative sats lost for a player."""

    __tablename__ = "leaderboard_entries"

    __table_args__ = (
        Index("idx_leaderboard_entries_total", "total"),
    )

    initials: Mapped[str] = mapped_column(
        String(INITIALS_LENGTH),
        nullable=False,
    )

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<LeaderboardEntry {self.initials} {self.subject_key}:{self.total}>"


make_append_only(LeaderboardUpdate)
