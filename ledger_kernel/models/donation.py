"""
Module: ledger_kernel.models.donation
Responsibility: Donation events (redeemed tokens), per-payee split share
    events, and the per-payee owed balance.

Invariants enforced:
    - donations.reference_id UNIQUE: it is the token fingerprint, so a token
      is recorded at most once.
    - split_shares.reference_id UNIQUE ("<fingerprint>:<payee>"): a payee is
      credited at most once per donation.
    - split_accumulators.total == SUM(split_shares.amount)
      - SUM(payouts.amount WHERE status = 'sent') for the same payee.
"""

from sqlalchemy import CheckConstraint, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import Base
from ledger_kernel.models.ledger import (
    REFERENCE_ID_LENGTH,
    LedgerAggregateMixin,
    LedgerEventMixin,
    make_append_only,
)


class Donation(LedgerEventMixin, Base):
    """
    A redeemed token.

    reference_id and subject_key both hold the token fingerprint; a
    donation is owned by its content, not by a payee.
    """

    __tablename__ = "donations"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_donations_amount_positive"),
    )

    def __repr__(self) -> str:
        return f"<Donation {self.reference_id[:16]}:{self.amount}>"


class SplitShare(LedgerEventMixin, Base):
    """One payee's share of one donation."""

    __tablename__ = "split_shares"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_split_shares_amount_positive"),
    )

    donation_reference: Mapped[str] = mapped_column(
        String(REFERENCE_ID_LENGTH),
        ForeignKey("donations.reference_id"),
        nullable=False,
        index=True,
    )

    def __repr__(self) -> str:
        return f"<SplitShare {self.subject_key}:{self.amount}>"


class SplitAccumulator(LedgerAggregateMixin, Base):
    """Earned-but-unpaid balance for a payee."""

    __tablename__ = "split_accumulators"

    def __repr__(self) -> str:
        return f"<SplitAccumulator {self.subject_key}:{self.total}>"


make_append_only(Donation)
make_append_only(SplitShare)
