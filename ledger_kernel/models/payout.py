"""
Module: ledger_kernel.models.payout
Responsibility: Payment intents -- proposed outbound payments to a payee,
    pending external confirmation.

State machine:
    PENDING -> SENT | FAILED | CANCELED
    SENT, FAILED, CANCELED: terminal

Invariants enforced:
    - An intent is finalized at most once (only PENDING may transition).
    - Creating an intent never touches the payee's accumulator; only the
      PENDING -> SENT transition decrements it, by exactly ``amount``.
    - A FAILED intent leaves the owed amount in place for a later attempt.
"""

from datetime import datetime
from enum import Enum

from sqlalchemy import BigInteger, CheckConstraint, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import Base, UTCDateTime
from ledger_kernel.models.ledger import SUBJECT_KEY_LENGTH


class PayoutStatus(str, Enum):
    """Lifecycle status of a payment intent."""

    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"
    CANCELED = "canceled"  # administrative cancellation


class PayoutPolicy(str, Enum):
    """Sizing policy that produced the intent."""

    CHUNKED = "chunked"  # floor-sized chunks right after a donation
    DRAIN = "drain"      # whole available balance, periodic worker


VALID_TRANSITIONS: dict[PayoutStatus, frozenset[PayoutStatus]] = {
    PayoutStatus.PENDING: frozenset({
        PayoutStatus.SENT,
        PayoutStatus.FAILED,
        PayoutStatus.CANCELED,
    }),
    PayoutStatus.SENT: frozenset(),
    PayoutStatus.FAILED: frozenset(),
    PayoutStatus.CANCELED: frozenset(),
}


class Payout(Base):
    """A payment intent for one payee."""

    __tablename__ = "payouts"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_payouts_amount_positive"),
        Index("idx_payouts_subject_status", "subject_key", "status"),
        Index("idx_payouts_created_at", "created_at"),
    )

    # Payee
    subject_key: Mapped[str] = mapped_column(
        String(SUBJECT_KEY_LENGTH),
        nullable=False,
    )

    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)

    status: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        default=PayoutStatus.PENDING.value,
    )

    policy: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
    )

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    finalized_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    # Reference returned by the payment collaborator on success
    external_reference: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )

    error: Mapped[str | None] = mapped_column(Text, nullable=True)

    @property
    def status_enum(self) -> PayoutStatus:
        """Return status as PayoutStatus (normalizes raw DB strings)."""
        return PayoutStatus(self.status)

    @property
    def is_terminal(self) -> bool:
        return not VALID_TRANSITIONS[self.status_enum]

    def validate_transition(self, target: PayoutStatus) -> bool:
        """Return True when ``target`` is reachable from the current status."""
        return target in VALID_TRANSITIONS[self.status_enum]

    def __repr__(self) -> str:
        return f"<Payout {self.id} {self.subject_key}:{self.amount} {self.status}>"
