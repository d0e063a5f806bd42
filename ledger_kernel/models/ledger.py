"""
Module: ledger_kernel.models.ledger
Responsibility: Column shapes shared by every event table and every
    aggregate table, plus the ORM guard that keeps event rows append-only.
Architecture position: Kernel > Models.  May import from db/ and exceptions.

Invariants enforced:
    - reference_id is UNIQUE on every event table (idempotency key).
    - amount is a positive integer on every event table (CHECK constraint
      added by each concrete model).
    - subject_key is UNIQUE on every aggregate table (one running total per
      owner).
    - Event rows are immutable: any UPDATE flush raises
      ImmutabilityViolationError.
"""

from datetime import datetime

from sqlalchemy import BigInteger, String, event
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import UTCDateTime
from ledger_kernel.exceptions import ImmutabilityViolationError

SUBJECT_KEY_LENGTH = 128
# Room for a split share reference: 64-char fingerprint, ":", subject key
REFERENCE_ID_LENGTH = 200


class LedgerEventMixin:
    """Append-only event row keyed by an externally supplied reference id."""

    # Caller-supplied idempotency key
    reference_id: Mapped[str] = mapped_column(
        String(REFERENCE_ID_LENGTH),
        nullable=False,
        unique=True,
    )

    # Owner of the aggregate this event contributes to
    subject_key: Mapped[str] = mapped_column(
        String(SUBJECT_KEY_LENGTH),
        nullable=False,
        index=True,
    )

    amount: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
    )

    recorded_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
    )


class LedgerAggregateMixin:
    """Materialized running total for one subject key."""

    subject_key: Mapped[str] = mapped_column(
        String(SUBJECT_KEY_LENGTH),
        nullable=False,
        unique=True,
    )

    # May go negative transiently when payouts over-commit
    total: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
    )

    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
    )


def make_append_only(model: type) -> None:
    """Install the before_update guard on an event model."""

    @event.listens_for(model, "before_update")
    def _prevent_update(mapper, connection, target):
        raise ImmutabilityViolationError(model.__name__, str(target.reference_id))
