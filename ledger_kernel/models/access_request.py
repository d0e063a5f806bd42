"""
Module: ledger_kernel.models.access_request
Responsibility: The access-gate decision recorded per presented token,
    independent of whether a donation was later recorded.

Invariants enforced:
    - reference_id (token fingerprint) UNIQUE; a re-presented token updates
      the existing row, so repeated presentation is visible before
      ledger-level dedup runs.
"""

from datetime import datetime

from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import Base
from ledger_kernel.models.ledger import REFERENCE_ID_LENGTH


class AccessRequest(Base):
    """Last access-gate decision for a token fingerprint."""

    __tablename__ = "access_requests"

    reference_id: Mapped[str] = mapped_column(
        String(REFERENCE_ID_LENGTH),
        nullable=False,
        unique=True,
    )

    decision: Mapped[str] = mapped_column(String(32), nullable=False)

    amount: Mapped[int] = mapped_column(nullable=False, default=0)

    reason: Mapped[str] = mapped_column(Text, nullable=False, default="")

    # Number of times the token has been presented
    attempts: Mapped[int] = mapped_column(nullable=False, default=1)

    created_at: Mapped[datetime] = mapped_column(nullable=False)

    updated_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return f"<AccessRequest {self.reference_id[:16]} {self.decision}>"
