"""
AggregateStore -- materialized running total per subject key.

Responsibility:
    Read, upsert and overwrite one aggregate table (leaderboard entries or
    split accumulators).  Rows are created lazily on the first delta and
    never deleted.

Invariants enforced:
    - Totals stay inside signed 64-bit bounds.
    - No business validation: a negative delta or a negative resulting
      total is accepted.  Callers decide what a delta means.
"""

from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger_kernel.domain.clock import Clock
from ledger_kernel.exceptions import ValidationError
from ledger_kernel.logging_config import get_logger
from ledger_kernel.services.base import BaseService

logger = get_logger("services.aggregate_store")

INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1


class AggregateStore(BaseService):
    """Running totals for one aggregate model (see LedgerAggregateMixin)."""

    def __init__(self, session: Session, aggregate_model: type, clock: Clock | None = None):
        super().__init__(session, clock)
        self.model = aggregate_model

    def find(self, subject_key: str):
        """ORM row for ``subject_key`` or None."""
        return self.session.execute(
            select(self.model).where(self.model.subject_key == subject_key)
        ).scalar_one_or_none()

    def get(self, subject_key: str) -> int:
        """Current total, 0 when the subject has no row yet."""
        row = self.find(subject_key)
        return row.total if row is not None else 0

    def apply_delta(self, subject_key: str, delta: int, **attributes: Any) -> int:
        """
        Add ``delta`` to the subject's total, creating the row if needed.

        ``attributes`` are written onto the row on insert and on every
        update (last writer wins, e.g. a player's initials).

        Returns:
            The new total.
        """
        now = self._clock.now()
        row = self.find(subject_key)
        if row is None:
            new_total = _checked(subject_key, delta)
            row = self.model(subject_key=subject_key, total=new_total, updated_at=now)
            if hasattr(self.model, "created_at"):
                row.created_at = now
            self.session.add(row)
        else:
            new_total = _checked(subject_key, row.total + delta)
            row.total = new_total
            row.updated_at = now

        for name, value in attributes.items():
            setattr(row, name, value)

        self.session.flush()
        logger.debug(
            "aggregate_delta_applied",
            extra={
                "table": self.model.__tablename__,
                "subject_key": subject_key,
                "delta": delta,
                "total": new_total,
            },
        )
        return new_total

    def overwrite(self, subject_key: str, total: int) -> None:
        """Replace the stored total outright (reconciliation repair)."""
        _checked(subject_key, total)
        row = self.find(subject_key)
        if row is None:
            return
        row.total = total
        row.updated_at = self._clock.now()
        self.session.flush()

    def subject_keys(self) -> list[str]:
        return list(
            self.session.execute(
                select(self.model.subject_key).order_by(self.model.subject_key)
            ).scalars()
        )


def _checked(subject_key: str, total: int) -> int:
    if total < INT64_MIN or total > INT64_MAX:
        raise ValidationError(
            f"Total for {subject_key} out of 64-bit range: {total}",
            field="total",
        )
    return total
