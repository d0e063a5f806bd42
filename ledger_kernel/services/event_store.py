"""
EventStore -- idempotent, append-only event ledger with a derived aggregate.

Responsibility:
    Record one event per caller-supplied reference id and, in the same
    transaction, add its amount to the subject's aggregate.  Re-submitting
    a reference id is an idempotent no-op that reports the current total.

Architecture position:
    Kernel > Services.  Used by LeaderboardService (game results) and
    DonationService (donations, split shares).

Invariants enforced:
    - Idempotency: UNIQUE ``reference_id`` plus an existence check; a
      concurrent duplicate that slips past the check fails inside a
      SAVEPOINT and degrades to the duplicate outcome.
    - Atomicity: event insert and aggregate delta share the caller's
      transaction (flush only, never commit).
    - Append-only: event rows are guarded by a before_update listener.

Failure modes:
    - ValidationError (or a subclass) for a non-positive / non-integer
      amount, an empty reference id or an empty subject key.  Nothing is
      written.
"""

from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ledger_kernel.domain.clock import Clock
from ledger_kernel.domain.dtos import AppendResult, LedgerEventRecord
from ledger_kernel.exceptions import (
    InvalidAmountError,
    InvalidReferenceError,
    InvalidSubjectKeyError,
)
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.leaderboard import INITIALS_LENGTH, LeaderboardUpdate
from ledger_kernel.services.aggregate_store import AggregateStore
from ledger_kernel.services.base import BaseService

logger = get_logger("services.event_store")


def validate_amount(amount: Any) -> int:
    """Positive int, bools excluded."""
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidAmountError(amount)
    return amount


class EventStore(BaseService):
    """
    Append-only event table bound to its aggregate.

    Contract:
        ``append()`` returns an ``AppendResult``; ``accepted=False`` means
        the reference id was already recorded and nothing changed.
        Without an aggregate store (donations), ``current_total`` is the
        event sum for the subject.

    Non-goals:
        - Does NOT commit.
        - Does NOT reconcile; see ReconciliationService.
    """

    def __init__(
        self,
        session: Session,
        event_model: type,
        aggregates: AggregateStore | None,
        clock: Clock | None = None,
    ):
        super().__init__(session, clock)
        self.model = event_model
        self.aggregates = aggregates

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def append(
        self,
        reference_id: str,
        subject_key: str,
        amount: int,
        **attributes: Any,
    ) -> AppendResult:
        """
        Record an event and update the subject's aggregate.

        ``attributes`` are extra event columns (e.g. ``initials``,
        ``donation_reference``).

        Raises:
            ValidationError: input rejected before any write.
        """
        self._validate(reference_id, subject_key, amount, attributes)

        with LogContext.bind(reference_id=reference_id, subject_key=subject_key):
            existing = self.find(reference_id)
            if existing is not None:
                return self._duplicate(existing)

            event = self.model(
                reference_id=reference_id,
                subject_key=subject_key,
                amount=amount,
                recorded_at=self._clock.now(),
                **attributes,
            )
            try:
                with self.session.begin_nested():
                    self.session.add(event)
                    self.session.flush()
            except IntegrityError:
                # Another writer recorded the same reference id first
                logger.warning(
                    "concurrent_event_insert_conflict",
                    extra={"table": self.model.__tablename__},
                )
                existing = self.find(reference_id)
                if existing is None:
                    raise
                return self._duplicate(existing)

            total = self._apply(subject_key, amount, attributes)
            logger.info(
                "event_appended",
                extra={
                    "table": self.model.__tablename__,
                    "amount": amount,
                    "total": total,
                },
            )
            return AppendResult(
                accepted=True,
                reference_id=reference_id,
                subject_key=subject_key,
                amount=amount,
                current_total=total,
            )

    def _apply(self, subject_key: str, amount: int, attributes: dict[str, Any]) -> int:
        if self.aggregates is None:
            return self.sum_for(subject_key)
        return self.aggregates.apply_delta(
            subject_key,
            amount,
            **self._aggregate_attributes(attributes),
        )

    def _current_total(self, subject_key: str) -> int:
        if self.aggregates is None:
            return self.sum_for(subject_key)
        return self.aggregates.get(subject_key)

    def _duplicate(self, existing) -> AppendResult:
        total = self._current_total(existing.subject_key)
        logger.info(
            "event_duplicate",
            extra={"table": self.model.__tablename__, "total": total},
        )
        return AppendResult(
            accepted=False,
            reference_id=existing.reference_id,
            subject_key=existing.subject_key,
            amount=existing.amount,
            current_total=total,
        )

    def _validate(
        self,
        reference_id: str,
        subject_key: str,
        amount: int,
        attributes: dict[str, Any],
    ) -> None:
        if not isinstance(reference_id, str) or not reference_id.strip():
            raise InvalidReferenceError(reference_id)
        if not isinstance(subject_key, str) or not subject_key.strip():
            raise InvalidSubjectKeyError("subject_key is required")
        validate_amount(amount)

    def _aggregate_attributes(self, attributes: dict[str, Any]) -> dict[str, Any]:
        """Event attributes that are copied onto the aggregate row."""
        return {}

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def find(self, reference_id: str):
        return self.session.execute(
            select(self.model).where(self.model.reference_id == reference_id)
        ).scalar_one_or_none()

    def exists(self, reference_id: str) -> bool:
        return self.find(reference_id) is not None

    def history(self, subject_key: str) -> list[LedgerEventRecord]:
        """Every event for a subject, newest first."""
        rows = self.session.execute(
            select(self.model)
            .where(self.model.subject_key == subject_key)
            .order_by(self.model.recorded_at.desc(), self.model.reference_id)
        ).scalars()
        return [LedgerEventRecord.from_model(r) for r in rows]

    def recent(self, limit: int = 50) -> list[LedgerEventRecord]:
        rows = self.session.execute(
            select(self.model)
            .order_by(self.model.recorded_at.desc(), self.model.reference_id)
            .limit(limit)
        ).scalars()
        return [LedgerEventRecord.from_model(r) for r in rows]

    def sum_for(self, subject_key: str) -> int:
        return self.session.execute(
            select(func.coalesce(func.sum(self.model.amount), 0)).where(
                self.model.subject_key == subject_key
            )
        ).scalar_one()

    def count_for(self, subject_key: str) -> int:
        return self.session.execute(
            select(func.count()).select_from(self.model).where(
                self.model.subject_key == subject_key
            )
        ).scalar_one()


class LeaderboardEventStore(EventStore):
    """Game-result ledger: events and aggregate both carry the initials."""

    def __init__(
        self,
        session: Session,
        aggregates: AggregateStore,
        clock: Clock | None = None,
    ):
        super().__init__(session, LeaderboardUpdate, aggregates, clock)

    def _validate(self, reference_id, subject_key, amount, attributes):
        super()._validate(reference_id, subject_key, amount, attributes)
        initials = attributes.get("initials")
        if not isinstance(initials, str) or len(initials) != INITIALS_LENGTH:
            raise InvalidSubjectKeyError(
                f"Initials must be exactly {INITIALS_LENGTH} characters",
                field="initials",
            )
        attributes["initials"] = initials.upper()

    def _aggregate_attributes(self, attributes):
        return {"initials": attributes["initials"]}
