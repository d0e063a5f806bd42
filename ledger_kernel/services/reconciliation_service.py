"""
ReconciliationService -- detect and repair aggregate drift.

Responsibility:
    Recompute a subject's total from its events and, when the stored
    aggregate disagrees, overwrite it.  Also produce a read-only integrity
    report over every subject of one ledger.

Ledger bindings:
    LEADERBOARD  total == SUM(leaderboard_updates.amount)
    SPLITS       total == SUM(split_shares.amount)
                          - SUM(payouts.amount WHERE status = 'sent')

    A sent payout is the settlement event of the split ledger, so the
    split accumulator is as derivable as the leaderboard total.

Failure modes:
    - Drift is an outcome, not an error.  It is logged at WARNING with a
      ConsistencyDriftError attached and repaired by ``reconcile()``.
    - Not linearizable against concurrent appends; a later reconcile
      repairs anything a race reintroduces.
"""

from dataclasses import dataclass

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ledger_kernel.domain.clock import Clock
from ledger_kernel.domain.dtos import IntegrityIssue, IntegrityReport, ReconcileResult
from ledger_kernel.exceptions import ConsistencyDriftError
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.donation import SplitAccumulator, SplitShare
from ledger_kernel.models.leaderboard import LeaderboardEntry, LeaderboardUpdate
from ledger_kernel.models.payout import Payout, PayoutStatus
from ledger_kernel.services.aggregate_store import AggregateStore
from ledger_kernel.services.base import BaseService

logger = get_logger("services.reconciliation")


@dataclass(frozen=True)
class LedgerBinding:
    """Which event table feeds which aggregate table."""

    name: str
    event_model: type
    aggregate_model: type
    settles_with_payouts: bool = False
    label_attribute: str | None = None


LEADERBOARD = LedgerBinding(
    name="leaderboard",
    event_model=LeaderboardUpdate,
    aggregate_model=LeaderboardEntry,
    label_attribute="initials",
)

SPLITS = LedgerBinding(
    name="splits",
    event_model=SplitShare,
    aggregate_model=SplitAccumulator,
    settles_with_payouts=True,
)


class ReconciliationService(BaseService):
    """Recompute-and-repair for one ledger binding."""

    def __init__(self, session: Session, binding: LedgerBinding, clock: Clock | None = None):
        super().__init__(session, clock)
        self.binding = binding
        self.aggregates = AggregateStore(session, binding.aggregate_model, self._clock)

    def computed_total(self, subject_key: str) -> int:
        """Total implied by the event history."""
        event_model = self.binding.event_model
        total = self.session.execute(
            select(func.coalesce(func.sum(event_model.amount), 0)).where(
                event_model.subject_key == subject_key
            )
        ).scalar_one()
        if self.binding.settles_with_payouts:
            total -= self.session.execute(
                select(func.coalesce(func.sum(Payout.amount), 0)).where(
                    Payout.subject_key == subject_key,
                    Payout.status == PayoutStatus.SENT.value,
                )
            ).scalar_one()
        return total

    def reconcile(self, subject_key: str) -> ReconcileResult:
        """
        Compare stored and recomputed totals; overwrite on mismatch.

        A subject with no aggregate row is reported consistent with zero
        totals and nothing is written.
        """
        row = self.aggregates.find(subject_key)
        if row is None:
            return ReconcileResult(
                subject_key=subject_key,
                was_inconsistent=False,
                old_total=0,
                new_total=0,
                difference=0,
            )

        stored = row.total
        computed = self.computed_total(subject_key)
        if stored == computed:
            return ReconcileResult(
                subject_key=subject_key,
                was_inconsistent=False,
                old_total=stored,
                new_total=stored,
                difference=0,
            )

        drift = ConsistencyDriftError(subject_key, stored, computed)
        with LogContext.bind(subject_key=subject_key):
            logger.warning(
                "aggregate_drift_repaired",
                extra={"ledger": self.binding.name},
                exc_info=drift,
            )
        self.aggregates.overwrite(subject_key, computed)
        return ReconcileResult(
            subject_key=subject_key,
            was_inconsistent=True,
            old_total=stored,
            new_total=computed,
            difference=drift.difference,
        )

    def reconcile_all(self) -> list[ReconcileResult]:
        return [self.reconcile(key) for key in self.aggregates.subject_keys()]

    def integrity_check(self) -> IntegrityReport:
        """Read-only drift report across every aggregate row."""
        binding = self.binding
        event_model = binding.event_model
        aggregate_model = binding.aggregate_model

        event_sums = dict(
            self.session.execute(
                select(event_model.subject_key, func.sum(event_model.amount))
                .group_by(event_model.subject_key)
            ).all()
        )
        settled: dict[str, int] = {}
        if binding.settles_with_payouts:
            settled = dict(
                self.session.execute(
                    select(Payout.subject_key, func.sum(Payout.amount))
                    .where(Payout.status == PayoutStatus.SENT.value)
                    .group_by(Payout.subject_key)
                ).all()
            )

        rows = self.session.execute(
            select(aggregate_model).order_by(aggregate_model.subject_key)
        ).scalars().all()

        issues: list[IntegrityIssue] = []
        for row in rows:
            computed = event_sums.get(row.subject_key, 0) - settled.get(row.subject_key, 0)
            if computed != row.total:
                label = (
                    getattr(row, binding.label_attribute)
                    if binding.label_attribute
                    else None
                )
                issues.append(
                    IntegrityIssue(
                        subject_key=row.subject_key,
                        stored_total=row.total,
                        computed_total=computed,
                        difference=computed - row.total,
                        label=label,
                    )
                )

        report = IntegrityReport(
            total_subjects=len(rows),
            consistent_subjects=len(rows) - len(issues),
            inconsistent_subjects=len(issues),
            total_discrepancy=sum(abs(i.difference) for i in issues),
            issues=tuple(issues),
        )
        logger.info(
            "integrity_check_completed",
            extra={
                "ledger": binding.name,
                "total_subjects": report.total_subjects,
                "inconsistent_subjects": report.inconsistent_subjects,
            },
        )
        return report
