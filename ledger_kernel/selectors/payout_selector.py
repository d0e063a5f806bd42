"""
Module: ledger_kernel.selectors.payout_selector
Responsibility: Payout and split reads -- intent history, counts by status,
    recent donations and the split report (donations vs. owed + sent).

The split report's ``reconciliation_delta`` is zero when every donated
unit is either still owed to a payee or was paid out.
"""

from collections.abc import Iterable
from uuid import UUID

from sqlalchemy import func, select

from ledger_kernel.domain.dtos import (
    LedgerEventRecord,
    PayeeSplitStats,
    PayoutRecord,
    SplitReport,
)
from ledger_kernel.models.donation import Donation, SplitAccumulator
from ledger_kernel.models.payout import Payout, PayoutStatus
from ledger_kernel.selectors.base import BaseSelector


class PayoutSelector(BaseSelector):

    def get(self, payout_id: UUID) -> PayoutRecord | None:
        payout = self.session.get(Payout, payout_id)
        return PayoutRecord.from_model(payout) if payout is not None else None

    def history(self, subject_key: str | None = None, limit: int = 50) -> list[PayoutRecord]:
        """Most recent intents first, optionally for one payee."""
        stmt = select(Payout).order_by(Payout.created_at.desc(), Payout.id).limit(limit)
        if subject_key is not None:
            stmt = stmt.where(Payout.subject_key == subject_key)
        return [PayoutRecord.from_model(p) for p in self.session.execute(stmt).scalars()]

    def pending(self, subject_key: str) -> list[PayoutRecord]:
        rows = self.session.execute(
            select(Payout)
            .where(
                Payout.subject_key == subject_key,
                Payout.status == PayoutStatus.PENDING.value,
            )
            .order_by(Payout.created_at)
        ).scalars()
        return [PayoutRecord.from_model(p) for p in rows]

    def status_counts(self, subject_key: str | None = None) -> dict[str, int]:
        """Count of intents per status; every status is present."""
        stmt = select(Payout.status, func.count()).group_by(Payout.status)
        if subject_key is not None:
            stmt = stmt.where(Payout.subject_key == subject_key)
        counts = {status.value: 0 for status in PayoutStatus}
        counts.update(dict(self.session.execute(stmt).all()))
        return counts

    def recent_donations(self, limit: int = 5) -> list[LedgerEventRecord]:
        rows = self.session.execute(
            select(Donation).order_by(Donation.recorded_at.desc(), Donation.reference_id).limit(limit)
        ).scalars()
        return [LedgerEventRecord.from_model(d) for d in rows]

    def split_report(self, payee_keys: Iterable[str]) -> SplitReport:
        donation_count, donation_total = self.session.execute(
            select(func.count(), func.coalesce(func.sum(Donation.amount), 0)).select_from(Donation)
        ).one()
        return SplitReport(
            donation_count=donation_count,
            donation_total=donation_total,
            payees=tuple(self._payee_stats(key) for key in payee_keys),
        )

    def _payee_stats(self, subject_key: str) -> PayeeSplitStats:
        owed = self.session.execute(
            select(SplitAccumulator.total).where(SplitAccumulator.subject_key == subject_key)
        ).scalar_one_or_none() or 0

        by_status = {
            status: (amount, count)
            for status, amount, count in self.session.execute(
                select(Payout.status, func.sum(Payout.amount), func.count())
                .where(Payout.subject_key == subject_key)
                .group_by(Payout.status)
            ).all()
        }
        sent_amount, sent_count = by_status.get(PayoutStatus.SENT.value, (0, 0))
        pending_amount, pending_count = by_status.get(PayoutStatus.PENDING.value, (0, 0))
        _, failed_count = by_status.get(PayoutStatus.FAILED.value, (0, 0))
        return PayeeSplitStats(
            subject_key=subject_key,
            owed=owed,
            sent_amount=sent_amount,
            sent_count=sent_count,
            pending_amount=pending_amount,
            pending_count=pending_count,
            failed_count=failed_count,
        )
