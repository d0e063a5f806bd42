"""
DTOs -- immutable records crossing the service boundary.

Responsibility:
    Typed, frozen records for every row shape the query layer hands out and
    every outcome a service returns.  Services convert ORM rows with
    ``from_model()`` at the boundary; nothing outside the kernel sees an ORM
    instance.

Architecture position:
    Kernel > Domain -- pure, zero I/O.  ``from_model()`` converters are only
    invoked from services and selectors.

Outcome records:
    Denied tokens, duplicate references and failed payments are *outcomes*,
    not exceptions.  Each has a record here (AppendResult.accepted,
    DonationResult.prevented_duplicate, PaymentResult.ok, ...).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID

if TYPE_CHECKING:
    from ledger_kernel.models.ledger import LedgerEventMixin
    from ledger_kernel.models.payout import Payout


# ---------------------------------------------------------------------------
# Event ledger
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AppendResult:
    """Outcome of appending one event."""

    accepted: bool
    reference_id: str
    subject_key: str
    amount: int
    current_total: int

    @property
    def is_duplicate(self) -> bool:
        return not self.accepted


@dataclass(frozen=True)
class LedgerEventRecord:
    """One event row, any event table."""

    reference_id: str
    subject_key: str
    amount: int
    recorded_at: datetime
    initials: str | None = None

    @classmethod
    def from_model(cls, model: LedgerEventMixin) -> LedgerEventRecord:
        return cls(
            reference_id=model.reference_id,
            subject_key=model.subject_key,
            amount=model.amount,
            recorded_at=model.recorded_at,
            initials=getattr(model, "initials", None),
        )


# ---------------------------------------------------------------------------
# Reconciliation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ReconcileResult:
    """Outcome of reconciling one subject's aggregate against its events."""

    subject_key: str
    was_inconsistent: bool
    old_total: int
    new_total: int
    difference: int


@dataclass(frozen=True)
class IntegrityIssue:
    subject_key: str
    stored_total: int
    computed_total: int
    difference: int
    label: str | None = None


@dataclass(frozen=True)
class IntegrityReport:
    """Read-only drift report over every subject of one ledger."""

    total_subjects: int
    consistent_subjects: int
    inconsistent_subjects: int
    total_discrepancy: int
    issues: tuple[IntegrityIssue, ...] = ()

    @property
    def is_consistent(self) -> bool:
        return self.inconsistent_subjects == 0


# ---------------------------------------------------------------------------
# Leaderboard
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LeaderboardRow:
    subject_key: str
    initials: str
    total: int


@dataclass(frozen=True)
class PlayerDetails:
    """A player's score (total sats lost) and number of games played."""

    subject_key: str
    initials: str
    score: int
    played: int

    @property
    def average_loss(self) -> float:
        return self.score / self.played if self.played > 0 else 0.0


@dataclass(frozen=True)
class LeaderboardUpdateResult:
    message: str
    subject_key: str
    initials: str
    amount: int
    total: int
    reference_id: str
    timestamp: datetime
    is_duplicate: bool = False
    pre_validation: ReconcileResult | None = None
    post_validation: ReconcileResult | None = None

    @property
    def is_consistent(self) -> bool | None:
        if self.post_validation is None:
            return None
        return not self.post_validation.was_inconsistent

    @classmethod
    def from_append(
        cls,
        result: AppendResult,
        initials: str,
        timestamp: datetime,
    ) -> LeaderboardUpdateResult:
        return cls(
            message=(
                "Duplicate request ignored"
                if result.is_duplicate
                else "Leaderboard updated successfully"
            ),
            subject_key=result.subject_key,
            initials=initials,
            amount=result.amount,
            total=result.current_total,
            reference_id=result.reference_id,
            timestamp=timestamp,
            is_duplicate=result.is_duplicate,
        )


@dataclass(frozen=True)
class AmountValidation:
    """Advisory check of a token amount against a player's history."""

    is_valid: bool
    reason: str
    player: PlayerDetails | None = None
    recommendations: tuple[str, ...] = ()


# ---------------------------------------------------------------------------
# Payouts and splits
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PayoutRecord:
    """A payment intent as seen outside the kernel."""

    payout_id: UUID
    subject_key: str
    amount: int
    status: str
    policy: str
    created_at: datetime
    finalized_at: datetime | None = None
    external_reference: str | None = None
    error: str | None = None

    @classmethod
    def from_model(cls, model: Payout) -> PayoutRecord:
        return cls(
            payout_id=model.id,
            subject_key=model.subject_key,
            amount=model.amount,
            status=model.status,
            policy=model.policy,
            created_at=model.created_at,
            finalized_at=model.finalized_at,
            external_reference=model.external_reference,
            error=model.error,
        )


@dataclass(frozen=True)
class SplitAllocation:
    """Share credited to one payee by one donation."""

    subject_key: str
    added: int
    new_owed: int


@dataclass(frozen=True)
class DonationResult:
    """Outcome of recording a donation and dispatching its payouts."""

    donation_source: str
    amount: int
    accepted: bool = True
    donation_recorded: bool = False
    prevented_duplicate: bool = False
    reason: str | None = None
    splits: tuple[SplitAllocation, ...] = ()
    payouts: tuple[PayoutRecord, ...] = ()
    validation: AmountValidation | None = None


# ---------------------------------------------------------------------------
# External collaborators
# ---------------------------------------------------------------------------


class AccessDecisionKind(str, Enum):
    GRANTED = "ACCESS_GRANTED"
    DENIED = "ACCESS_DENIED"


@dataclass(frozen=True)
class AccessDecision:
    """Decision returned by the access gate for a presented token."""

    decision: AccessDecisionKind
    amount: int
    reason: str
    mode: str

    @property
    def granted(self) -> bool:
        return self.decision == AccessDecisionKind.GRANTED and self.amount > 0

    @classmethod
    def denied(cls, reason: str, mode: str, amount: int = 0) -> AccessDecision:
        return cls(
            decision=AccessDecisionKind.DENIED,
            amount=amount,
            reason=reason,
            mode=mode,
        )


@dataclass(frozen=True)
class PaymentResult:
    """Result of one payment attempt."""

    ok: bool
    external_reference: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class PayeeSplitStats:
    subject_key: str
    owed: int
    sent_amount: int
    sent_count: int
    pending_amount: int
    pending_count: int
    failed_count: int


@dataclass(frozen=True)
class SplitReport:
    """Donations vs. owed + paid, per payee."""

    donation_count: int
    donation_total: int
    payees: tuple[PayeeSplitStats, ...] = field(default_factory=tuple)

    @property
    def owed_total(self) -> int:
        return sum(p.owed for p in self.payees)

    @property
    def sent_total(self) -> int:
        return sum(p.sent_amount for p in self.payees)

    @property
    def reconciliation_delta(self) -> int:
        """Donations - (owed + sent); zero when every unit is accounted for."""
        return self.donation_total - (self.owed_total + self.sent_total)
