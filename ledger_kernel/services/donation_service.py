"""
DonationService -- record redeemed tokens and split them between two payees.

Responsibility:
    Turn a redeemed token (or its known amount) into one donation event,
    two split-share events and the matching accumulator credits, then run
    the chunked payout policy for each payee that was credited.

Flow of ``record_from_amount``:
    1. transaction   -- donation event keyed by the token fingerprint; on
                        duplicate stop with ``prevented_duplicate=True``.
                        Otherwise one split-share event per payee with a
                        positive share (ceil half to the first payee).
    2. after commit  -- ``PayoutDispatcher.dispatch_chunked`` per credited
                        payee, each intent in its own transaction.

Invariants enforced:
    - A token fingerprint is recorded at most once; a duplicate changes
      nothing and triggers no payouts.
    - Donation and both credits commit together or not at all.
    - Payout trouble never un-records a donation: the owed balance stays
      and the next trigger picks it up.
"""

from dataclasses import replace

from ledger_kernel.db.engine import LedgerStore
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dtos import (
    AmountValidation,
    DonationResult,
    PayoutRecord,
    SplitAllocation,
)
from ledger_kernel.domain.payout_sizing import split_amount
from ledger_kernel.exceptions import (
    ConfigurationError,
    ExternalUnavailableError,
    LedgerKernelError,
    StorageFailureError,
    ValidationError,
)
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.donation import Donation, SplitAccumulator, SplitShare
from ledger_kernel.services.aggregate_store import AggregateStore
from ledger_kernel.services.event_store import EventStore, validate_amount
from ledger_kernel.services.payout_dispatcher import PayoutDispatcher
from ledger_kernel.utils.hashing import token_fingerprint
from ledger_kernel.utils.idempotency import split_share_reference

logger = get_logger("services.donation")

DEFAULT_MIN_AMOUNT = 21
DUPLICATE_REASON = "Duplicate token already processed"


class DonationService:
    """
    Contract:
        ``record_from_amount`` / ``record_fingerprint`` record an already
        redeemed amount.  ``redeem_and_record`` redeems through the access
        gate first and optionally attaches an advisory amount check.

    Non-goals:
        - Does NOT retry failed payouts.
        - Does NOT block recording on a failed advisory validation.
    """

    def __init__(
        self,
        store: LedgerStore,
        dispatcher: PayoutDispatcher,
        splits_config,
        clock: Clock | None = None,
        access_gate=None,
        leaderboard=None,
        min_amount: int = DEFAULT_MIN_AMOUNT,
    ):
        first, second = splits_config.payees
        if first.subject_key == second.subject_key:
            raise ConfigurationError("splits.payees", "payees must be distinct")
        self._store = store
        self._dispatcher = dispatcher
        self._splits = splits_config
        self._clock = clock or SystemClock()
        self._gate = access_gate
        self._leaderboard = leaderboard
        self._min_amount = min_amount

    # ------------------------------------------------------------------
    # Record
    # ------------------------------------------------------------------

    def record_from_amount(self, encoded_token: str, amount: int) -> DonationResult:
        """Record a token whose amount is already known (no gate call)."""
        if not isinstance(encoded_token, str) or not encoded_token:
            raise ValidationError("encoded_token is required", field="encoded_token")
        return self.record_fingerprint(token_fingerprint(encoded_token), amount)

    def record_fingerprint(self, fingerprint: str, amount: int) -> DonationResult:
        validate_amount(amount)
        with LogContext.bind(correlation_id=fingerprint, reference_id=fingerprint):
            splits = self._record(fingerprint, amount)
            if splits is None:
                logger.info("donation_duplicate", extra={"amount": amount})
                return DonationResult(
                    donation_source=fingerprint,
                    amount=amount,
                    accepted=False,
                    reason=DUPLICATE_REASON,
                    prevented_duplicate=True,
                )

            logger.info(
                "donation_recorded",
                extra={
                    "amount": amount,
                    "splits": {s.subject_key: s.added for s in splits},
                },
            )
            payouts: list[PayoutRecord] = []
            for allocation in splits:
                payouts.extend(self._dispatch(allocation.subject_key))

            return DonationResult(
                donation_source=fingerprint,
                amount=amount,
                donation_recorded=True,
                splits=tuple(splits),
                payouts=tuple(payouts),
            )

    def _record(self, fingerprint: str, amount: int) -> list[SplitAllocation] | None:
        """Donation + split shares in one transaction; None on duplicate."""
        with self._store.session_scope("record_donation") as session:
            donations = EventStore(session, Donation, None, self._clock)
            if not donations.append(fingerprint, fingerprint, amount).accepted:
                return None

            shares = EventStore(
                session,
                SplitShare,
                AggregateStore(session, SplitAccumulator, self._clock),
                self._clock,
            )
            allocations: list[SplitAllocation] = []
            for payee, share in zip(self._splits.payees, split_amount(amount)):
                if share <= 0:
                    continue
                result = shares.append(
                    split_share_reference(fingerprint, payee.subject_key),
                    payee.subject_key,
                    share,
                    donation_reference=fingerprint,
                )
                allocations.append(
                    SplitAllocation(
                        subject_key=payee.subject_key,
                        added=share,
                        new_owed=result.current_total,
                    )
                )
            return allocations

    def _dispatch(self, payee_key: str) -> list[PayoutRecord]:
        payee = self._splits.payee(payee_key)
        try:
            return self._dispatcher.dispatch_chunked(
                payee_key,
                self._splits.threshold,
                destination=payee.lightning_address if payee else None,
                comment=payee.comment if payee else None,
            )
        except StorageFailureError:
            # Donation is committed; the owed balance waits for the next trigger
            logger.error(
                "donation_payout_dispatch_failed",
                extra={"subject_key": payee_key},
                exc_info=True,
            )
            return []

    # ------------------------------------------------------------------
    # Redeem, validate, record
    # ------------------------------------------------------------------

    def redeem_and_record(
        self,
        encoded_token: str,
        min_amount: int | None = None,
        expected_score: int | None = None,
        player_key: str | None = None,
    ) -> DonationResult:
        """
        Redeem through the access gate, then record the granted amount.

        A denied token yields ``accepted=False`` and records nothing.  With
        ``player_key`` the granted amount is checked against the player's
        history; the verdict is attached but never blocks recording.
        """
        if self._gate is None:
            raise ConfigurationError("access_gate", "no access gate configured")
        if min_amount is None:
            min_amount = self._min_amount

        try:
            decision = self._gate.redeem(encoded_token, min_amount)
        except ExternalUnavailableError as exc:
            logger.warning("access_gate_unavailable", exc_info=True)
            return _rejected(0, exc.reason)

        if not decision.granted:
            logger.info(
                "donation_token_rejected",
                extra={"reason": decision.reason, "mode": decision.mode},
            )
            return _rejected(decision.amount, decision.reason)

        validation = self._validate(player_key, decision.amount, expected_score)
        if not validation.is_valid:
            logger.warning(
                "donation_validation_flagged",
                extra={"reason": validation.reason},
            )

        result = self.record_from_amount(encoded_token, decision.amount)
        return replace(result, validation=validation)

    def _validate(
        self,
        player_key: str | None,
        amount: int,
        expected_score: int | None,
    ) -> AmountValidation:
        if not player_key or self._leaderboard is None:
            return AmountValidation(is_valid=True, reason="No validation performed")
        try:
            return self._leaderboard.validate_token_amount(player_key, amount, expected_score)
        except LedgerKernelError as exc:
            logger.warning("donation_validation_error", exc_info=True)
            return AmountValidation(
                is_valid=False,
                reason=f"Validation error: {exc}",
                recommendations=("Check system logs for validation errors",),
            )


def _rejected(amount: int, reason: str) -> DonationResult:
    return DonationResult(
        donation_source="",
        amount=amount,
        accepted=False,
        reason=reason,
        validation=AmountValidation(
            is_valid=False,
            reason="Cashu token rejected",
            recommendations=("Ensure token is valid and meets minimum threshold",),
        ),
    )
