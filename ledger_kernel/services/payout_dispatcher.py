"""
PayoutDispatcher -- turns a payee's owed balance into payment attempts.

Responsibility:
    Size payouts with one of two policies (see domain/payout_sizing.py),
    record each as a PENDING intent, call the payment collaborator outside
    any transaction, and finalize the intent by its id.

Lifecycle of one intent (three separate steps):
    1. plan      -- transaction: insert PENDING row(s); aggregate untouched.
    2. pay       -- no transaction: ``PaymentClient.pay(...)``.
    3. finalize  -- transaction: PENDING -> SENT (aggregate -= amount)
                    or PENDING -> FAILED (aggregate untouched).

Invariants enforced:
    - An intent is finalized at most once; a second finalization raises
      PayoutAlreadyFinalizedError and mutates nothing.
    - Finalization is addressed by intent id, never by (payee, amount).
    - Plan + settle for one payee is serialized by an in-process
      per-payee lock, shared by the post-donation trigger and the
      periodic worker, so the two cannot over-commit the same surplus.

Failure modes:
    - Any collaborator failure (result ``ok=False``, timeout, exception)
      finalizes the intent FAILED; the owed amount stays available for a
      later attempt.  No retries happen here.
"""

import threading
from collections.abc import Iterator
from contextlib import contextmanager
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ledger_kernel.db.engine import LedgerStore
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dtos import PaymentResult, PayoutRecord
from ledger_kernel.domain.payout_sizing import drain_amount, plan_chunks
from ledger_kernel.exceptions import PayoutAlreadyFinalizedError, PayoutNotFoundError
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.donation import SplitAccumulator
from ledger_kernel.models.payout import Payout, PayoutPolicy, PayoutStatus
from ledger_kernel.services.aggregate_store import AggregateStore

logger = get_logger("services.payout_dispatcher")

DEFAULT_PAYMENT_TIMEOUT = 30.0


class KeyedLock:
    """One reentrant lock per key, created on demand."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.RLock] = {}

    def _lock_for(self, key: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.RLock()
            return lock

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        lock = self._lock_for(key)
        with lock:
            yield


class PayoutDispatcher:
    """
    Threshold-triggered payout dispatch for one aggregate table.

    Contract:
        ``dispatch_chunked`` and ``dispatch_drain`` return the finalized
        intents as PayoutRecords.  ``finalize_sent`` / ``finalize_failed`` /
        ``cancel`` may also be called directly with an intent id.

    Non-goals:
        - Does NOT retry failed payments.
        - Does NOT cross process boundaries; the per-payee lock is
          in-process only.
    """

    def __init__(
        self,
        store: LedgerStore,
        payment_client,
        clock: Clock | None = None,
        payment_timeout: float = DEFAULT_PAYMENT_TIMEOUT,
        aggregate_model: type = SplitAccumulator,
    ):
        self._store = store
        self._payment_client = payment_client
        self._clock = clock or SystemClock()
        self._payment_timeout = payment_timeout
        self._aggregate_model = aggregate_model
        self._locks = KeyedLock()

    # ------------------------------------------------------------------
    # Planning (inside the caller's transaction)
    # ------------------------------------------------------------------

    def owed(self, session: Session, payee_key: str) -> int:
        return AggregateStore(session, self._aggregate_model, self._clock).get(payee_key)

    def pending_sum(self, session: Session, payee_key: str) -> int:
        return session.execute(
            select(func.coalesce(func.sum(Payout.amount), 0)).where(
                Payout.subject_key == payee_key,
                Payout.status == PayoutStatus.PENDING.value,
            )
        ).scalar_one()

    def plan_chunked(self, session: Session, payee_key: str, floor: int) -> list[Payout]:
        """
        One PENDING intent of exactly ``floor`` per whole floor in the
        stored total.  Pending intents are not subtracted.
        """
        total = self.owed(session, payee_key)
        return [
            self._new_intent(session, payee_key, amount, PayoutPolicy.CHUNKED)
            for amount in plan_chunks(total, floor)
        ]

    def plan_drain(self, session: Session, payee_key: str, minimum: int) -> Payout | None:
        """At most one PENDING intent for everything owed and not pending."""
        total = self.owed(session, payee_key)
        pending = self.pending_sum(session, payee_key)
        amount = drain_amount(total, pending, minimum)
        if amount is None:
            logger.debug(
                "drain_below_minimum",
                extra={"owed": total, "pending": pending, "minimum": minimum},
            )
            return None
        return self._new_intent(session, payee_key, amount, PayoutPolicy.DRAIN)

    def _new_intent(
        self,
        session: Session,
        payee_key: str,
        amount: int,
        policy: PayoutPolicy,
    ) -> Payout:
        payout = Payout(
            subject_key=payee_key,
            amount=amount,
            status=PayoutStatus.PENDING.value,
            policy=policy.value,
            created_at=self._clock.now(),
        )
        session.add(payout)
        session.flush()
        logger.info(
            "payout_intent_created",
            extra={"payout_id": payout.id, "amount": amount, "policy": policy.value},
        )
        return payout

    # ------------------------------------------------------------------
    # Dispatch (plan, pay, finalize)
    # ------------------------------------------------------------------

    def dispatch_chunked(
        self,
        payee_key: str,
        floor: int,
        destination: str | None = None,
        comment: str | None = None,
    ) -> list[PayoutRecord]:
        with self._locks.hold(payee_key), LogContext.bind(subject_key=payee_key, trigger="chunked"):
            with self._store.session_scope("plan_chunked_payouts") as session:
                intents = [
                    PayoutRecord.from_model(p)
                    for p in self.plan_chunked(session, payee_key, floor)
                ]
            return [self._settle(intent, destination, comment) for intent in intents]

    def dispatch_drain(
        self,
        payee_key: str,
        minimum: int,
        destination: str | None = None,
        comment: str | None = None,
    ) -> PayoutRecord | None:
        with self._locks.hold(payee_key), LogContext.bind(subject_key=payee_key, trigger="drain"):
            with self._store.session_scope("plan_drain_payout") as session:
                payout = self.plan_drain(session, payee_key, minimum)
                intent = PayoutRecord.from_model(payout) if payout is not None else None
            if intent is None:
                return None
            return self._settle(intent, destination, comment)

    def _settle(
        self,
        intent: PayoutRecord,
        destination: str | None,
        comment: str | None,
    ) -> PayoutRecord:
        with LogContext.bind(payout_id=str(intent.payout_id)):
            result = self._pay(intent, destination, comment)
            if result.ok:
                return self.finalize_sent(intent.payout_id, result.external_reference)
            return self.finalize_failed(intent.payout_id, result.error or "payment_failed")

    def _pay(
        self,
        intent: PayoutRecord,
        destination: str | None,
        comment: str | None,
    ) -> PaymentResult:
        try:
            return self._payment_client.pay(
                intent.subject_key,
                intent.amount,
                destination,
                comment or f"Auto payout {intent.amount} sats",
                timeout=self._payment_timeout,
            )
        except Exception as exc:
            # Collaborator boundary: any failure becomes a FAILED intent
            logger.warning("payment_call_raised", exc_info=True)
            return PaymentResult(ok=False, error=f"{type(exc).__name__}: {exc}")

    # ------------------------------------------------------------------
    # Finalization (by intent id)
    # ------------------------------------------------------------------

    def finalize_sent(self, payout_id: UUID, external_reference: str | None = None) -> PayoutRecord:
        """PENDING -> SENT and decrement the payee's aggregate by the amount."""
        with self._store.session_scope("finalize_payout_sent") as session:
            payout = self._load_for_transition(session, payout_id, PayoutStatus.SENT)
            payout.status = PayoutStatus.SENT.value
            payout.finalized_at = self._clock.now()
            payout.external_reference = external_reference
            AggregateStore(session, self._aggregate_model, self._clock).apply_delta(
                payout.subject_key, -payout.amount
            )
            record = PayoutRecord.from_model(payout)
        logger.info(
            "payout_sent",
            extra={
                "payout_id": payout_id,
                "amount": record.amount,
                "external_reference": external_reference,
            },
        )
        return record

    def finalize_failed(self, payout_id: UUID, error: str) -> PayoutRecord:
        """PENDING -> FAILED; the owed amount stays in place."""
        with self._store.session_scope("finalize_payout_failed") as session:
            payout = self._load_for_transition(session, payout_id, PayoutStatus.FAILED)
            payout.status = PayoutStatus.FAILED.value
            payout.finalized_at = self._clock.now()
            payout.error = error
            session.flush()
            record = PayoutRecord.from_model(payout)
        logger.warning(
            "payout_failed",
            extra={"payout_id": payout_id, "amount": record.amount, "error": error},
        )
        return record

    def cancel(self, payout_id: UUID, reason: str = "canceled") -> PayoutRecord:
        """Administrative PENDING -> CANCELED; the owed amount stays in place."""
        with self._store.session_scope("cancel_payout") as session:
            payout = self._load_for_transition(session, payout_id, PayoutStatus.CANCELED)
            payout.status = PayoutStatus.CANCELED.value
            payout.finalized_at = self._clock.now()
            payout.error = reason
            session.flush()
            record = PayoutRecord.from_model(payout)
        logger.info("payout_canceled", extra={"payout_id": payout_id, "reason": reason})
        return record

    def _load_for_transition(
        self,
        session: Session,
        payout_id: UUID,
        target: PayoutStatus,
    ) -> Payout:
        payout = session.get(Payout, payout_id)
        if payout is None:
            raise PayoutNotFoundError(str(payout_id))
        if not payout.validate_transition(target):
            raise PayoutAlreadyFinalizedError(str(payout_id), payout.status)
        return payout
