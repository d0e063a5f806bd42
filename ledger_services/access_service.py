"""
AccessService -- handle a presented token end to end.

Responsibility:
    Ask the access gate for a decision, remember that decision per token
    fingerprint in ``access_requests``, and on a grant hand the donation
    off to a background executor.  The caller gets the decision at once;
    recording and payouts happen afterwards.

Failure modes:
    - A gate exception becomes ``ACCESS_DENIED`` with ``mode="error"``.
    - Failing to persist the access request is logged, never raised.
    - Background recording errors are logged; they never reach the caller.
"""

from __future__ import annotations

from concurrent.futures import Executor, Future, ThreadPoolExecutor

from sqlalchemy import select

from ledger_config.schema import DEFAULT_MIN_AMOUNT, AccessGateConfig
from ledger_kernel.db.engine import LedgerStore
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dtos import AccessDecision, DonationResult
from ledger_kernel.exceptions import StorageFailureError
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.access_request import AccessRequest
from ledger_kernel.services.donation_service import DonationService
from ledger_kernel.utils.hashing import token_fingerprint
from ledger_services.access_gate import AccessGate, build_access_gate

logger = get_logger("services.access")


class AccessService:
    """
    Contract:
        ``handle()`` always returns an AccessDecision.  When granted with a
        positive amount, ``DonationService.record_from_amount`` is submitted
        to the executor (fire-and-forget).

    Non-goals:
        - Does NOT wait for the donation to be recorded.
    """

    def __init__(
        self,
        store: LedgerStore,
        gate: AccessGate,
        donation_service: DonationService,
        executor: Executor | None = None,
        clock: Clock | None = None,
        min_amount: int = DEFAULT_MIN_AMOUNT,
    ):
        self._store = store
        self._gate = gate
        self._min_amount = min_amount
        self._donations = donation_service
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=2,
            thread_name_prefix="donation-recorder",
        )
        self._clock = clock or SystemClock()

    @classmethod
    def from_config(
        cls,
        store: LedgerStore,
        cfg: AccessGateConfig,
        donation_service: DonationService,
        executor: Executor | None = None,
        clock: Clock | None = None,
    ) -> AccessService:
        """Build the gate selected by ``cfg`` and use its ``min_amount``."""
        return cls(
            store,
            build_access_gate(cfg, clock=clock),
            donation_service,
            executor=executor,
            clock=clock,
            min_amount=cfg.min_amount,
        )

    def handle(self, encoded_token: str, min_amount: int | None = None) -> AccessDecision:
        if min_amount is None:
            min_amount = self._min_amount
        fingerprint = token_fingerprint(encoded_token or "")
        with LogContext.bind(correlation_id=fingerprint):
            try:
                decision = self._gate.redeem(encoded_token, min_amount)
            except Exception as exc:
                logger.error("access_gate_failed", exc_info=True)
                decision = AccessDecision.denied(str(exc) or type(exc).__name__, "error")

            self._remember(fingerprint, decision)
            logger.info(
                "access_decision",
                extra={
                    "decision": decision.decision.value,
                    "amount": decision.amount,
                    "reason": decision.reason,
                    "mode": decision.mode,
                },
            )

            if decision.granted:
                self._submit(encoded_token, decision.amount, fingerprint)
            return decision

    def close(self, wait: bool = True) -> None:
        """Shut down the executor if this service created it."""
        if self._owns_executor:
            self._executor.shutdown(wait=wait)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _remember(self, fingerprint: str, decision: AccessDecision) -> None:
        now = self._clock.now()
        try:
            with self._store.session_scope("record_access_request") as session:
                row = session.execute(
                    select(AccessRequest).where(AccessRequest.reference_id == fingerprint)
                ).scalar_one_or_none()
                if row is None:
                    session.add(
                        AccessRequest(
                            reference_id=fingerprint,
                            decision=decision.decision.value,
                            amount=decision.amount,
                            reason=decision.reason,
                            attempts=1,
                            created_at=now,
                            updated_at=now,
                        )
                    )
                else:
                    row.decision = decision.decision.value
                    row.amount = decision.amount
                    row.reason = decision.reason
                    row.attempts = row.attempts + 1
                    row.updated_at = now
        except StorageFailureError:
            logger.error("access_request_not_recorded", exc_info=True)

    def _submit(self, encoded_token: str, amount: int, fingerprint: str) -> Future:
        context = LogContext.get_all()

        def _record() -> DonationResult | None:
            with LogContext.bind(**context):
                try:
                    return self._donations.record_from_amount(encoded_token, amount)
                except Exception:
                    logger.exception(
                        "background_donation_failed",
                        extra={"amount": amount},
                    )
                    return None

        logger.debug("background_donation_submitted", extra={"reference_id": fingerprint})
        return self._executor.submit(_record)
