"""
PayoutWorker -- in-process polling loop for the drain payout policy.

Contract:
    Every ``interval_seconds`` the worker walks the configured payees and
    asks the dispatcher to drain each one (``dispatch_drain``): if
    ``owed - pending`` reaches the entry's ``min_amount``, one payment for
    the whole available amount is attempted.

Invariants enforced:
    - Cycles never overlap: a tick that finds a cycle in progress returns
      immediately.
    - Invalid entries (no payee, no destination, ``min_amount <= 0``) are
      skipped with a warning.
    - One payee's failure is logged and the cycle continues.
    - Graceful shutdown: the stop signal is checked between payees.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass

from ledger_config.schema import PayoutEntryConfig, PayoutWorkerConfig
from ledger_kernel.domain.dtos import PayoutRecord
from ledger_kernel.logging_config import get_logger
from ledger_kernel.services.payout_dispatcher import PayoutDispatcher

logger = get_logger("batch.payout_worker")


@dataclass(frozen=True)
class CycleResult:
    """What one cycle did."""

    ran: bool
    payouts: tuple[PayoutRecord, ...] = ()
    skipped: tuple[str, ...] = ()
    errors: tuple[str, ...] = ()


class PayoutWorker:
    """In-process periodic drain of configured payees.

    Non-goals:
        - NOT a distributed scheduler; one worker per process.
        - Does NOT retry within a cycle; the next cycle sees the same
          undiminished balance.
    """

    def __init__(self, dispatcher: PayoutDispatcher, config: PayoutWorkerConfig):
        self._dispatcher = dispatcher
        self._config = config
        self._cycle_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def tick(self) -> CycleResult:
        """Run one cycle unless one is already running (public for testing)."""
        if not self._cycle_lock.acquire(blocking=False):
            logger.debug("payout_cycle_already_running")
            return CycleResult(ran=False)
        try:
            return self._run_cycle()
        finally:
            self._cycle_lock.release()

    def start(self) -> None:
        """Start the worker in a background daemon thread."""
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="payout-worker",
            daemon=True,
        )
        self._thread.start()
        logger.info(
            "payout_worker_started",
            extra={
                "interval_seconds": self._config.interval_seconds,
                "entries": len(self._config.entries),
            },
        )

    def stop(self, timeout: float = 30.0) -> None:
        """Signal stop and wait for the current cycle to finish."""
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("payout_worker_stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception:
                logger.exception("payout_cycle_exception")
            self._stop_event.wait(timeout=self._config.interval_seconds)

    def _run_cycle(self) -> CycleResult:
        payouts: list[PayoutRecord] = []
        skipped: list[str] = []
        errors: list[str] = []

        for entry in self._config.entries:
            if self._stop_event.is_set():
                break

            if not entry.is_valid:
                logger.warning(
                    "payout_entry_skipped",
                    extra={"entry_subject_key": entry.subject_key or None},
                )
                skipped.append(entry.subject_key)
                continue

            try:
                record = self._drain(entry)
            except Exception:
                logger.exception(
                    "payout_entry_failed",
                    extra={"entry_subject_key": entry.subject_key},
                )
                errors.append(entry.subject_key)
                continue
            if record is not None:
                payouts.append(record)

        logger.info(
            "payout_cycle_completed",
            extra={
                "payouts": len(payouts),
                "skipped": len(skipped),
                "errors": len(errors),
            },
        )
        return CycleResult(
            ran=True,
            payouts=tuple(payouts),
            skipped=tuple(skipped),
            errors=tuple(errors),
        )

    def _drain(self, entry: PayoutEntryConfig) -> PayoutRecord | None:
        return self._dispatcher.dispatch_drain(
            entry.subject_key,
            entry.min_amount,
            destination=entry.lightning_address,
            comment=entry.comment,
        )
