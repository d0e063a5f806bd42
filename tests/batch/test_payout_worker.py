"""
Tests for ledger_batch.payout_worker.

Validates PayoutWorker: tick() drains configured payees, invalid entries
are skipped, one payee's failure does not stop the cycle, overlapping
ticks are refused, and start/stop lifecycle.
"""

import threading

from ledger_config.schema import PayoutEntryConfig, PayoutWorkerConfig
from ledger_kernel.models.donation import SplitAccumulator
from ledger_kernel.services.aggregate_store import AggregateStore
from ledger_batch.payout_worker import PayoutWorker

from tests.conftest import PAYEE_1, PAYEE_2


def _entry(subject_key, min_amount=21, lightning_address="x@example.com"):
    return PayoutEntryConfig(
        subject_key=subject_key,
        lightning_address=lightning_address,
        min_amount=min_amount,
    )


def _owe(store, clock, payee, amount):
    with store.session_scope("seed_owed") as s:
        AggregateStore(s, SplitAccumulator, clock).apply_delta(payee, amount)


def _worker(dispatcher, *entries, interval=60.0):
    return PayoutWorker(dispatcher, PayoutWorkerConfig(interval_seconds=interval, entries=entries))


class TestTick:

    def test_drains_each_payee(self, store, dispatcher, deterministic_clock, payment_client):
        _owe(store, deterministic_clock, PAYEE_1, 999)
        _owe(store, deterministic_clock, PAYEE_2, 10)
        worker = _worker(dispatcher, _entry(PAYEE_1), _entry(PAYEE_2))

        result = worker.tick()

        assert result.ran
        assert [(p.subject_key, p.amount) for p in result.payouts] == [(PAYEE_1, 999)]
        assert payment_client.calls[0]["destination"] == "x@example.com"
        assert payment_client.amounts_for(PAYEE_2) == []

    def test_second_tick_finds_nothing(self, store, dispatcher, deterministic_clock, payment_client):
        _owe(store, deterministic_clock, PAYEE_1, 500)
        worker = _worker(dispatcher, _entry(PAYEE_1))

        worker.tick()
        result = worker.tick()

        assert result.payouts == ()
        assert payment_client.amounts_for(PAYEE_1) == [500]

    def test_failed_payment_retried_next_cycle(self, store, dispatcher, deterministic_clock, payment_client):
        _owe(store, deterministic_clock, PAYEE_1, 500)
        payment_client.fail_for.add(PAYEE_1)
        worker = _worker(dispatcher, _entry(PAYEE_1))

        assert worker.tick().payouts[0].status == "failed"
        payment_client.fail_for.clear()
        assert worker.tick().payouts[0].status == "sent"
        assert payment_client.amounts_for(PAYEE_1) == [500, 500]

    def test_invalid_entries_skipped(self, store, dispatcher, deterministic_clock, captured_logs):
        _owe(store, deterministic_clock, PAYEE_1, 500)
        worker = _worker(
            dispatcher,
            _entry("", 21),
            _entry(PAYEE_2, 0),
            _entry(PAYEE_2, 21, lightning_address=""),
            _entry(PAYEE_1),
        )

        result = worker.tick()

        assert result.skipped == ("", PAYEE_2, PAYEE_2)
        assert len(result.payouts) == 1
        skipped_logs = [r for r in captured_logs() if r["message"] == "payout_entry_skipped"]
        assert len(skipped_logs) == 3

    def test_failure_does_not_stop_cycle(self, store, dispatcher, deterministic_clock):
        _owe(store, deterministic_clock, PAYEE_1, 500)
        _owe(store, deterministic_clock, PAYEE_2, 500)

        original = dispatcher.dispatch_drain

        def flaky(payee_key, *args, **kwargs):
            if payee_key == PAYEE_1:
                raise RuntimeError("boom")
            return original(payee_key, *args, **kwargs)

        dispatcher.dispatch_drain = flaky
        worker = _worker(dispatcher, _entry(PAYEE_1), _entry(PAYEE_2))

        result = worker.tick()

        assert result.errors == (PAYEE_1,)
        assert [p.subject_key for p in result.payouts] == [PAYEE_2]

    def test_overlapping_tick_refused(self, store, dispatcher, deterministic_clock, payment_client):
        _owe(store, deterministic_clock, PAYEE_1, 500)
        worker = _worker(dispatcher, _entry(PAYEE_1))
        inner_results = []

        def reenter(payee_key, amount):
            inner = threading.Thread(target=lambda: inner_results.append(worker.tick()))
            inner.start()
            inner.join()

        payment_client.on_call = reenter

        outer = worker.tick()

        assert outer.ran
        assert inner_results[0].ran is False
        assert payment_client.amounts_for(PAYEE_1) == [500]


class TestLifecycle:

    def test_start_and_stop(self, store, dispatcher, deterministic_clock, payment_client):
        _owe(store, deterministic_clock, PAYEE_1, 500)
        worker = _worker(dispatcher, _entry(PAYEE_1), interval=0.05)
        paid = threading.Event()
        payment_client.on_call = lambda payee_key, amount: paid.set()

        worker.start()
        try:
            assert paid.wait(timeout=10)
            assert worker.is_running
        finally:
            worker.stop(timeout=10)

        assert not worker.is_running
        assert payment_client.amounts_for(PAYEE_1) == [500]

    def test_start_twice_is_noop(self, dispatcher):
        worker = _worker(dispatcher)
        worker.start()
        try:
            first_thread = worker._thread
            worker.start()
            assert worker._thread is first_thread
        finally:
            worker.stop(timeout=10)
