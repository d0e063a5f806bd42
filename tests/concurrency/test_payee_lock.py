"""
Concurrency tests for the per-payee dispatch lock.

The post-donation chunked trigger and the periodic drain may fire for the
same payee at the same moment.  Together they must never pay out more than
the payee is owed.
"""

import time
from concurrent.futures import ThreadPoolExecutor
from threading import Barrier

import pytest

from ledger_kernel.models.donation import SplitAccumulator
from ledger_kernel.services.aggregate_store import AggregateStore
from ledger_kernel.services.payout_dispatcher import KeyedLock

from tests.conftest import FLOOR, PAYEE_1, PAYEE_2


def _owe(store, clock, payee, amount):
    with store.session_scope("seed_owed") as s:
        AggregateStore(s, SplitAccumulator, clock).apply_delta(payee, amount)


def _owed(store, payee):
    with store.session_scope("read_owed") as s:
        return AggregateStore(s, SplitAccumulator).get(payee)


class TestChunkedAndDrainRace:

    @pytest.mark.parametrize("round_", range(5))
    def test_never_overpays(self, store, dispatcher, deterministic_clock, payment_client, round_):
        _owe(store, deterministic_clock, PAYEE_1, 1999)
        # widen the window between plan and finalize
        payment_client.on_call = lambda payee_key, amount: time.sleep(0.02)
        barrier = Barrier(2)

        def chunked():
            barrier.wait()
            return dispatcher.dispatch_chunked(PAYEE_1, FLOOR)

        def drain():
            barrier.wait()
            return dispatcher.dispatch_drain(PAYEE_1, 21)

        with ThreadPoolExecutor(max_workers=2) as pool:
            chunked_future = pool.submit(chunked)
            drain_future = pool.submit(drain)
            chunked_future.result()
            drain_future.result()

        assert sum(payment_client.amounts_for(PAYEE_1)) == 1999
        assert _owed(store, PAYEE_1) == 0

    def test_other_payees_not_blocked(self, store, dispatcher, deterministic_clock, payment_client):
        _owe(store, deterministic_clock, PAYEE_1, 1000)
        _owe(store, deterministic_clock, PAYEE_2, 1000)
        barrier = Barrier(2)

        def pay(payee):
            barrier.wait()
            return dispatcher.dispatch_chunked(payee, FLOOR)

        with ThreadPoolExecutor(max_workers=2) as pool:
            results = list(pool.map(pay, [PAYEE_1, PAYEE_2]))

        assert [len(r) for r in results] == [1, 1]
        assert _owed(store, PAYEE_1) == _owed(store, PAYEE_2) == 0


class TestKeyedLock:

    def test_same_key_serializes(self):
        locks = KeyedLock()
        active = []
        overlaps = []
        barrier = Barrier(4)

        def work(_):
            barrier.wait()
            with locks.hold("k"):
                active.append(1)
                if len(active) > 1:
                    overlaps.append(1)
                time.sleep(0.01)
                active.pop()

        with ThreadPoolExecutor(max_workers=4) as pool:
            list(pool.map(work, range(4)))

        assert overlaps == []

    def test_reentrant(self):
        locks = KeyedLock()
        with locks.hold("k"):
            with locks.hold("k"):
                pass
