"""
Tests for PayoutDispatcher.

Chunked and drain sizing against a stored owed balance, the
PENDING -> SENT | FAILED | CANCELED lifecycle, and finalization by id.
"""

from uuid import uuid4

import pytest

from ledger_kernel.exceptions import PayoutAlreadyFinalizedError, PayoutNotFoundError
from ledger_kernel.models.donation import SplitAccumulator
from ledger_kernel.models.payout import Payout, PayoutPolicy, PayoutStatus
from ledger_kernel.services.aggregate_store import AggregateStore

from tests.conftest import FLOOR, PAYEE_1, PAYEE_2


def _owe(store, clock, payee, amount):
    with store.session_scope("seed_owed") as s:
        AggregateStore(s, SplitAccumulator, clock).apply_delta(payee, amount)


def _owed(store, payee):
    with store.session_scope("read_owed") as s:
        return AggregateStore(s, SplitAccumulator).get(payee)


def _payouts(store, payee):
    with store.session_scope("read_payouts") as s:
        return [
            (p.amount, p.status, p.policy)
            for p in s.query(Payout).filter_by(subject_key=payee).order_by(Payout.created_at)
        ]


class TestChunked:

    @pytest.mark.parametrize(
        "owed,expected_chunks,remainder",
        [
            (999, 0, 999),
            (1000, 1, 0),
            (1999, 1, 999),
            (3500, 3, 500),
        ],
    )
    def test_floor_sized_chunks(
        self, store, dispatcher, deterministic_clock, payment_client,
        owed, expected_chunks, remainder,
    ):
        _owe(store, deterministic_clock, PAYEE_1, owed)

        records = dispatcher.dispatch_chunked(PAYEE_1, FLOOR, destination="one@example.com")

        assert len(records) == expected_chunks
        assert all(r.amount == FLOOR for r in records)
        assert all(r.status == PayoutStatus.SENT.value for r in records)
        assert payment_client.amounts_for(PAYEE_1) == [FLOOR] * expected_chunks
        assert _owed(store, PAYEE_1) == remainder

    def test_payment_call_arguments(self, store, dispatcher, deterministic_clock, payment_client):
        _owe(store, deterministic_clock, PAYEE_1, 1000)

        dispatcher.dispatch_chunked(PAYEE_1, FLOOR, destination="one@example.com")

        call = payment_client.calls[0]
        assert call["destination"] == "one@example.com"
        assert call["comment"] == "Auto payout 1000 sats"
        assert call["timeout"] == 5.0

    def test_failed_payment_keeps_owed(self, store, dispatcher, deterministic_clock, payment_client):
        payment_client.fail_for.add(PAYEE_1)
        _owe(store, deterministic_clock, PAYEE_1, 1999)

        records = dispatcher.dispatch_chunked(PAYEE_1, FLOOR)

        assert [r.status for r in records] == [PayoutStatus.FAILED.value]
        assert records[0].error == "insufficient_route"
        assert _owed(store, PAYEE_1) == 1999

    def test_raising_collaborator_marks_failed(self, store, dispatcher, deterministic_clock, payment_client):
        payment_client.raise_for.add(PAYEE_1)
        _owe(store, deterministic_clock, PAYEE_1, 1000)

        records = dispatcher.dispatch_chunked(PAYEE_1, FLOOR)

        assert records[0].status == PayoutStatus.FAILED.value
        assert "TimeoutError" in records[0].error
        assert _owed(store, PAYEE_1) == 1000

    def test_other_payee_untouched(self, store, dispatcher, deterministic_clock):
        _owe(store, deterministic_clock, PAYEE_1, 2000)
        _owe(store, deterministic_clock, PAYEE_2, 2000)

        dispatcher.dispatch_chunked(PAYEE_1, FLOOR)

        assert _owed(store, PAYEE_2) == 2000
        assert _payouts(store, PAYEE_2) == []


class TestDrain:

    def test_below_minimum_creates_nothing(self, store, dispatcher, deterministic_clock, payment_client):
        _owe(store, deterministic_clock, PAYEE_1, 20)

        assert dispatcher.dispatch_drain(PAYEE_1, 21) is None
        assert payment_client.calls == []
        assert _payouts(store, PAYEE_1) == []

    def test_pays_whole_available_balance(self, store, dispatcher, deterministic_clock, payment_client):
        _owe(store, deterministic_clock, PAYEE_1, 999)

        record = dispatcher.dispatch_drain(PAYEE_1, 21, destination="one@example.com", comment="Tip")

        assert record.amount == 999
        assert record.policy == PayoutPolicy.DRAIN.value
        assert record.status == PayoutStatus.SENT.value
        assert payment_client.calls[0]["comment"] == "Tip"
        assert _owed(store, PAYEE_1) == 0

    def test_pending_intents_are_subtracted(self, store, dispatcher, deterministic_clock, payment_client):
        _owe(store, deterministic_clock, PAYEE_1, 1500)
        with store.session_scope("plan") as s:
            dispatcher.plan_chunked(s, PAYEE_1, FLOOR)

        record = dispatcher.dispatch_drain(PAYEE_1, 21)

        assert record.amount == 500
        assert payment_client.amounts_for(PAYEE_1) == [500]

    def test_fully_pending_balance_is_skipped(self, store, dispatcher, deterministic_clock):
        _owe(store, deterministic_clock, PAYEE_1, 1000)
        with store.session_scope("plan") as s:
            dispatcher.plan_chunked(s, PAYEE_1, FLOOR)

        assert dispatcher.dispatch_drain(PAYEE_1, 21) is None

    def test_chunked_after_donation_scenario(self, store, dispatcher, deterministic_clock, payment_client):
        """1999 owed: chunked pays 1000, the worker drains the 999 left."""
        _owe(store, deterministic_clock, PAYEE_1, 1999)

        dispatcher.dispatch_chunked(PAYEE_1, FLOOR)
        dispatcher.dispatch_drain(PAYEE_1, 21)

        assert payment_client.amounts_for(PAYEE_1) == [1000, 999]
        assert _owed(store, PAYEE_1) == 0


class TestFinalization:

    def _pending(self, store, dispatcher, clock, amount=1000):
        _owe(store, clock, PAYEE_1, amount)
        with store.session_scope("plan") as s:
            [payout] = dispatcher.plan_chunked(s, PAYEE_1, amount)
            return payout.id

    def test_intent_leaves_aggregate_alone(self, store, dispatcher, deterministic_clock):
        self._pending(store, dispatcher, deterministic_clock)

        assert _owed(store, PAYEE_1) == 1000
        assert _payouts(store, PAYEE_1) == [(1000, "pending", "chunked")]

    def test_sent_decrements_exactly_once(self, store, dispatcher, deterministic_clock):
        payout_id = self._pending(store, dispatcher, deterministic_clock)

        record = dispatcher.finalize_sent(payout_id, "ext-1")

        assert record.external_reference == "ext-1"
        assert record.finalized_at == deterministic_clock.now()
        assert _owed(store, PAYEE_1) == 0

        with pytest.raises(PayoutAlreadyFinalizedError) as exc_info:
            dispatcher.finalize_sent(payout_id, "ext-1")
        assert exc_info.value.status == "sent"
        assert _owed(store, PAYEE_1) == 0

    def test_failed_then_sent_rejected(self, store, dispatcher, deterministic_clock):
        payout_id = self._pending(store, dispatcher, deterministic_clock)

        dispatcher.finalize_failed(payout_id, "no_route")

        with pytest.raises(PayoutAlreadyFinalizedError):
            dispatcher.finalize_sent(payout_id)
        assert _owed(store, PAYEE_1) == 1000

    def test_cancel(self, store, dispatcher, deterministic_clock):
        payout_id = self._pending(store, dispatcher, deterministic_clock)

        record = dispatcher.cancel(payout_id, "operator")

        assert record.status == PayoutStatus.CANCELED.value
        assert record.error == "operator"
        assert _owed(store, PAYEE_1) == 1000
        with pytest.raises(PayoutAlreadyFinalizedError):
            dispatcher.cancel(payout_id)

    def test_unknown_id(self, dispatcher):
        with pytest.raises(PayoutNotFoundError):
            dispatcher.finalize_sent(uuid4())

    def test_oversized_sent_can_go_negative(self, store, dispatcher, deterministic_clock):
        payout_id = self._pending(store, dispatcher, deterministic_clock, amount=500)
        with store.session_scope("shrink") as s:
            AggregateStore(s, SplitAccumulator, deterministic_clock).overwrite(PAYEE_1, 100)

        dispatcher.finalize_sent(payout_id)

        assert _owed(store, PAYEE_1) == -400


class TestLogging:

    def test_lifecycle_logs_carry_context(self, store, dispatcher, deterministic_clock, captured_logs):
        _owe(store, deterministic_clock, PAYEE_1, 1000)

        [record] = dispatcher.dispatch_chunked(PAYEE_1, FLOOR)

        logs = {r["message"]: r for r in captured_logs()}
        assert logs["payout_intent_created"]["trigger"] == "chunked"
        assert logs["payout_intent_created"]["subject_key"] == PAYEE_1
        assert logs["payout_sent"]["payout_id"] == str(record.payout_id)
