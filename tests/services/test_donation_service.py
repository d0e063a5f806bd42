"""
Tests for DonationService.

Recording, the ceil/floor split between the two payees, duplicate token
handling, post-donation chunked payouts and gate-backed redemption.
"""

import pytest

from ledger_config.schema import PayeeConfig, SplitsConfig
from ledger_kernel.exceptions import (
    ConfigurationError,
    ExternalUnavailableError,
    InvalidAmountError,
    ValidationError,
)
from ledger_kernel.models.donation import Donation, SplitAccumulator, SplitShare
from ledger_kernel.models.payout import Payout
from ledger_kernel.services.aggregate_store import AggregateStore
from ledger_kernel.services.donation_service import DUPLICATE_REASON, DonationService
from ledger_kernel.services.reconciliation_service import SPLITS, ReconciliationService
from ledger_kernel.utils.hashing import token_fingerprint

from tests.conftest import FLOOR, PAYEE_1, PAYEE_2


def _owed(store):
    with store.session_scope("read_owed") as s:
        aggregates = AggregateStore(s, SplitAccumulator)
        return {PAYEE_1: aggregates.get(PAYEE_1), PAYEE_2: aggregates.get(PAYEE_2)}


def _count(store, model):
    with store.session_scope("count") as s:
        return s.query(model).count()


class TestRecord:

    def test_small_donation_is_split_without_payouts(self, store, donation_service, payment_client):
        result = donation_service.record_fingerprint("f1", 100)

        assert result.accepted
        assert result.donation_recorded
        assert {s.subject_key: s.added for s in result.splits} == {PAYEE_1: 50, PAYEE_2: 50}
        assert result.payouts == ()
        assert payment_client.calls == []
        assert _owed(store) == {PAYEE_1: 50, PAYEE_2: 50}
        assert _count(store, Payout) == 0

    def test_odd_amount_favors_first_payee(self, store, donation_service):
        result = donation_service.record_fingerprint("f1", 101)

        assert [(s.subject_key, s.added) for s in result.splits] == [(PAYEE_1, 51), (PAYEE_2, 50)]

    def test_one_sat_credits_only_first_payee(self, store, donation_service):
        result = donation_service.record_fingerprint("f1", 1)

        assert [(s.subject_key, s.added) for s in result.splits] == [(PAYEE_1, 1)]
        assert _count(store, SplitShare) == 1
        assert _owed(store) == {PAYEE_1: 1, PAYEE_2: 0}

    def test_record_from_amount_keys_by_fingerprint(self, store, donation_service):
        result = donation_service.record_from_amount("cashuAabc", 40)

        assert result.donation_source == token_fingerprint("cashuAabc")
        with store.session_scope("read") as s:
            assert s.query(Donation).one().reference_id == token_fingerprint("cashuAabc")

    def test_empty_token_rejected(self, donation_service):
        with pytest.raises(ValidationError):
            donation_service.record_from_amount("", 40)

    def test_bad_amount_rejected(self, store, donation_service):
        with pytest.raises(InvalidAmountError):
            donation_service.record_fingerprint("f1", 0)
        assert _count(store, Donation) == 0

    def test_identical_payees_rejected(self, store, dispatcher):
        config = SplitsConfig(payees=(PayeeConfig(PAYEE_1), PayeeConfig(PAYEE_1)), threshold=FLOOR)
        with pytest.raises(ConfigurationError):
            DonationService(store, dispatcher, config)


class TestDuplicates:

    def test_second_recording_is_noop(self, store, donation_service, payment_client):
        donation_service.record_fingerprint("f1", 2000)
        calls_before = len(payment_client.calls)

        again = donation_service.record_fingerprint("f1", 2000)

        assert not again.accepted
        assert again.prevented_duplicate
        assert again.reason == DUPLICATE_REASON
        assert len(payment_client.calls) == calls_before
        assert _count(store, Donation) == 1
        assert _count(store, SplitShare) == 2

    def test_same_token_text_dedups(self, store, donation_service):
        donation_service.record_from_amount("cashuAtoken", 100)

        assert donation_service.record_from_amount("cashuAtoken", 100).prevented_duplicate
        assert _owed(store) == {PAYEE_1: 50, PAYEE_2: 50}


class TestPayoutsAfterDonation:

    def test_reaching_floor_pays_each_payee(self, store, donation_service, payment_client):
        result = donation_service.record_fingerprint("f1", 2000)

        assert len(result.payouts) == 2
        assert payment_client.amounts_for(PAYEE_1) == [1000]
        assert payment_client.amounts_for(PAYEE_2) == [1000]
        assert payment_client.calls[0]["destination"] == "one@example.com"
        assert _owed(store) == {PAYEE_1: 0, PAYEE_2: 0}

    def test_remainders_carry_over(self, store, donation_service, payment_client):
        donation_service.record_fingerprint("f1", 3999)

        assert payment_client.amounts_for(PAYEE_1) == [1000, 1000]
        assert payment_client.amounts_for(PAYEE_2) == [1000]
        assert _owed(store) == {PAYEE_1: 0, PAYEE_2: 999}

        donation_service.record_fingerprint("f2", 2)

        assert payment_client.amounts_for(PAYEE_2) == [1000, 1000]
        assert _owed(store) == {PAYEE_1: 1, PAYEE_2: 0}

    def test_failed_payment_keeps_donation(self, store, donation_service, payment_client):
        payment_client.fail_for.add(PAYEE_2)

        result = donation_service.record_fingerprint("f1", 2000)

        assert result.donation_recorded
        assert {p.subject_key: p.status for p in result.payouts} == {PAYEE_1: "sent", PAYEE_2: "failed"}
        assert _owed(store) == {PAYEE_1: 0, PAYEE_2: 1000}

    def test_accounting_balances(self, store, donation_service, payment_client):
        payment_client.fail_for.add(PAYEE_2)
        for i, amount in enumerate([2500, 777, 1, 1300]):
            donation_service.record_fingerprint(f"f{i}", amount)

        with store.session_scope("check") as s:
            assert ReconciliationService(s, SPLITS).integrity_check().is_consistent
            total_donated = sum(d.amount for d in s.query(Donation))
            total_shares = sum(sh.amount for sh in s.query(SplitShare))
        sent = sum(c["amount"] for c in payment_client.calls if c["payee_key"] == PAYEE_1)
        assert total_donated == total_shares
        assert total_donated == sum(_owed(store).values()) + sent


class TestRedeemAndRecord:

    def test_granted_token_is_recorded(self, store, donation_service, access_gate):
        result = donation_service.redeem_and_record("cashuAgood", min_amount=21)

        assert access_gate.calls == [("cashuAgood", 21)]
        assert result.donation_recorded
        assert result.amount == 100
        assert result.validation.reason == "No validation performed"

    def test_configured_min_amount_is_default(self, store, dispatcher, splits_config, deterministic_clock, access_gate):
        service = DonationService(
            store,
            dispatcher,
            splits_config,
            deterministic_clock,
            access_gate=access_gate,
            min_amount=250,
        )

        service.redeem_and_record("cashuAgood")

        assert access_gate.calls == [("cashuAgood", 250)]

    def test_denied_token_records_nothing(self, store, donation_service, access_gate):
        access_gate.denied["cashuAbad"] = "amount_below_threshold"

        result = donation_service.redeem_and_record("cashuAbad")

        assert not result.accepted
        assert result.reason == "amount_below_threshold"
        assert result.validation.reason == "Cashu token rejected"
        assert _count(store, Donation) == 0

    def test_unreachable_gate_records_nothing(self, store, donation_service, access_gate):
        access_gate.raises = ExternalUnavailableError("cashuwall", "request_timeout")

        result = donation_service.redeem_and_record("cashuAtok")

        assert not result.accepted
        assert result.reason == "request_timeout"
        assert _count(store, Donation) == 0

    def test_flagged_validation_does_not_block(self, store, donation_service, access_gate):
        result = donation_service.redeem_and_record(
            "cashuAtok",
            expected_score=55,
            player_key="npub1player",
        )

        assert result.donation_recorded
        assert not result.validation.is_valid
        assert result.validation.reason == "Game score mismatch with token amount"

    def test_no_gate_configured(self, store, dispatcher, splits_config):
        service = DonationService(store, dispatcher, splits_config)
        with pytest.raises(ConfigurationError):
            service.redeem_and_record("cashuAtok")
