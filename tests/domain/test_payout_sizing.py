"""Tests for the pure payout sizing functions (split, chunked, drain)."""

import pytest

from ledger_kernel.domain.payout_sizing import drain_amount, plan_chunks, split_amount
from ledger_kernel.exceptions import InvalidAmountError, ValidationError


class TestSplitAmount:

    def test_even_amount_splits_equally(self):
        assert split_amount(100) == (50, 50)

    def test_odd_amount_favors_first_payee(self):
        assert split_amount(101) == (51, 50)

    def test_one_unit_goes_to_first_payee(self):
        assert split_amount(1) == (1, 0)

    @pytest.mark.parametrize("amount", [0, -5, 1.5, True, "10"])
    def test_rejects_non_positive_or_non_int(self, amount):
        with pytest.raises(InvalidAmountError):
            split_amount(amount)


class TestPlanChunks:

    def test_exact_multiple(self):
        assert plan_chunks(3000, 1000) == [1000, 1000, 1000]

    def test_remainder_left_owed(self):
        assert plan_chunks(1999, 1000) == [1000]

    def test_below_floor_yields_nothing(self):
        assert plan_chunks(999, 1000) == []

    def test_negative_total_yields_nothing(self):
        assert plan_chunks(-50, 1000) == []

    def test_floor_must_be_positive(self):
        with pytest.raises(ValidationError):
            plan_chunks(1000, 0)


class TestDrainAmount:

    def test_below_minimum(self):
        assert drain_amount(400, 0, 500) is None

    def test_pays_everything_available(self):
        assert drain_amount(1234, 0, 500) == 1234

    def test_pending_is_subtracted(self):
        assert drain_amount(1500, 1000, 500) == 500
        assert drain_amount(1500, 1001, 500) is None

    def test_over_committed_is_clamped_to_zero(self):
        assert drain_amount(100, 500, 1) is None

    def test_minimum_must_be_positive(self):
        with pytest.raises(ValidationError):
            drain_amount(100, 0, 0)
