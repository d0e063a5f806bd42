"""
Property-based tests for payout sizing.

- ceil(A/2) + floor(A/2) == A; the first share exceeds the second by one
  exactly when A is odd.
- A total of k*floor + r (0 <= r < floor) plans exactly k chunks of floor.
- Drain emits nothing below the minimum, otherwise exactly the available
  amount.
"""

from hypothesis import given
from hypothesis import strategies as st

from ledger_kernel.domain.payout_sizing import drain_amount, plan_chunks, split_amount

amounts = st.integers(min_value=1, max_value=10**12)
floors = st.integers(min_value=1, max_value=10**6)


@given(amounts)
def test_split_conserves_amount(amount):
    first, second = split_amount(amount)
    assert first + second == amount
    assert first - second == (1 if amount % 2 else 0)


@given(floors, st.integers(min_value=0, max_value=50), st.data())
def test_chunk_count_and_remainder(floor, k, data):
    r = data.draw(st.integers(min_value=0, max_value=floor - 1))
    chunks = plan_chunks(k * floor + r, floor)
    assert chunks == [floor] * k
    assert k * floor + r - sum(chunks) == r


@given(
    st.integers(min_value=-10**6, max_value=10**9),
    st.integers(min_value=0, max_value=10**9),
    st.integers(min_value=1, max_value=10**6),
)
def test_drain_is_all_or_nothing(total, pending, minimum):
    available = max(0, total - pending)
    result = drain_amount(total, pending, minimum)
    if available < minimum:
        assert result is None
    else:
        assert result == available
