"""
Payout sizing -- pure functions deciding how much to pay and in what shape.

Two policies exist side by side and are deliberately not unified:

Chunked (steady state, runs right after a donation):
    While the running total is at least ``floor``, emit one chunk of exactly
    ``floor`` and subtract it from the running total in memory.  A total of
    ``k * floor + r`` (0 <= r < floor) yields ``k`` chunks and leaves ``r``.

Drain (catch-up, periodic worker):
    ``available = max(0, total - pending)``.  When ``available`` reaches
    ``minimum``, emit exactly one payment for all of it.

The donation split lives here too: the first payee gets the ceiling half,
the second the floor half, so an odd amount favors the first payee by one.
"""

from ledger_kernel.exceptions import InvalidAmountError, ValidationError


def split_amount(amount: int) -> tuple[int, int]:
    """Return (ceil(amount / 2), floor(amount / 2))."""
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidAmountError(amount)
    first = -(-amount // 2)
    return first, amount // 2


def plan_chunks(total: int, floor: int) -> list[int]:
    """Chunk sizes for the chunked policy (possibly empty)."""
    if floor <= 0:
        raise ValidationError(f"Payout floor must be positive, got {floor}", field="floor")
    chunks: list[int] = []
    running = total
    while running >= floor:
        chunks.append(floor)
        running -= floor
    return chunks


def drain_amount(total: int, pending: int, minimum: int) -> int | None:
    """Amount for the drain policy, or None when below ``minimum``."""
    if minimum <= 0:
        raise ValidationError(f"Payout minimum must be positive, got {minimum}", field="minimum")
    available = max(0, total - pending)
    if available < minimum:
        return None
    return available
