"""
Pytest fixtures for the ledger test suite.

Provides:
- A fresh SQLite file store per test (``tmp_path``), tables created
- Deterministic clock, fake collaborators (access gate, payment client)
- Kernel service fixtures wired to the store
- Structured log capture
"""

import json
import logging
import threading
from io import StringIO

import pytest

from ledger_config.schema import PayeeConfig, SplitsConfig
from ledger_kernel.db.engine import LedgerStore
from ledger_kernel.domain.clock import DeterministicClock
from ledger_kernel.domain.dtos import AccessDecision, AccessDecisionKind, PaymentResult
from ledger_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from ledger_kernel.services.donation_service import DonationService
from ledger_kernel.services.leaderboard_service import LeaderboardService
from ledger_kernel.services.payout_dispatcher import PayoutDispatcher

PAYEE_1 = "npub1payeeone"
PAYEE_2 = "npub1payeetwo"
FLOOR = 1000


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG, stream=StringIO())
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture ledger_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, leaderboard):
            leaderboard.update(...)
            logs = captured_logs()
            assert any(r["message"] == "event_appended" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("ledger_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Store
# =============================================================================


@pytest.fixture
def database_url(tmp_path) -> str:
    return f"sqlite:///{tmp_path / 'ledger.db'}"


@pytest.fixture
def store(database_url):
    """A fresh on-disk SQLite store with every table created."""
    ledger_store = LedgerStore(database_url)
    ledger_store.create_tables()
    yield ledger_store
    ledger_store.close()


@pytest.fixture
def session(store):
    """Caller-managed session for selector and low-level service tests."""
    s = store.session()
    yield s
    s.rollback()
    s.close()


@pytest.fixture
def deterministic_clock():
    return DeterministicClock()


# =============================================================================
# Fake collaborators
# =============================================================================


class FakePaymentClient:
    """
    Records every call; outcome controlled per payee.

    ``fail_for`` payees get ``ok=False``; ``raise_for`` payees raise.
    """

    def __init__(self):
        self.calls: list[dict] = []
        self.fail_for: set[str] = set()
        self.raise_for: set[str] = set()
        self.on_call = None
        self._lock = threading.Lock()

    def pay(self, payee_key, amount, destination, comment, timeout):
        with self._lock:
            self.calls.append(
                {
                    "payee_key": payee_key,
                    "amount": amount,
                    "destination": destination,
                    "comment": comment,
                    "timeout": timeout,
                }
            )
            n = len(self.calls)
        if self.on_call is not None:
            self.on_call(payee_key, amount)
        if payee_key in self.raise_for:
            raise TimeoutError("payment timed out")
        if payee_key in self.fail_for:
            return PaymentResult(ok=False, error="insufficient_route")
        return PaymentResult(ok=True, external_reference=f"ref-{n}")

    def amounts_for(self, payee_key: str) -> list[int]:
        return [c["amount"] for c in self.calls if c["payee_key"] == payee_key]


class FakeAccessGate:
    """Grants a fixed amount per token unless told otherwise."""

    def __init__(self, amount: int = 100):
        self.amount = amount
        self.denied: dict[str, str] = {}
        self.raises: Exception | None = None
        self.calls: list[tuple[str, int]] = []

    def redeem(self, encoded_token, min_amount=21):
        self.calls.append((encoded_token, min_amount))
        if self.raises is not None:
            raise self.raises
        if encoded_token in self.denied:
            return AccessDecision.denied(self.denied[encoded_token], "fake")
        return AccessDecision(
            decision=AccessDecisionKind.GRANTED,
            amount=self.amount,
            reason="accepted",
            mode="fake",
        )


@pytest.fixture
def payment_client():
    return FakePaymentClient()


@pytest.fixture
def access_gate():
    return FakeAccessGate()


# =============================================================================
# Services
# =============================================================================


@pytest.fixture
def splits_config():
    return SplitsConfig(
        payees=(
            PayeeConfig(PAYEE_1, lightning_address="one@example.com"),
            PayeeConfig(PAYEE_2, lightning_address="two@example.com"),
        ),
        threshold=FLOOR,
    )


@pytest.fixture
def dispatcher(store, payment_client, deterministic_clock):
    return PayoutDispatcher(store, payment_client, deterministic_clock, payment_timeout=5.0)


@pytest.fixture
def leaderboard(store, deterministic_clock):
    return LeaderboardService(store, deterministic_clock)


@pytest.fixture
def donation_service(store, dispatcher, splits_config, deterministic_clock, access_gate, leaderboard):
    return DonationService(
        store,
        dispatcher,
        splits_config,
        deterministic_clock,
        access_gate=access_gate,
        leaderboard=leaderboard,
    )
