"""
Ledger configuration schema.

Frozen dataclasses parsed from one YAML document by ``ledger_config.loader``.
Defaults reproduce a local single-process deployment: a SQLite file,
a 1000-sat split floor, a two-minute payout worker and a local
access gate.
"""

from __future__ import annotations

from dataclasses import dataclass, field

DEFAULT_DATABASE_URL = "sqlite:///retired.db"
DEFAULT_SPLIT_THRESHOLD = 1000
DEFAULT_WORKER_INTERVAL_SECONDS = 120
DEFAULT_ZAP_ENDPOINT = "http://localhost:4055/zap"
DEFAULT_CASHUWALL_URL = "http://localhost:3041/cashuwall"
DEFAULT_RECIPIENT = "npub1ee46qlg09wa9atzuc977urrm7ptkrfqs5uypfstnaxn7370vgcrq8tz3ua"
DEFAULT_MIN_AMOUNT = 21


# ---------------------------------------------------------------------------
# Donation splits
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PayeeConfig:
    """One split recipient."""

    subject_key: str
    lightning_address: str | None = None
    comment: str | None = None


@dataclass(frozen=True)
class SplitsConfig:
    """Two payees (first gets the odd unit) and the chunked payout floor."""

    payees: tuple[PayeeConfig, PayeeConfig] = (
        PayeeConfig("npub1_tbd"),
        PayeeConfig("npub2_tbd"),
    )
    threshold: int = DEFAULT_SPLIT_THRESHOLD

    def payee(self, subject_key: str) -> PayeeConfig | None:
        for payee in self.payees:
            if payee.subject_key == subject_key:
                return payee
        return None


# ---------------------------------------------------------------------------
# Payout worker
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PayoutEntryConfig:
    """A payee the periodic worker drains."""

    subject_key: str
    lightning_address: str
    min_amount: int
    comment: str | None = None

    @property
    def is_valid(self) -> bool:
        return bool(self.subject_key) and bool(self.lightning_address) and self.min_amount > 0


@dataclass(frozen=True)
class PayoutWorkerConfig:
    interval_seconds: float = DEFAULT_WORKER_INTERVAL_SECONDS
    zap_endpoint: str = DEFAULT_ZAP_ENDPOINT
    timeout_seconds: float = 30.0
    entries: tuple[PayoutEntryConfig, ...] = ()


# ---------------------------------------------------------------------------
# Access gate
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AccessGateConfig:
    url: str = DEFAULT_CASHUWALL_URL
    recipient: str = DEFAULT_RECIPIENT
    timeout_seconds: float = 10.0
    local_mode: bool = False
    local_store_dir: str = "data/cashu-local"
    min_amount: int = DEFAULT_MIN_AMOUNT


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LedgerConfig:
    """Everything a ledger process needs at start-up."""

    database_url: str = DEFAULT_DATABASE_URL
    splits: SplitsConfig = field(default_factory=SplitsConfig)
    payout_worker: PayoutWorkerConfig = field(default_factory=PayoutWorkerConfig)
    access_gate: AccessGateConfig = field(default_factory=AccessGateConfig)
    checksum: str = ""
