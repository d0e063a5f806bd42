"""
Configuration loader (``ledger_config.loader``).

Loads the YAML document and parses it into ``ledger_config.schema``
dataclasses.  Runtime callers go through ``ledger_config.get_active_config()``
which layers environment overrides on top of what is parsed here.

Failure modes
-------------
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* A value of the wrong shape or range  -> ``ConfigurationError`` naming
  the offending key.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from ledger_config.schema import (
    DEFAULT_CASHUWALL_URL,
    DEFAULT_DATABASE_URL,
    DEFAULT_MIN_AMOUNT,
    DEFAULT_RECIPIENT,
    DEFAULT_SPLIT_THRESHOLD,
    DEFAULT_WORKER_INTERVAL_SECONDS,
    DEFAULT_ZAP_ENDPOINT,
    AccessGateConfig,
    LedgerConfig,
    PayeeConfig,
    PayoutEntryConfig,
    PayoutWorkerConfig,
    SplitsConfig,
)
from ledger_kernel.exceptions import ConfigurationError
from ledger_kernel.utils.hashing import hash_payload


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ConfigurationError: if the document is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigurationError(str(path), "top level must be a mapping")
    return data


def parse_positive_int(value: Any, key: str) -> int:
    if isinstance(value, bool):
        raise ConfigurationError(key, f"expected a positive integer, got {value!r}")
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(key, f"expected a positive integer, got {value!r}") from exc
    if number <= 0:
        raise ConfigurationError(key, f"must be positive, got {number}")
    return number


def parse_positive_float(value: Any, key: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(key, f"expected a number, got {value!r}") from exc
    if number <= 0:
        raise ConfigurationError(key, f"must be positive, got {number}")
    return number


def parse_bool(value: Any) -> bool:
    """YAML booleans pass through; strings compare case-insensitively to 'true'."""
    if isinstance(value, bool):
        return value
    return str(value).strip().upper() == "TRUE"


def parse_payee(data: Any, key: str) -> PayeeConfig:
    if isinstance(data, str):
        return PayeeConfig(subject_key=data)
    if not isinstance(data, dict) or not data.get("subject_key"):
        raise ConfigurationError(key, "payee needs a subject_key")
    return PayeeConfig(
        subject_key=str(data["subject_key"]),
        lightning_address=data.get("lightning_address"),
        comment=data.get("comment"),
    )


def parse_splits(data: dict[str, Any]) -> SplitsConfig:
    payees_data = data.get("payees")
    if payees_data is None:
        payees = SplitsConfig().payees
    else:
        if not isinstance(payees_data, list) or len(payees_data) != 2:
            raise ConfigurationError("splits.payees", "exactly two payees are required")
        payees = tuple(
            parse_payee(p, f"splits.payees[{i}]") for i, p in enumerate(payees_data)
        )
    return SplitsConfig(
        payees=payees,
        threshold=parse_positive_int(
            data.get("threshold", DEFAULT_SPLIT_THRESHOLD), "splits.threshold"
        ),
    )


def parse_payout_entry(data: dict[str, Any]) -> PayoutEntryConfig:
    """
    Entries are kept even when incomplete; the worker skips invalid ones
    with a warning so a single bad entry does not stop the others.
    """
    min_amount = data.get("min_amount", 0)
    try:
        min_amount = int(min_amount)
    except (TypeError, ValueError):
        min_amount = 0
    return PayoutEntryConfig(
        subject_key=str(data.get("subject_key") or ""),
        lightning_address=str(data.get("lightning_address") or ""),
        min_amount=min_amount,
        comment=data.get("comment"),
    )


def parse_payout_worker(data: dict[str, Any]) -> PayoutWorkerConfig:
    entries = data.get("entries") or []
    if not isinstance(entries, list):
        raise ConfigurationError("payout_worker.entries", "must be a list")
    return PayoutWorkerConfig(
        interval_seconds=parse_positive_float(
            data.get("interval_seconds", DEFAULT_WORKER_INTERVAL_SECONDS),
            "payout_worker.interval_seconds",
        ),
        zap_endpoint=str(data.get("zap_endpoint") or DEFAULT_ZAP_ENDPOINT),
        timeout_seconds=parse_positive_float(
            data.get("timeout_seconds", 30.0), "payout_worker.timeout_seconds"
        ),
        entries=tuple(parse_payout_entry(e) for e in entries if isinstance(e, dict)),
    )


def parse_access_gate(data: dict[str, Any]) -> AccessGateConfig:
    return AccessGateConfig(
        url=str(data.get("url") or DEFAULT_CASHUWALL_URL),
        recipient=str(data.get("recipient") or DEFAULT_RECIPIENT),
        timeout_seconds=parse_positive_float(
            data.get("timeout_seconds", 10.0), "access_gate.timeout_seconds"
        ),
        local_mode=parse_bool(data.get("local_mode", False)),
        local_store_dir=str(data.get("local_store_dir") or AccessGateConfig.local_store_dir),
        min_amount=parse_positive_int(
            data.get("min_amount", DEFAULT_MIN_AMOUNT), "access_gate.min_amount"
        ),
    )


def parse_config(data: dict[str, Any]) -> LedgerConfig:
    """Parse a whole document; the checksum covers the raw data."""
    return LedgerConfig(
        database_url=str(data.get("database_url") or DEFAULT_DATABASE_URL),
        splits=parse_splits(data.get("splits") or {}),
        payout_worker=parse_payout_worker(data.get("payout_worker") or {}),
        access_gate=parse_access_gate(data.get("access_gate") or {}),
        checksum=compute_checksum(data),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """Order-independent checksum of a config document."""
    return hash_payload(data)
