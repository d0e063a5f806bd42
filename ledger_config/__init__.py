"""
ledger_config -- single public entrypoint for ledger configuration.

Responsibility:
    ``get_active_config()`` is the only way runtime code obtains
    configuration.  It reads the YAML document (when there is one),
    applies environment overrides and logs a trace line with the
    checksum of the effective configuration.

Resolution order (later wins):
    1. Defaults in ``ledger_config.schema``.
    2. The YAML file at ``path`` or ``$LEDGER_CONFIG``.  A missing file is
       not an error: defaults apply.
    3. Environment: ``DATABASE_URL``, ``SPLIT_NPUB1``, ``SPLIT_NPUB2``,
       ``SPLIT_THRESHOLD_SATS``, ``CASHU_LOCAL``, ``CASHU_LOCAL_STORE_DIR``,
       ``CASHUWALL_NPUB``.

Failure modes:
    - ``ConfigurationError`` for values of the wrong shape or range,
      whether they come from YAML or from the environment.
"""

from __future__ import annotations

import logging
import os
from dataclasses import replace
from pathlib import Path
from typing import Mapping

from ledger_config.loader import (
    compute_checksum,
    load_yaml_file,
    parse_bool,
    parse_config,
    parse_positive_int,
)
from ledger_config.schema import (
    AccessGateConfig,
    LedgerConfig,
    PayeeConfig,
    PayoutEntryConfig,
    PayoutWorkerConfig,
    SplitsConfig,
)

__all__ = [
    "get_active_config",
    "compute_checksum",
    "AccessGateConfig",
    "LedgerConfig",
    "PayeeConfig",
    "PayoutEntryConfig",
    "PayoutWorkerConfig",
    "SplitsConfig",
]

_logger = logging.getLogger("ledger_kernel.config")

CONFIG_PATH_ENV = "LEDGER_CONFIG"


def get_active_config(
    path: Path | str | None = None,
    environ: Mapping[str, str] | None = None,
) -> LedgerConfig:
    """
    Build the effective configuration.

    Args:
        path: YAML file.  Defaults to ``$LEDGER_CONFIG``; with neither, only
            defaults and environment overrides apply.
        environ: Environment mapping, ``os.environ`` by default.
    """
    env = os.environ if environ is None else environ
    source = path or env.get(CONFIG_PATH_ENV)

    data: dict = {}
    if source:
        config_path = Path(source)
        if config_path.exists():
            data = load_yaml_file(config_path)
        else:
            _logger.warning("config_file_missing", extra={"path": str(config_path)})

    config = _apply_env_overrides(parse_config(data), env)

    _logger.info(
        "LEDGER_CONFIG_TRACE",
        extra={
            "trace_type": "LEDGER_CONFIG_TRACE",
            "checksum": config.checksum,
            "source": str(source) if source else None,
            "payees": [p.subject_key for p in config.splits.payees],
            "threshold": config.splits.threshold,
            "worker_entries": len(config.payout_worker.entries),
            "local_mode": config.access_gate.local_mode,
        },
    )
    return config


def _apply_env_overrides(config: LedgerConfig, env: Mapping[str, str]) -> LedgerConfig:
    overrides: dict = {}

    database_url = env.get("DATABASE_URL")
    if database_url:
        config = replace(config, database_url=database_url)
        overrides["database_url"] = database_url

    first, second = config.splits.payees
    npub1 = env.get("SPLIT_NPUB1")
    npub2 = env.get("SPLIT_NPUB2")
    if npub1:
        first = replace(first, subject_key=npub1)
        overrides["split_npub1"] = npub1
    if npub2:
        second = replace(second, subject_key=npub2)
        overrides["split_npub2"] = npub2

    threshold = config.splits.threshold
    if env.get("SPLIT_THRESHOLD_SATS"):
        threshold = parse_positive_int(env["SPLIT_THRESHOLD_SATS"], "SPLIT_THRESHOLD_SATS")
        overrides["split_threshold"] = threshold

    config = replace(
        config,
        splits=SplitsConfig(payees=(first, second), threshold=threshold),
    )

    gate = config.access_gate
    if "CASHU_LOCAL" in env:
        gate = replace(gate, local_mode=parse_bool(env["CASHU_LOCAL"]))
        overrides["cashu_local"] = gate.local_mode
    if env.get("CASHU_LOCAL_STORE_DIR"):
        gate = replace(gate, local_store_dir=env["CASHU_LOCAL_STORE_DIR"])
        overrides["cashu_local_store_dir"] = gate.local_store_dir
    if env.get("CASHUWALL_NPUB"):
        gate = replace(gate, recipient=env["CASHUWALL_NPUB"])
        overrides["cashuwall_npub"] = gate.recipient
    config = replace(config, access_gate=gate)

    if overrides:
        config = replace(
            config,
            checksum=compute_checksum({"base": config.checksum, "env": overrides}),
        )
    return config
