"""
Ledger Kernel

An append-only, idempotent event ledger with derived aggregates:
- Reference-id deduplicated event tables
- Materialized per-subject totals updated in the same transaction
- Drift detection and repair (reconciliation)
- Threshold-triggered payouts with retryable failure semantics
"""

__version__ = "0.1.0"
