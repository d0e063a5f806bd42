"""Database layer - store handle, base classes and column types."""

from ledger_kernel.db.base import UUID, Base, UTCDateTime, UUIDString
from ledger_kernel.db.engine import DEFAULT_DATABASE_URL, LedgerStore

__all__ = [
    "LedgerStore",
    "DEFAULT_DATABASE_URL",
    "Base",
    "UUIDString",
    "UTCDateTime",
    "UUID",
]
