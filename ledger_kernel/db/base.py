"""
Module: ledger_kernel.db.base
Responsibility: Declarative base and column types shared by every ORM model.
Architecture position: Kernel > DB.  Lowest-level import target inside the
    kernel; MUST NOT import from models/, services/ or selectors/.

Invariants enforced:
    - UUID primary keys: every row gets a uuid4 id.
    - Integer amounts: ``int`` maps to BigInteger; amounts are whole units
      (sats), never floats.
    - Aware timestamps: ``datetime`` maps to UTCDateTime, which hands back
      UTC-aware values even on SQLite (which stores naive text).
"""

from datetime import datetime, timezone
from typing import ClassVar
from uuid import UUID, uuid4

from sqlalchemy import BigInteger, DateTime, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


def _as_utc(value: datetime | None) -> datetime | None:
    # Naive values are taken to be UTC already
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class UUIDString(TypeDecorator):
    """UUID kept as its 36-character text form."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else UUID(value)


class UTCDateTime(TypeDecorator):
    """Datetime column that stores and loads UTC-aware values."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return _as_utc(value)

    def process_result_value(self, value, dialect):
        return _as_utc(value)


class Base(DeclarativeBase):
    """Declarative base for ledger tables; each row carries a uuid4 ``id``."""

    type_annotation_map: ClassVar[dict] = {
        datetime: UTCDateTime(),
        UUID: UUIDString(),
        int: BigInteger,
    }

    id: Mapped[UUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)
