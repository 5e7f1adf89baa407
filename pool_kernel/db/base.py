"""
Declarative base for the pool ledger tables.

Responsibility:
    Column conventions shared by every model: surrogate UUID keys stored as
    text, exact Decimal amounts, timezone-aware timestamps.

Architecture position:
    Kernel > DB.  Imported by ``pool_kernel.models``; imports nothing above
    ``pool_kernel.db``.

Invariants enforced:
    - Amounts, shares and prices map to ``decimal_column_type()``; no model
      declares a float column.
    - Surrogate ``id`` only.  Business keys (pool id, tranche, epoch id,
      borrower, lender) carry their own unique constraints.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID, uuid4

from sqlalchemy import BigInteger, Date, DateTime, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from pool_kernel.db.types import decimal_column_type


class UUIDString(TypeDecorator):
    """``uuid.UUID`` persisted as its 36-character text form."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(UUID(str(value)))

    def process_result_value(self, value, dialect):
        return None if value is None else UUID(value)


class Base(DeclarativeBase):
    type_annotation_map: ClassVar[dict] = {
        Decimal: decimal_column_type(),
        datetime: DateTime(timezone=True),
        date: Date(),
        UUID: UUIDString(),
        int: BigInteger,
    }

    id: Mapped[UUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)


class TrackedBase(Base):
    """
    Base for ledger tables with row timestamps.

    Guarantees:
        - ``created_at`` is filled by the database on insert.
        - ``updated_at`` is refreshed on every ORM update.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(server_default=func.now(), onupdate=func.now())
