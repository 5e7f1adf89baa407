"""
Module: pool_kernel.db.types
Responsibility: Column types for financial-grade Decimal storage.
Architecture position: Kernel > DB.  May be imported by models/ only.

Invariants enforced:
    CRITICAL: No floats anywhere in the pool kernel.  Amounts, shares and
    prices are Decimal end to end.  PostgreSQL stores them as
    NUMERIC(38, 18); SQLite, which has no exact decimal type, stores the
    canonical string form so nothing is rounded through REAL.
"""

from decimal import Decimal

from sqlalchemy import Numeric, String
from sqlalchemy.types import TypeDecorator


class DecimalText(TypeDecorator):
    """
    Decimal stored as its canonical string.

    Contract:
        Used only as the SQLite variant of the Decimal column type.

    Guarantees:
        - process_bind_param: Decimal -> str without exponent loss.
        - process_result_value: str -> Decimal, exact round trip.
    """

    impl = String(80)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return format(Decimal(value), "f")

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return Decimal(value)


def decimal_column_type():
    """Decimal column type: NUMERIC(38, 18), string-backed on SQLite."""
    return Numeric(38, 18, asdecimal=True).with_variant(DecimalText(), "sqlite")
