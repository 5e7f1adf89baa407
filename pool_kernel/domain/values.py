"""
Values -- Domain enums and Decimal arithmetic helpers.

Responsibility:
    Provides the foundational vocabulary of the pool: tranches, credit and
    receivable states, credit kinds, and the Decimal helpers every engine
    uses for basis-point math and deterministic rounding.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    Imported by every other domain module and by pool_engines.

Invariants enforced:
    - Decimal-only arithmetic: floats are rejected by ``to_decimal``.
    - Rounding toward zero (ROUND_DOWN) for every amount paid OUT of a
      balance, so the ledger can never pay more than it holds.
"""

from __future__ import annotations

from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Any

ZERO = Decimal("0")
BPS_FACTOR = Decimal("10000")

# Share and price precision (independent of the token's decimals).
SHARE_PLACES = 18


class Tranche(str, Enum):
    """Loss-ordered slice of pooled capital."""

    SENIOR = "senior"
    JUNIOR = "junior"


class CreditState(str, Enum):
    """Lifecycle of a credit record.

    Approved -> GoodStanding <-> Delayed -> Defaulted, Closed from
    GoodStanding/Delayed on final payoff and from Defaulted administratively.
    """

    APPROVED = "approved"
    GOOD_STANDING = "good_standing"
    DELAYED = "delayed"
    DEFAULTED = "defaulted"
    CLOSED = "closed"


class CreditKind(str, Enum):
    """Closed family of credit variants."""

    CREDIT_LINE = "credit_line"
    RECEIVABLE_BACKED_CREDIT_LINE = "receivable_backed_credit_line"
    RECEIVABLE_FACTORING = "receivable_factoring"


class ReceivableState(str, Enum):
    """Lifecycle of a receivable."""

    PENDING = "pending"
    APPROVED = "approved"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"
    REJECTED = "rejected"


class EpochStatus(str, Enum):
    """Lifecycle of a redemption epoch."""

    OPEN = "open"
    SETTLING = "settling"
    CLOSED = "closed"


def to_decimal(value: Any) -> Decimal:
    """Convert ``value`` to Decimal, rejecting floats.

    Raises:
        TypeError: for float input.
        ValueError: for values that do not parse.
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        raise TypeError(f"Float amounts are not allowed: {value!r}")
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"Not a decimal amount: {value!r}") from exc


def quantum(places: int) -> Decimal:
    """Return the Decimal quantum for ``places`` decimal places."""
    return Decimal(1).scaleb(-places)


def round_down(value: Decimal, places: int) -> Decimal:
    """Truncate ``value`` toward zero to ``places`` decimal places."""
    return value.quantize(quantum(places), rounding=ROUND_DOWN)


def round_half_up(value: Decimal, places: int) -> Decimal:
    """Round ``value`` half-up to ``places`` decimal places."""
    return value.quantize(quantum(places), rounding=ROUND_HALF_UP)


def apply_bps(amount: Decimal, bps: int | Decimal, places: int) -> Decimal:
    """``amount * bps / 10000`` truncated to ``places``."""
    return round_down(amount * Decimal(bps) / BPS_FACTOR, places)


def mul_div(a: Decimal, b: Decimal, c: Decimal, places: int) -> Decimal:
    """``a * b / c`` truncated to ``places``; zero when ``c`` is zero."""
    if c == ZERO:
        return ZERO
    return round_down(a * b / c, places)
