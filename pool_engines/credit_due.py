"""
Module: pool_engines.credit_due
Responsibility:
    Billing arithmetic for a credit: front-loading fees, opening and growing
    the bill on drawdown, rolling the bill forward across period boundaries
    (missed periods, late fees, amortisation), administrative adjustments
    (yield repricing, period extensions, late-fee waivers, starting a
    committed credit), allocating payments to bill buckets, and payoff
    amounts.

Architecture position:
    Engines -- pure calculation layer, zero I/O, no clock access.
    CreditService owns state transitions; this module only returns new
    CreditBill values and the facts (periods missed, buckets paid) the
    service needs to decide them.

Invariants enforced:
    - Yield due is ``max(accrued_yield, committed_yield) - paid_yield`` so a
      commitment guarantees a minimum return regardless of utilisation.
    - Payments are applied strictly in the order late fee, yield past due,
      principal past due, yield due, principal due, unbilled principal; a
      payment never makes a bucket negative.
    - Yield uses the 30/360 day count and is truncated.

Failure modes:
    - ValueError on negative amounts or when fees exceed the drawdown.

Usage:
    bill = apply_drawdown(bill=CreditBill(remaining_periods=12), amount=Decimal("1000"),
                          terms=terms, as_of=date(2024, 1, 15), places=6)
    refreshed = refresh_bill(bill=bill, terms=terms, as_of=date(2024, 3, 5), places=6)
    allocation = apply_payment(bill=refreshed.bill, amount=Decimal("120"))
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date, timedelta
from decimal import Decimal

from pool_engines.calendar import (
    DAYS_IN_A_YEAR,
    PeriodDuration,
    days_diff,
    days_in_period,
    start_of_next_period,
    start_of_period,
)
from pool_engines.tracer import traced_engine
from pool_kernel.domain.values import BPS_FACTOR, ZERO, apply_bps, round_down
from pool_kernel.logging_config import get_logger

logger = get_logger("engines.credit_due")


@dataclass(frozen=True)
class CreditTerms:
    """
    Billing terms of one credit.

    Contract:
        ``delayed_threshold`` and ``default_threshold_periods`` count missed
        periods.  ``principal_rate_bps`` is the share of unbilled principal
        billed each period; the final period bills all of it.
    Guarantees:
        - Basis-point rates are within [0, 10000]; thresholds are positive.
    """

    yield_bps: int
    num_of_periods: int
    period_duration: PeriodDuration = PeriodDuration.MONTHLY
    committed_amount: Decimal = ZERO
    principal_rate_bps: int = 0
    revolving: bool = True
    front_loading_fee_flat: Decimal = ZERO
    front_loading_fee_bps: int = 0
    late_fee_flat: Decimal = ZERO
    late_fee_bps: int = 0
    late_payment_grace_period_days: int = 0
    delayed_threshold: int = 1
    default_threshold_periods: int = 3
    auto_default: bool = True
    advance_rate_bps: int = 10000

    def __post_init__(self) -> None:
        if self.num_of_periods < 1:
            raise ValueError("num_of_periods must be at least 1")
        if self.yield_bps < 0:
            raise ValueError("yield_bps cannot be negative")
        for name in ("principal_rate_bps", "front_loading_fee_bps", "late_fee_bps", "advance_rate_bps"):
            value = getattr(self, name)
            if value < 0 or value > BPS_FACTOR:
                raise ValueError(f"{name} must be within [0, 10000], got {value}")
        if self.delayed_threshold < 1 or self.default_threshold_periods < self.delayed_threshold:
            raise ValueError("Thresholds must satisfy 1 <= delayed_threshold <= default_threshold_periods")
        if self.committed_amount < ZERO:
            raise ValueError("committed_amount cannot be negative")


@dataclass(frozen=True)
class CreditBill:
    """
    The billing buckets of a credit.

    Contract:
        ``remaining_periods`` counts billing periods left including the
        current one, so ``remaining_periods == 1`` is the final period and
        zero means the credit has matured.
    """

    remaining_periods: int
    unbilled_principal: Decimal = ZERO
    next_due_date: date | None = None
    accrued_yield: Decimal = ZERO
    committed_yield: Decimal = ZERO
    paid_yield: Decimal = ZERO
    principal_due: Decimal = ZERO
    yield_past_due: Decimal = ZERO
    principal_past_due: Decimal = ZERO
    late_fee: Decimal = ZERO
    late_fee_updated_date: date | None = None
    missed_periods: int = 0

    @property
    def yield_due(self) -> Decimal:
        return max(ZERO, max(self.accrued_yield, self.committed_yield) - self.paid_yield)

    @property
    def next_due(self) -> Decimal:
        return self.yield_due + self.principal_due

    @property
    def past_due(self) -> Decimal:
        return self.late_fee + self.yield_past_due + self.principal_past_due

    @property
    def payoff(self) -> Decimal:
        return self.past_due + self.next_due + self.unbilled_principal

    @property
    def principal(self) -> Decimal:
        return self.unbilled_principal + self.principal_due + self.principal_past_due

    @property
    def is_final_period(self) -> bool:
        return self.remaining_periods <= 1

    @property
    def is_opened(self) -> bool:
        return self.next_due_date is not None


def calc_yield(amount: Decimal, yield_bps: int, days: int, places: int) -> Decimal:
    """``amount * yield_bps * days / 360 / 10000``, truncated."""
    if amount <= ZERO or days <= 0:
        return ZERO
    return round_down(amount * Decimal(yield_bps) * days / DAYS_IN_A_YEAR / BPS_FACTOR, places)


# =============================================================================
# Drawdown
# =============================================================================


def front_loading_fees(*, amount: Decimal, terms: CreditTerms, places: int) -> Decimal:
    """Flat plus proportional fee charged on a drawdown."""
    return terms.front_loading_fee_flat + apply_bps(amount, terms.front_loading_fee_bps, places)


def dist_borrowing_amount(
    *, amount: Decimal, terms: CreditTerms, places: int,
) -> tuple[Decimal, Decimal]:
    """Split a drawdown into ``(amount_to_borrower, fees)``.

    Raises:
        ValueError: if the fees exceed the drawdown amount.
    """
    fees = front_loading_fees(amount=amount, terms=terms, places=places)
    if fees > amount:
        raise ValueError(f"Front-loading fees {fees} exceed drawdown amount {amount}")
    return amount - fees, fees


@traced_engine("credit_due.drawdown", "1.0", fingerprint_fields=("bill", "amount", "as_of"))
def apply_drawdown(
    *,
    bill: CreditBill,
    amount: Decimal,
    terms: CreditTerms,
    as_of: date,
    places: int,
) -> CreditBill:
    """Add a drawdown of ``amount`` to the bill.

    The first drawdown opens the first billing period, which ends at the
    start of the next calendar pay period.  Later drawdowns accrue yield for
    the days left in the current period.  The bill must already be refreshed
    to ``as_of``.

    Pure function.
    """
    if amount <= ZERO:
        raise ValueError(f"Drawdown amount must be positive: {amount}")
    if bill.remaining_periods < 1:
        raise ValueError("Cannot draw down on a matured credit")

    if not bill.is_opened:
        next_due_date = start_of_next_period(terms.period_duration, as_of)
        days = days_diff(as_of, next_due_date)
        if bill.is_final_period:
            principal_due = amount
        else:
            principal_due = apply_bps(amount, terms.principal_rate_bps, places)
        return replace(
            bill,
            next_due_date=next_due_date,
            unbilled_principal=amount - principal_due,
            principal_due=principal_due,
            accrued_yield=calc_yield(amount, terms.yield_bps, days, places),
            committed_yield=calc_yield(terms.committed_amount, terms.yield_bps, days, places),
            paid_yield=ZERO,
        )

    if bill.next_due_date is not None and as_of >= bill.next_due_date:
        raise ValueError(f"Bill is stale: due date {bill.next_due_date} is not after {as_of}")

    days = days_diff(as_of, bill.next_due_date)
    return replace(
        bill,
        unbilled_principal=bill.unbilled_principal + amount,
        accrued_yield=bill.accrued_yield + calc_yield(amount, terms.yield_bps, days, places),
    )


# =============================================================================
# Refresh
# =============================================================================


@dataclass(frozen=True)
class BillRefresh:
    """A bill rolled forward to a date, with the periods it crossed."""

    bill: CreditBill
    periods_passed: int
    periods_missed: int

    @property
    def changed(self) -> bool:
        return self.periods_passed > 0 or self.periods_missed > 0


def in_grace_period(bill: CreditBill) -> bool:
    """True while a rolled-over due is unpaid but not yet counted as missed."""
    return bill.missed_periods == 0 and bill.past_due > ZERO


def late_payment_deadline(bill: CreditBill, terms: CreditTerms) -> date | None:
    """Last day of grace for a due rolled into past due at the latest boundary.

    ``None`` unless the bill is in its grace period.
    """
    if bill.next_due_date is None or not in_grace_period(bill):
        return None
    boundary = start_of_period(terms.period_duration, bill.next_due_date - timedelta(days=1))
    return boundary + timedelta(days=terms.late_payment_grace_period_days)


def _mark_missed(bill: CreditBill, terms: CreditTerms, due_date: date) -> CreditBill:
    return replace(
        bill,
        missed_periods=bill.missed_periods + 1,
        late_fee=bill.late_fee + terms.late_fee_flat,
        late_fee_updated_date=bill.late_fee_updated_date or due_date,
    )


def _accrue_late_fee(bill: CreditBill, terms: CreditTerms, as_of: date, places: int) -> CreditBill:
    if bill.missed_periods == 0 or bill.late_fee_updated_date is None:
        return bill
    if as_of <= bill.late_fee_updated_date:
        return bill
    days_late = days_diff(bill.late_fee_updated_date, as_of)
    fee = calc_yield(bill.principal, terms.late_fee_bps, days_late, places)
    return replace(bill, late_fee=bill.late_fee + fee, late_fee_updated_date=as_of)


def _roll(bill: CreditBill, terms: CreditTerms, places: int) -> CreditBill:
    """Close the period ending at ``bill.next_due_date`` and bill the next one."""
    period_start = bill.next_due_date
    remaining_periods = max(0, bill.remaining_periods - 1)
    unbilled = bill.unbilled_principal
    principal_past_due = bill.principal_past_due + bill.principal_due
    days = days_in_period(terms.period_duration)

    if remaining_periods <= 1:
        principal_due = unbilled
    else:
        principal_due = apply_bps(unbilled, terms.principal_rate_bps, places)

    return replace(
        bill,
        remaining_periods=remaining_periods,
        unbilled_principal=unbilled - principal_due,
        next_due_date=start_of_next_period(terms.period_duration, period_start),
        accrued_yield=calc_yield(unbilled + principal_past_due, terms.yield_bps, days, places),
        committed_yield=(
            calc_yield(terms.committed_amount, terms.yield_bps, days, places)
            if remaining_periods > 0 else ZERO
        ),
        paid_yield=ZERO,
        principal_due=principal_due,
        yield_past_due=bill.yield_past_due + bill.yield_due,
        principal_past_due=principal_past_due,
    )


@traced_engine("credit_due.refresh", "1.0", fingerprint_fields=("bill", "as_of"))
def refresh_bill(
    *,
    bill: CreditBill,
    terms: CreditTerms,
    as_of: date,
    places: int,
) -> BillRefresh:
    """Roll the bill forward across every period boundary up to ``as_of``.

    At each boundary unpaid next due moves into past due, the remaining
    periods count down, and a new bill is computed on the outstanding
    principal.  After the final period all unbilled principal is due.

    Unpaid due counts as a missed period (charging the flat late fee) once
    it is past its due date, except that a credit with nothing missed so
    far gets ``late_payment_grace_period_days`` after the due date first.
    Late fees then accrue daily on the principal while any period is missed.

    Pure function.
    """
    if bill.next_due_date is None:
        return BillRefresh(bill=bill, periods_passed=0, periods_missed=0)

    missed = 0
    current = bill
    deadline = late_payment_deadline(current, terms)
    if deadline is not None and as_of >= deadline:
        current = _mark_missed(current, terms, deadline - timedelta(days=terms.late_payment_grace_period_days))
        missed += 1

    passed = 0
    while current.next_due_date <= as_of:
        due_date = current.next_due_date
        unpaid = current.next_due > ZERO
        graced = (
            current.missed_periods == 0
            and current.past_due == ZERO
            and as_of < due_date + timedelta(days=terms.late_payment_grace_period_days)
        )
        current = _roll(current, terms, places)
        if unpaid and not graced:
            current = _mark_missed(current, terms, due_date)
            missed += 1
        passed += 1

    current = _accrue_late_fee(current, terms, as_of, places)

    if passed or missed:
        logger.debug("bill_refreshed", extra={
            "periods_passed": passed,
            "periods_missed": missed,
            "next_due_date": current.next_due_date,
            "next_due": str(current.next_due),
            "past_due": str(current.past_due),
            "in_grace_period": in_grace_period(current),
        })

    return BillRefresh(bill=current, periods_passed=passed, periods_missed=missed)


# =============================================================================
# Adjustments
# =============================================================================


@traced_engine("credit_due.start_committed", "1.0", fingerprint_fields=("bill", "as_of"))
def start_committed_bill(
    *,
    bill: CreditBill,
    terms: CreditTerms,
    as_of: date,
    places: int,
) -> CreditBill:
    """Open the first period of a committed credit that has drawn nothing.

    The period ends at the start of the next pay period; only committed
    yield is billed for it.

    Pure function.
    """
    if bill.is_opened:
        raise ValueError("Bill is already open")
    if bill.remaining_periods < 1:
        raise ValueError("Cannot start a matured credit")
    if terms.committed_amount <= ZERO:
        raise ValueError("Credit has no committed amount")

    next_due_date = start_of_next_period(terms.period_duration, as_of)
    days = days_diff(as_of, next_due_date)
    return replace(
        bill,
        next_due_date=next_due_date,
        accrued_yield=ZERO,
        committed_yield=calc_yield(terms.committed_amount, terms.yield_bps, days, places),
        paid_yield=ZERO,
    )


@traced_engine("credit_due.reprice", "1.0", fingerprint_fields=("bill", "new_yield_bps", "as_of"))
def reprice_yield(
    *,
    bill: CreditBill,
    terms: CreditTerms,
    new_yield_bps: int,
    as_of: date,
    places: int,
) -> CreditBill:
    """Charge the rest of the current period at ``new_yield_bps``.

    ``terms`` carry the old rate.  Accrued and committed yield for the days
    from ``as_of`` to the due date are taken out at the old rate and put
    back at the new one; days already elapsed keep the old rate.  The bill
    must already be refreshed to ``as_of``.

    Pure function.
    """
    if new_yield_bps < 0:
        raise ValueError(f"yield_bps cannot be negative: {new_yield_bps}")
    if bill.next_due_date is None:
        return bill
    if as_of >= bill.next_due_date:
        raise ValueError(f"Bill is stale: due date {bill.next_due_date} is not after {as_of}")

    days = days_diff(as_of, bill.next_due_date)

    def repriced(current: Decimal, base: Decimal) -> Decimal:
        old = calc_yield(base, terms.yield_bps, days, places)
        new = calc_yield(base, new_yield_bps, days, places)
        return max(ZERO, current - old + new)

    committed_yield = bill.committed_yield
    if committed_yield > ZERO:
        committed_yield = repriced(committed_yield, terms.committed_amount)
    return replace(
        bill,
        accrued_yield=repriced(bill.accrued_yield, bill.principal),
        committed_yield=committed_yield,
    )


def extend_periods(bill: CreditBill, periods: int) -> CreditBill:
    """Add ``periods`` billing periods; what is already billed stays due."""
    if periods < 1:
        raise ValueError(f"Extension must be at least one period: {periods}")
    return replace(bill, remaining_periods=bill.remaining_periods + periods)


def waive_late_fee_amount(bill: CreditBill, amount: Decimal) -> tuple[CreditBill, Decimal]:
    """Forgive up to ``amount`` of the late fee; returns ``(bill, waived)``."""
    if amount <= ZERO:
        raise ValueError(f"Waived amount must be positive: {amount}")
    waived = min(amount, bill.late_fee)
    return replace(bill, late_fee=bill.late_fee - waived), waived


# =============================================================================
# Payment
# =============================================================================


@dataclass(frozen=True)
class PaymentAllocation:
    """
    How one payment was spread over the bill buckets.

    Guarantees:
        - ``amount_used <= amount``; the difference is ``unused``.
        - ``profit_paid`` (late fee and yield) and ``principal_paid`` sum to
          ``amount_used``.
    """

    bill: CreditBill
    amount: Decimal
    late_fee_paid: Decimal
    yield_past_due_paid: Decimal
    principal_past_due_paid: Decimal
    yield_due_paid: Decimal
    principal_due_paid: Decimal
    unbilled_principal_paid: Decimal
    paid_off: bool

    @property
    def profit_paid(self) -> Decimal:
        return self.late_fee_paid + self.yield_past_due_paid + self.yield_due_paid

    @property
    def principal_paid(self) -> Decimal:
        return self.principal_past_due_paid + self.principal_due_paid + self.unbilled_principal_paid

    @property
    def amount_used(self) -> Decimal:
        return self.profit_paid + self.principal_paid

    @property
    def unused(self) -> Decimal:
        return self.amount - self.amount_used

    @property
    def past_due_cleared(self) -> bool:
        return self.bill.past_due == ZERO


@traced_engine("credit_due.payment", "1.0", fingerprint_fields=("bill", "amount"))
def apply_payment(*, bill: CreditBill, amount: Decimal) -> PaymentAllocation:
    """Apply ``amount`` to the bill in priority order.

    Clearing all past due resets the missed-period count.  A payment that
    covers the payoff amount zeroes every bucket.

    Pure function.
    """
    if amount < ZERO:
        raise ValueError(f"Payment cannot be negative: {amount}")

    remaining = amount

    def take(owed: Decimal) -> Decimal:
        nonlocal remaining
        paid = min(remaining, owed)
        remaining -= paid
        return paid

    late_fee_paid = take(bill.late_fee)
    yield_past_due_paid = take(bill.yield_past_due)
    principal_past_due_paid = take(bill.principal_past_due)
    yield_due_paid = take(bill.yield_due)
    principal_due_paid = take(bill.principal_due)
    unbilled_paid = take(bill.unbilled_principal)

    past_due_left = bill.past_due - late_fee_paid - yield_past_due_paid - principal_past_due_paid
    cleared_past_due = past_due_left == ZERO

    new_bill = replace(
        bill,
        late_fee=bill.late_fee - late_fee_paid,
        yield_past_due=bill.yield_past_due - yield_past_due_paid,
        principal_past_due=bill.principal_past_due - principal_past_due_paid,
        paid_yield=bill.paid_yield + yield_due_paid,
        principal_due=bill.principal_due - principal_due_paid,
        unbilled_principal=bill.unbilled_principal - unbilled_paid,
        missed_periods=0 if cleared_past_due else bill.missed_periods,
        late_fee_updated_date=None if cleared_past_due else bill.late_fee_updated_date,
    )

    return PaymentAllocation(
        bill=new_bill,
        amount=amount,
        late_fee_paid=late_fee_paid,
        yield_past_due_paid=yield_past_due_paid,
        principal_past_due_paid=principal_past_due_paid,
        yield_due_paid=yield_due_paid,
        principal_due_paid=principal_due_paid,
        unbilled_principal_paid=unbilled_paid,
        paid_off=new_bill.payoff == ZERO,
    )


def payoff_amount(bill: CreditBill) -> Decimal:
    """Amount that clears every bucket of the bill."""
    return bill.payoff
