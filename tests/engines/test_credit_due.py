"""
Tests for credit billing.

Covers:
- Drawdown: first period, later drawdowns, front-loading fees
- Refresh: roll into past due, grace window before a missed period, late fees,
  final-period principal
- Adjustments: committed start, yield repricing, period extension, late-fee waiver
- Payment: allocation order, reset of missed periods, payoff and unused amount
"""

from dataclasses import replace
from datetime import date
from decimal import Decimal

import pytest

from pool_engines.credit_due import (
    CreditBill,
    CreditTerms,
    apply_drawdown,
    apply_payment,
    calc_yield,
    dist_borrowing_amount,
    extend_periods,
    in_grace_period,
    late_payment_deadline,
    payoff_amount,
    refresh_bill,
    reprice_yield,
    start_committed_bill,
    waive_late_fee_amount,
)

TERMS = CreditTerms(yield_bps=1200, num_of_periods=3)


def _drawn(amount: str = "1000", terms: CreditTerms = TERMS, as_of: date = date(2024, 1, 15)) -> CreditBill:
    return apply_drawdown(
        bill=CreditBill(remaining_periods=terms.num_of_periods),
        amount=Decimal(amount),
        terms=terms,
        as_of=as_of,
        places=6,
    )


class TestCalcYield:

    def test_thirty_days_at_twelve_percent(self):
        assert calc_yield(Decimal("1000"), 1200, 30, 6) == Decimal("10")

    def test_truncates(self):
        assert calc_yield(Decimal("1000"), 1200, 16, 6) == Decimal("5.333333")

    def test_zero_days(self):
        assert calc_yield(Decimal("1000"), 1200, 0, 6) == Decimal("0")


class TestDrawdown:

    def test_first_drawdown_opens_period(self):
        bill = _drawn()

        assert bill.next_due_date == date(2024, 2, 1)
        assert bill.unbilled_principal == Decimal("1000")
        assert bill.accrued_yield == Decimal("5.333333")
        assert bill.principal_due == Decimal("0")
        assert bill.remaining_periods == 3

    def test_principal_rate_bills_part_of_principal(self):
        terms = replace(TERMS, principal_rate_bps=1000)

        bill = _drawn(terms=terms)

        assert bill.principal_due == Decimal("100")
        assert bill.unbilled_principal == Decimal("900")

    def test_single_period_credit_bills_everything(self):
        terms = replace(TERMS, num_of_periods=1)

        bill = _drawn(terms=terms)

        assert bill.principal_due == Decimal("1000")
        assert bill.unbilled_principal == Decimal("0")

    def test_committed_amount_sets_minimum_yield(self):
        terms = replace(TERMS, committed_amount=Decimal("5000"))

        bill = _drawn(terms=terms)

        assert bill.committed_yield == Decimal("26.666666")
        assert bill.yield_due == Decimal("26.666666")

    def test_later_drawdown_accrues_rest_of_period(self):
        bill = _drawn()

        bill = apply_drawdown(
            bill=bill, amount=Decimal("500"), terms=TERMS, as_of=date(2024, 1, 25), places=6,
        )

        assert bill.unbilled_principal == Decimal("1500")
        assert bill.accrued_yield == Decimal("5.333333") + Decimal("1")

    def test_stale_bill_rejected(self):
        bill = _drawn()

        with pytest.raises(ValueError):
            apply_drawdown(bill=bill, amount=Decimal("1"), terms=TERMS, as_of=date(2024, 2, 2), places=6)

    def test_matured_credit_rejected(self):
        with pytest.raises(ValueError):
            apply_drawdown(
                bill=CreditBill(remaining_periods=0),
                amount=Decimal("1"), terms=TERMS, as_of=date(2024, 1, 15), places=6,
            )

    def test_front_loading_fees_withheld(self):
        terms = replace(TERMS, front_loading_fee_flat=Decimal("5"), front_loading_fee_bps=100)

        to_borrower, fees = dist_borrowing_amount(amount=Decimal("1000"), terms=terms, places=6)

        assert fees == Decimal("15")
        assert to_borrower == Decimal("985")

    def test_fees_above_amount_rejected(self):
        terms = replace(TERMS, front_loading_fee_flat=Decimal("50"))

        with pytest.raises(ValueError):
            dist_borrowing_amount(amount=Decimal("10"), terms=terms, places=6)


class TestRefresh:

    def test_before_due_date_nothing_changes(self):
        bill = _drawn()

        result = refresh_bill(bill=bill, terms=TERMS, as_of=date(2024, 1, 31), places=6)

        assert result.bill == bill
        assert not result.changed

    def test_unpaid_due_rolls_into_past_due(self):
        bill = _drawn()

        result = refresh_bill(bill=bill, terms=TERMS, as_of=date(2024, 2, 1), places=6)

        assert result.periods_passed == 1
        assert result.periods_missed == 1
        assert result.bill.yield_past_due == Decimal("5.333333")
        assert result.bill.missed_periods == 1
        assert result.bill.remaining_periods == 2
        assert result.bill.next_due_date == date(2024, 3, 1)
        assert result.bill.accrued_yield == Decimal("10")

    def test_paid_period_is_not_missed(self):
        bill = apply_payment(bill=_drawn(), amount=Decimal("5.333333")).bill

        result = refresh_bill(bill=bill, terms=TERMS, as_of=date(2024, 2, 1), places=6)

        assert result.periods_passed == 1
        assert result.periods_missed == 0
        assert result.bill.past_due == Decimal("0")

    def test_grace_period_defers_missed_period(self):
        terms = replace(TERMS, late_payment_grace_period_days=5, late_fee_flat=Decimal("10"))
        bill = _drawn(terms=terms)

        within = refresh_bill(bill=bill, terms=terms, as_of=date(2024, 2, 5), places=6)
        after = refresh_bill(bill=bill, terms=terms, as_of=date(2024, 2, 6), places=6)

        assert within.periods_passed == 1
        assert within.periods_missed == 0
        assert within.bill.next_due_date == date(2024, 3, 1)
        assert within.bill.yield_past_due == Decimal("5.333333")
        assert within.bill.missed_periods == 0
        assert within.bill.late_fee == Decimal("0")
        assert in_grace_period(within.bill)
        assert after.periods_missed == 1
        assert after.bill.late_fee == Decimal("10")
        assert not in_grace_period(after.bill)

    def test_grace_expiry_on_later_refresh(self):
        terms = replace(TERMS, late_payment_grace_period_days=5, late_fee_flat=Decimal("10"))
        within = refresh_bill(bill=_drawn(terms=terms), terms=terms, as_of=date(2024, 2, 3), places=6).bill

        assert late_payment_deadline(within, terms) == date(2024, 2, 6)

        expired = refresh_bill(bill=within, terms=terms, as_of=date(2024, 2, 6), places=6)

        assert expired.periods_passed == 0
        assert expired.periods_missed == 1
        assert expired.bill.missed_periods == 1
        assert expired.bill.late_fee == Decimal("10")

    def test_paying_past_due_within_grace_leaves_nothing_missed(self):
        terms = replace(TERMS, late_payment_grace_period_days=5)
        within = refresh_bill(bill=_drawn(terms=terms), terms=terms, as_of=date(2024, 2, 3), places=6).bill

        paid = apply_payment(bill=within, amount=Decimal("5.333333")).bill
        later = refresh_bill(bill=paid, terms=terms, as_of=date(2024, 2, 10), places=6)

        assert not in_grace_period(paid)
        assert later.periods_missed == 0
        assert later.bill.past_due == Decimal("0")

    def test_drawdown_within_grace_accrues_in_new_period(self):
        terms = replace(TERMS, late_payment_grace_period_days=5)
        within = refresh_bill(bill=_drawn(terms=terms), terms=terms, as_of=date(2024, 2, 3), places=6).bill

        bill = apply_drawdown(bill=within, amount=Decimal("100"), terms=terms, as_of=date(2024, 2, 3), places=6)

        assert bill.unbilled_principal == Decimal("1100")
        assert bill.accrued_yield == Decimal("10") + Decimal("0.933333")
        assert bill.yield_past_due == Decimal("5.333333")

    def test_several_periods_bill_final_principal(self):
        bill = _drawn()

        result = refresh_bill(bill=bill, terms=TERMS, as_of=date(2024, 4, 1), places=6)

        assert result.periods_passed == 3
        assert result.bill.missed_periods == 3
        assert result.bill.remaining_periods == 0
        assert result.bill.principal_past_due == Decimal("1000")
        assert result.bill.unbilled_principal == Decimal("0")

    def test_flat_and_daily_late_fees(self):
        terms = replace(TERMS, late_fee_flat=Decimal("10"), late_fee_bps=3600)
        bill = refresh_bill(bill=_drawn(terms=terms), terms=terms, as_of=date(2024, 2, 1), places=6).bill

        assert bill.late_fee == Decimal("10")

        later = refresh_bill(bill=bill, terms=terms, as_of=date(2024, 2, 11), places=6).bill

        assert later.late_fee == Decimal("20")
        assert later.late_fee_updated_date == date(2024, 2, 11)


class TestAdjustments:

    def test_committed_start_bills_only_commitment(self):
        terms = replace(TERMS, committed_amount=Decimal("3000"))

        bill = start_committed_bill(
            bill=CreditBill(remaining_periods=3), terms=terms, as_of=date(2024, 1, 15), places=6,
        )

        assert bill.next_due_date == date(2024, 2, 1)
        assert bill.committed_yield == Decimal("16")
        assert bill.accrued_yield == Decimal("0")
        assert bill.yield_due == Decimal("16")

    def test_committed_start_needs_commitment(self):
        with pytest.raises(ValueError):
            start_committed_bill(
                bill=CreditBill(remaining_periods=3), terms=TERMS, as_of=date(2024, 1, 15), places=6,
            )

    def test_committed_start_rejects_open_bill(self):
        terms = replace(TERMS, committed_amount=Decimal("3000"))

        with pytest.raises(ValueError):
            start_committed_bill(bill=_drawn(terms=terms), terms=terms, as_of=date(2024, 1, 20), places=6)

    def test_reprice_charges_remaining_days_at_new_rate(self):
        bill = reprice_yield(
            bill=_drawn(), terms=TERMS, new_yield_bps=2400, as_of=date(2024, 1, 21), places=6,
        )

        # 6 days at 12% plus 10 days at 24%
        assert bill.accrued_yield == Decimal("8.666666")

    def test_reprice_moves_committed_yield(self):
        terms = replace(TERMS, committed_amount=Decimal("5000"))

        bill = reprice_yield(
            bill=_drawn(terms=terms), terms=terms, new_yield_bps=2400, as_of=date(2024, 1, 21), places=6,
        )

        assert bill.committed_yield == Decimal("43.333333")

    def test_reprice_unopened_bill_unchanged(self):
        bill = CreditBill(remaining_periods=3)

        assert reprice_yield(
            bill=bill, terms=TERMS, new_yield_bps=2400, as_of=date(2024, 1, 21), places=6,
        ) == bill

    def test_reprice_stale_bill_rejected(self):
        with pytest.raises(ValueError):
            reprice_yield(bill=_drawn(), terms=TERMS, new_yield_bps=2400, as_of=date(2024, 2, 1), places=6)

    def test_extend_adds_periods(self):
        bill = extend_periods(_drawn(), 2)

        assert bill.remaining_periods == 5
        assert bill.next_due_date == date(2024, 2, 1)

    def test_extend_by_zero_rejected(self):
        with pytest.raises(ValueError):
            extend_periods(_drawn(), 0)

    def test_waiver_capped_at_late_fee(self):
        bill = replace(_drawn(), late_fee=Decimal("10"))

        partly, waived = waive_late_fee_amount(bill, Decimal("4"))
        cleared, all_waived = waive_late_fee_amount(bill, Decimal("25"))

        assert (partly.late_fee, waived) == (Decimal("6"), Decimal("4"))
        assert (cleared.late_fee, all_waived) == (Decimal("0"), Decimal("10"))


class TestPayment:

    def _bill(self, remaining_periods: int = 3) -> CreditBill:
        return CreditBill(
            remaining_periods=remaining_periods,
            next_due_date=date(2024, 3, 1),
            unbilled_principal=Decimal("1000"),
            accrued_yield=Decimal("100"),
            yield_past_due=Decimal("50"),
            missed_periods=1,
            late_fee_updated_date=date(2024, 2, 1),
        )

    def test_past_due_then_yield_due(self):
        allocation = apply_payment(bill=self._bill(), amount=Decimal("120"))

        assert allocation.yield_past_due_paid == Decimal("50")
        assert allocation.yield_due_paid == Decimal("70")
        assert allocation.bill.yield_due == Decimal("30")
        assert allocation.bill.past_due == Decimal("0")
        assert allocation.bill.missed_periods == 0
        assert allocation.bill.late_fee_updated_date is None
        assert allocation.profit_paid == Decimal("120")
        assert allocation.principal_paid == Decimal("0")
        assert not allocation.paid_off

    def test_partial_past_due_keeps_missed_periods(self):
        allocation = apply_payment(bill=self._bill(), amount=Decimal("20"))

        assert allocation.bill.yield_past_due == Decimal("30")
        assert allocation.bill.missed_periods == 1

    def test_payoff(self):
        bill = self._bill(remaining_periods=1)
        assert payoff_amount(bill) == Decimal("1150")

        allocation = apply_payment(bill=bill, amount=Decimal("1150"))

        assert allocation.paid_off
        assert allocation.principal_paid == Decimal("1000")
        assert allocation.unused == Decimal("0")

    def test_excess_is_unused(self):
        allocation = apply_payment(bill=self._bill(), amount=Decimal("1200"))

        assert allocation.paid_off
        assert allocation.amount_used == Decimal("1150")
        assert allocation.unused == Decimal("50")

    def test_negative_payment_rejected(self):
        with pytest.raises(ValueError):
            apply_payment(bill=self._bill(), amount=Decimal("-1"))
