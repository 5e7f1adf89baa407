"""
CreditService -- borrower drawdowns, payments and bill refresh.

Responsibility:
    Runs the borrower-facing side of a pool's credits: drawing down (plain
    or against a receivable), paying (plain or through a receivable),
    rolling bills forward, and reporting what is due.  Payments are split
    into profit (yield, late fees), principal and, for defaulted credits,
    loss recovery, and handed to ``PoolService`` for distribution.

Architecture position:
    Services -- imperative shell.  Billing arithmetic is delegated to
    ``pool_engines.credit_due``; this service owns the state machine:

        Approved --drawdown--> GoodStanding --missed >= delayed--> Delayed
        Delayed --past due cleared--> GoodStanding
        GoodStanding/Delayed --missed >= default threshold--> Defaulted
        GoodStanding --payoff in the final period--> Closed

    Administrative closes and defaults live in ``CreditManagerService``.

Invariants enforced:
    - Drawdowns never exceed ``available_credit``, nor the unused advance
      of the receivable they are drawn against.
    - Profit is recognised on a cash basis: only paid yield, late fees and
      withheld front-loading fees reach the waterfall.
    - A defaulted credit's payments restore booked losses before anything
      is treated as profit.
    ATOMIC_OPERATIONS -- every operation runs in one savepoint.

Failure modes:
    - ``CreditNotFoundError`` for an unknown borrower.
    - ``InvalidStateTransitionError`` when the credit state forbids the
      operation.
    - ``InsufficientCreditError``, ``MaturityExceededError``,
      ``InvalidReceivableStateError``, ``PaymentExceedsDueError``,
      ``InsufficientLiquidityError`` and ``PoolDisabledError`` as
      documented per operation.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import Decimal

from sqlalchemy import select

from pool_engines.calendar import is_matured
from pool_engines.credit_due import (
    BillRefresh,
    CreditBill,
    CreditTerms,
    apply_drawdown,
    apply_payment,
    dist_borrowing_amount,
    refresh_bill,
)
from pool_kernel.domain.dtos import CreditRecordInfo
from pool_kernel.domain.values import ZERO, CreditKind, CreditState, ReceivableState, apply_bps
from pool_kernel.exceptions import (
    CreditNotFoundError,
    InsufficientCreditError,
    InvalidReceivableStateError,
    InvalidStateTransitionError,
    MaturityExceededError,
    PaymentExceedsDueError,
    ReceivableNotFoundError,
)
from pool_kernel.logging_config import LogContext, get_logger
from pool_kernel.models.credit import CreditRecord, Receivable
from pool_services.base import PoolScopedService, atomic
from pool_services.custody import TransferPurpose, borrower_account

logger = get_logger("services.credit")

_REFRESHABLE_STATES = (CreditState.GOOD_STANDING, CreditState.DELAYED)
_DRAWABLE_STATES = (CreditState.APPROVED, CreditState.GOOD_STANDING)
_PAYABLE_STATES = (CreditState.GOOD_STANDING, CreditState.DELAYED, CreditState.DEFAULTED)


@dataclass(frozen=True)
class PaymentResult:
    """
    Outcome of one borrower payment.

    Guarantees:
        - ``profit + principal == amount_used`` for performing credits.
        - ``recovery + profit == amount_used`` for defaulted credits.
    """

    borrower_id: str
    amount: Decimal
    amount_used: Decimal
    profit: Decimal
    principal: Decimal
    recovery: Decimal
    paid_off: bool
    credit: CreditRecordInfo

    @property
    def unused(self) -> Decimal:
        return self.amount - self.amount_used


class CreditService(PoolScopedService):
    """
    Borrower operations on the credits of one pool.

    Contract:
        The pool's ``credit_kind`` decides which entry points apply:
        ``drawdown`` for credit lines, ``drawdown_with_receivable`` for
        receivable-backed lines and factoring, and
        ``make_payment_with_receivable`` for factoring payments.
    """

    # -------------------------------------------------------------------------
    # Row access and conversions
    # -------------------------------------------------------------------------

    @property
    def kind(self) -> CreditKind:
        return self.config.credit_kind

    def find_record(self, borrower_id: str, *, for_update: bool = False) -> CreditRecord | None:
        stmt = select(CreditRecord).where(
            CreditRecord.pool_id == self.pool_id,
            CreditRecord.borrower_id == borrower_id,
            CreditRecord.credit_kind == self.kind.value,
        )
        if for_update:
            stmt = stmt.with_for_update()
        return self.session.scalars(stmt).one_or_none()

    def record(self, borrower_id: str, *, for_update: bool = False) -> CreditRecord:
        record = self.find_record(borrower_id, for_update=for_update)
        if record is None:
            raise CreditNotFoundError(borrower_id, self.kind.value)
        return record

    def receivable(self, receivable_id: str, *, for_update: bool = False) -> Receivable:
        stmt = select(Receivable).where(
            Receivable.pool_id == self.pool_id,
            Receivable.receivable_id == receivable_id,
        )
        if for_update:
            stmt = stmt.with_for_update()
        receivable = self.session.scalars(stmt).one_or_none()
        if receivable is None:
            raise ReceivableNotFoundError(receivable_id)
        return receivable

    def terms_for(self, record: CreditRecord) -> CreditTerms:
        """Pool credit terms overridden by the terms fixed at approval."""
        return replace(
            self.config.credit_terms,
            yield_bps=record.yield_bps,
            num_of_periods=record.num_of_periods,
            committed_amount=record.committed_amount,
            revolving=record.revolving,
        )

    @staticmethod
    def bill_of(record: CreditRecord) -> CreditBill:
        return CreditBill(
            remaining_periods=record.remaining_periods,
            unbilled_principal=record.unbilled_principal,
            next_due_date=record.next_due_date,
            accrued_yield=record.accrued_yield,
            committed_yield=record.committed_yield,
            paid_yield=record.paid_yield,
            principal_due=record.principal_due,
            yield_past_due=record.yield_past_due,
            principal_past_due=record.principal_past_due,
            late_fee=record.late_fee,
            late_fee_updated_date=record.late_fee_updated_date,
            missed_periods=record.missed_periods,
        )

    @staticmethod
    def store_bill(record: CreditRecord, bill: CreditBill) -> None:
        record.remaining_periods = bill.remaining_periods
        record.unbilled_principal = bill.unbilled_principal
        record.next_due_date = bill.next_due_date
        record.accrued_yield = bill.accrued_yield
        record.committed_yield = bill.committed_yield
        record.paid_yield = bill.paid_yield
        record.principal_due = bill.principal_due
        record.yield_past_due = bill.yield_past_due
        record.principal_past_due = bill.principal_past_due
        record.late_fee = bill.late_fee
        record.late_fee_updated_date = bill.late_fee_updated_date
        record.missed_periods = bill.missed_periods

    @staticmethod
    def _to_dto(record: CreditRecord, bill: CreditBill | None = None) -> CreditRecordInfo:
        info = CreditRecordInfo.from_model(record)
        if bill is None:
            return info
        return replace(
            info,
            remaining_periods=bill.remaining_periods,
            missed_periods=bill.missed_periods,
            next_due_date=bill.next_due_date,
            unbilled_principal=bill.unbilled_principal,
            yield_due=bill.yield_due,
            principal_due=bill.principal_due,
            yield_past_due=bill.yield_past_due,
            principal_past_due=bill.principal_past_due,
            late_fee=bill.late_fee,
        )

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get_credit(self, borrower_id: str) -> CreditRecordInfo:
        return self._to_dto(self.record(borrower_id))

    def get_due_info(self, borrower_id: str) -> CreditRecordInfo:
        """The credit as it would look if refreshed today, without persisting anything."""
        record = self.record(borrower_id)
        if CreditState(record.state) not in _REFRESHABLE_STATES:
            return self._to_dto(record)
        refreshed = refresh_bill(
            bill=self.bill_of(record),
            terms=self.terms_for(record),
            as_of=self._clock.today(),
            places=self.places,
        )
        return self._to_dto(record, refreshed.bill)

    def payoff_amount(self, borrower_id: str) -> Decimal:
        """Amount that clears the credit today."""
        return self.get_due_info(borrower_id).payoff

    # -------------------------------------------------------------------------
    # Refresh and default
    # -------------------------------------------------------------------------

    def refresh_credit(self, borrower_id: str) -> CreditRecordInfo:
        """Roll the bill forward to today and apply any state change it causes.

        May move the credit to Delayed, or to Defaulted when the missed
        periods reach the default threshold and ``auto_default`` is on.
        """
        with LogContext.bind(pool_id=self.pool_id, borrower_id=borrower_id):
            record = self.record(borrower_id, for_update=True)
            self.refresh_record(record)
        return self._to_dto(record)

    def refresh_record(self, record: CreditRecord) -> BillRefresh:
        bill = self.bill_of(record)
        state = CreditState(record.state)
        if state not in _REFRESHABLE_STATES:
            return BillRefresh(bill=bill, periods_passed=0, periods_missed=0)

        terms = self.terms_for(record)
        result = refresh_bill(bill=bill, terms=terms, as_of=self._clock.today(), places=self.places)

        with atomic(self.session):
            if result.bill != bill:
                self.store_bill(record, result.bill)

            missed = result.bill.missed_periods
            if state == CreditState.GOOD_STANDING and missed >= terms.delayed_threshold:
                record.state = CreditState.DELAYED.value
                logger.warning("credit_delayed", extra={
                    "borrower_id": record.borrower_id,
                    "missed_periods": missed,
                    "past_due": str(result.bill.past_due),
                })

            if terms.auto_default and missed >= terms.default_threshold_periods:
                self.default_credit(record, reason="missed_periods")

        return result

    def default_credit(self, record: CreditRecord, *, reason: str, actor_id: str | None = None) -> None:
        """Mark the credit Defaulted and book its outstanding principal as pool loss.

        Raises:
            PoolDisabledError: if the pool is disabled.
        """
        loss = self.bill_of(record).principal
        with atomic(self.session):
            record.state = CreditState.DEFAULTED.value
            record.default_loss = loss
            record.available_credit = ZERO
            distribution = self._registry.pool(self.pool_id).distribute_loss(
                loss, reference=f"default:{record.borrower_id}",
            )

        logger.warning("credit_defaulted", extra={
            "borrower_id": record.borrower_id,
            "reason": reason,
            "actor_id": actor_id,
            "default_loss": str(loss),
            "shortfall": str(distribution.shortfall),
        })

    # -------------------------------------------------------------------------
    # Drawdown
    # -------------------------------------------------------------------------

    def drawdown(self, borrower_id: str, amount: Decimal) -> CreditRecordInfo:
        """Draw ``amount`` on a credit line.

        The borrower receives ``amount`` minus front-loading fees; the full
        ``amount`` is owed and the fees are distributed as profit.

        Raises:
            PoolDisabledError: if the pool is disabled.
            InvalidStateTransitionError: unless the credit is Approved or
                in GoodStanding after refresh.
            MaturityExceededError: if the credit has matured.
            InsufficientCreditError: if ``amount`` exceeds available credit.
            InsufficientLiquidityError: if the pool safe cannot fund it.
        """
        if self.kind != CreditKind.CREDIT_LINE:
            raise ValueError(f"{self.kind.value} credits draw down with a receivable")
        with LogContext.bind(pool_id=self.pool_id, borrower_id=borrower_id):
            return self._drawdown(borrower_id, amount, None)

    def drawdown_with_receivable(
        self, borrower_id: str, receivable_id: str, amount: Decimal,
    ) -> CreditRecordInfo:
        """Draw ``amount`` against an approved receivable.

        Raises:
            ReceivableNotFoundError: if the receivable is unknown or belongs
                to another borrower.
            InvalidReceivableStateError: unless the receivable is Approved
                (and, for factoring, not yet drawn).
            MaturityExceededError: if the receivable has matured.
            InsufficientCreditError: if ``amount`` exceeds the receivable's
                unused advance or the available credit.
        """
        if self.kind == CreditKind.CREDIT_LINE:
            raise ValueError("Credit lines are not drawn against receivables")
        with LogContext.bind(pool_id=self.pool_id, borrower_id=borrower_id):
            return self._drawdown(borrower_id, amount, receivable_id)

    def _drawdown(
        self, borrower_id: str, amount: Decimal, receivable_id: str | None,
    ) -> CreditRecordInfo:
        pool = self._registry.pool(self.pool_id)
        pool.require_enabled("drawdown")
        if amount <= ZERO:
            raise ValueError(f"Drawdown amount must be positive: {amount}")

        today = self._clock.today()
        # The refresh shares the drawdown's savepoint: a rejected drawdown
        # leaves no state change or default loss behind.
        with atomic(self.session):
            record = self.record(borrower_id, for_update=True)
            self.refresh_record(record)

            state = CreditState(record.state)
            if state not in _DRAWABLE_STATES:
                raise InvalidStateTransitionError(borrower_id, state.value, "drawdown")
            bill = self.bill_of(record)
            if bill.remaining_periods < 1:
                raise MaturityExceededError(borrower_id, str(bill.next_due_date), str(today))

            receivable = None
            if receivable_id is not None:
                receivable = self._drawable_receivable(borrower_id, receivable_id, amount)

            if amount > record.available_credit:
                raise InsufficientCreditError(borrower_id, amount, record.available_credit)

            terms = self.terms_for(record)
            to_borrower, fees = dist_borrowing_amount(amount=amount, terms=terms, places=self.places)
            new_bill = apply_drawdown(bill=bill, amount=amount, terms=terms, as_of=today, places=self.places)
            reference = f"drawdown:{borrower_id}" if receivable_id is None else f"receivable:{receivable_id}"

            pool.pay_out(to_borrower, borrower_account(borrower_id), TransferPurpose.DRAWDOWN, reference)
            self.store_bill(record, new_bill)
            record.available_credit -= amount
            record.total_drawn += amount
            record.state = CreditState.GOOD_STANDING.value
            if receivable is not None:
                receivable.drawn_amount += amount
            if fees > ZERO:
                pool.distribute_profit(fees, reference=reference)

        logger.info("credit_drawdown", extra={
            "borrower_id": borrower_id,
            "amount": str(amount),
            "to_borrower": str(to_borrower),
            "front_loading_fees": str(fees),
            "receivable_id": receivable_id,
            "next_due_date": new_bill.next_due_date,
            "available_credit": str(record.available_credit),
        })
        return self._to_dto(record)

    def _drawable_receivable(self, borrower_id: str, receivable_id: str, amount: Decimal) -> Receivable:
        receivable = self.receivable(receivable_id, for_update=True)
        if receivable.borrower_id != borrower_id:
            raise ReceivableNotFoundError(receivable_id)
        if receivable.state != ReceivableState.APPROVED.value:
            raise InvalidReceivableStateError(
                receivable_id, receivable.state, ReceivableState.APPROVED.value,
            )
        today = self._clock.today()
        if is_matured(receivable.maturity_date, today):
            raise MaturityExceededError(receivable_id, str(receivable.maturity_date), str(today))
        if self.kind == CreditKind.RECEIVABLE_FACTORING and receivable.drawn_amount > ZERO:
            raise InvalidReceivableStateError(receivable_id, "drawn", "undrawn")

        advance = apply_bps(receivable.amount, receivable.advance_rate_bps, self.places)
        unused_advance = max(ZERO, advance - receivable.drawn_amount)
        if amount > unused_advance:
            raise InsufficientCreditError(borrower_id, amount, unused_advance)
        return receivable

    # -------------------------------------------------------------------------
    # Payment
    # -------------------------------------------------------------------------

    def make_payment(self, borrower_id: str, amount: Decimal) -> PaymentResult:
        """Apply a borrower payment.

        Payments are applied to late fee, yield past due, principal past
        due, yield due, principal due and unbilled principal in that order;
        whatever exceeds the payoff is left unused.  Paying off in the final
        period closes the credit.

        Raises:
            PoolDisabledError: if the pool is disabled.
            InvalidStateTransitionError: if the credit is Approved (nothing
                drawn) or Closed.
        """
        if self.kind == CreditKind.RECEIVABLE_FACTORING:
            raise ValueError("Factoring credits are paid through their receivable")
        with LogContext.bind(pool_id=self.pool_id, borrower_id=borrower_id):
            return self._make_payment(borrower_id, amount, reference=f"payment:{borrower_id}")

    def make_payment_with_receivable(
        self, borrower_id: str, receivable_id: str, amount: Decimal,
    ) -> PaymentResult:
        """Apply a payment made through one of the borrower's receivables.

        Raises:
            InvalidReceivableStateError: unless the receivable is Approved
                or PartiallyPaid.
            PaymentExceedsDueError: if ``amount`` exceeds the receivable's
                unpaid balance.
        """
        if self.kind == CreditKind.CREDIT_LINE:
            raise ValueError("Credit lines have no receivables")
        with LogContext.bind(pool_id=self.pool_id, borrower_id=borrower_id):
            receivable = self.receivable(receivable_id, for_update=True)
            if receivable.borrower_id != borrower_id:
                raise ReceivableNotFoundError(receivable_id)
            if receivable.state not in (
                ReceivableState.APPROVED.value, ReceivableState.PARTIALLY_PAID.value,
            ):
                raise InvalidReceivableStateError(
                    receivable_id, receivable.state, "approved or partially_paid",
                )
            outstanding = receivable.amount - receivable.paid_amount
            if amount > outstanding:
                raise PaymentExceedsDueError(receivable_id, amount, outstanding)

            with atomic(self.session):
                result = self._make_payment(borrower_id, amount, reference=f"receivable:{receivable_id}")
                receivable.paid_amount += amount
                if receivable.paid_amount >= receivable.amount:
                    receivable.state = ReceivableState.PAID.value
                else:
                    receivable.state = ReceivableState.PARTIALLY_PAID.value

            logger.info("receivable_payment", extra={
                "receivable_id": receivable_id,
                "amount": str(amount),
                "paid_amount": str(receivable.paid_amount),
                "receivable_state": receivable.state,
            })
            return result

    def _make_payment(self, borrower_id: str, amount: Decimal, *, reference: str) -> PaymentResult:
        pool = self._registry.pool(self.pool_id)
        pool.require_enabled("make_payment")
        if amount <= ZERO:
            raise ValueError(f"Payment amount must be positive: {amount}")

        with atomic(self.session):
            record = self.record(borrower_id, for_update=True)
            self.refresh_record(record)

            state = CreditState(record.state)
            if state not in _PAYABLE_STATES:
                raise InvalidStateTransitionError(borrower_id, state.value, "make_payment")

            allocation = apply_payment(bill=self.bill_of(record), amount=amount)
            used = allocation.amount_used

            if used > ZERO:
                pool.receive(used, borrower_account(borrower_id), TransferPurpose.PAYMENT, reference)
            self.store_bill(record, allocation.bill)

            if state == CreditState.DEFAULTED:
                recoverable = max(ZERO, record.default_loss - record.loss_recovered)
                recovery = pool.distribute_loss_recovery(min(used, recoverable), reference=reference)
                record.loss_recovered += recovery.applied
                profit = used - recovery.applied
                principal = ZERO
                recovered = recovery.applied
            else:
                profit = allocation.profit_paid
                principal = allocation.principal_paid
                recovered = ZERO
                if record.revolving and principal > ZERO:
                    headroom = record.credit_limit - allocation.bill.principal
                    record.available_credit = max(
                        record.available_credit, min(record.available_credit + principal, headroom),
                    )
                self._after_payment(record, state, allocation.paid_off, allocation.past_due_cleared)

            if profit > ZERO:
                pool.distribute_profit(profit, reference=reference)

        logger.info("credit_payment", extra={
            "borrower_id": borrower_id,
            "amount": str(amount),
            "amount_used": str(used),
            "profit": str(profit),
            "principal": str(principal),
            "recovery": str(recovered),
            "credit_state": record.state,
        })
        return PaymentResult(
            borrower_id=borrower_id,
            amount=amount,
            amount_used=used,
            profit=profit,
            principal=principal,
            recovery=recovered,
            paid_off=allocation.paid_off,
            credit=self._to_dto(record),
        )

    def _after_payment(
        self,
        record: CreditRecord,
        state: CreditState,
        paid_off: bool,
        past_due_cleared: bool,
    ) -> None:
        if paid_off and record.remaining_periods <= 1:
            record.state = CreditState.CLOSED.value
            record.available_credit = ZERO
            logger.info("credit_closed", extra={
                "borrower_id": record.borrower_id,
                "reason": "paid_off",
            })
        elif state == CreditState.DELAYED and past_due_cleared:
            record.state = CreditState.GOOD_STANDING.value
            logger.info("credit_back_in_good_standing", extra={
                "borrower_id": record.borrower_id,
            })
