"""
CreditManagerService -- credit approval, terms, receivables and defaults.

Responsibility:
    The evaluation-agent and administrator side of a pool's credits:
    approving borrowers, changing limits and commitments, starting
    committed credits, repricing yield, extending periods, waiving late
    fees, approving or rejecting receivables, declaring defaults and
    closing credits.

Architecture position:
    Services -- imperative shell.  Reaches ``CreditService`` (bill refresh,
    default booking) and ``PoolService`` through the registry.

Invariants enforced:
    - One active credit per borrower and credit kind; a Closed credit may
      be approved again.
    - ``available_credit`` plus outstanding principal never exceeds the
      credit limit.
    - Only credit approvers approve; only administrators may force a
      default before the missed-period threshold or write off a Defaulted
      credit.

Failure modes:
    - ``UnauthorizedError`` when the actor lacks the required role.
    - ``CreditAlreadyExistsError``, ``CreditNotFoundError``,
      ``InvalidStateTransitionError``, ``ReceivableNotFoundError``,
      ``InvalidReceivableStateError`` and ``MaturityExceededError`` as
      documented per operation.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from sqlalchemy import select

from pool_engines.calendar import is_matured
from pool_engines.credit_due import (
    extend_periods,
    reprice_yield,
    start_committed_bill,
    waive_late_fee_amount,
)
from pool_kernel.domain.dtos import CreditRecordInfo, ReceivableInfo
from pool_kernel.domain.values import ZERO, CreditKind, CreditState, ReceivableState, apply_bps
from pool_kernel.exceptions import (
    CreditAlreadyExistsError,
    InvalidReceivableStateError,
    InvalidStateTransitionError,
    MaturityExceededError,
    UnauthorizedError,
)
from pool_kernel.logging_config import LogContext, get_logger
from pool_kernel.models.credit import CreditRecord, Receivable
from pool_services.base import PoolScopedService, atomic
from pool_services.credit_service import CreditService

logger = get_logger("services.credit_manager")


class CreditManagerService(PoolScopedService):
    """
    Credit administration for one pool.

    Non-goals:
        - Does NOT evaluate borrower creditworthiness; approval terms are
          supplied by the approver.
    """

    @property
    def _credit(self) -> CreditService:
        return self._registry.credit(self.pool_id)

    # -------------------------------------------------------------------------
    # Approval and limits
    # -------------------------------------------------------------------------

    def approve_borrower(
        self,
        actor_id: str,
        borrower_id: str,
        credit_limit: Decimal,
        *,
        yield_bps: int | None = None,
        num_of_periods: int | None = None,
        committed_amount: Decimal | None = None,
        revolving: bool | None = None,
    ) -> CreditRecordInfo:
        """Approve a credit for ``borrower_id``.

        Terms not given default to the pool's credit terms.  Credit lines
        can draw up to the limit immediately; receivable-backed kinds gain
        available credit as their receivables are approved.  Factoring
        credits never revolve.

        Raises:
            UnauthorizedError: if ``actor_id`` is not a credit approver.
            CreditAlreadyExistsError: if the borrower has an open credit.
        """
        self._require_credit_approver(actor_id, "approve_borrower")
        terms = self.config.credit_terms
        kind = self.config.credit_kind
        committed = terms.committed_amount if committed_amount is None else committed_amount
        if credit_limit <= ZERO:
            raise ValueError(f"Credit limit must be positive: {credit_limit}")
        if committed > credit_limit:
            raise ValueError(f"Committed amount {committed} exceeds credit limit {credit_limit}")
        periods = terms.num_of_periods if num_of_periods is None else num_of_periods
        if periods < 1:
            raise ValueError("num_of_periods must be at least 1")
        if kind == CreditKind.RECEIVABLE_FACTORING:
            revolving = False
        elif revolving is None:
            revolving = terms.revolving

        with LogContext.bind(pool_id=self.pool_id, actor_id=actor_id, borrower_id=borrower_id), \
                atomic(self.session):
            existing = self._credit.find_record(borrower_id, for_update=True)
            if existing is not None:
                if existing.state != CreditState.CLOSED.value:
                    raise CreditAlreadyExistsError(borrower_id, kind.value, existing.state)
                self.session.delete(existing)
                self.session.flush()

            record = CreditRecord(
                pool_id=self.pool_id,
                borrower_id=borrower_id,
                credit_kind=kind.value,
                state=CreditState.APPROVED.value,
                credit_limit=credit_limit,
                committed_amount=committed,
                yield_bps=terms.yield_bps if yield_bps is None else yield_bps,
                num_of_periods=periods,
                remaining_periods=periods,
                revolving=revolving,
                available_credit=credit_limit if kind == CreditKind.CREDIT_LINE else ZERO,
                unbilled_principal=ZERO,
                accrued_yield=ZERO,
                committed_yield=ZERO,
                paid_yield=ZERO,
                principal_due=ZERO,
                yield_past_due=ZERO,
                principal_past_due=ZERO,
                late_fee=ZERO,
                missed_periods=0,
                total_drawn=ZERO,
                default_loss=ZERO,
                loss_recovered=ZERO,
            )
            self.session.add(record)

            logger.info("borrower_approved", extra={
                "credit_kind": kind.value,
                "credit_limit": str(credit_limit),
                "committed_amount": str(committed),
                "yield_bps": record.yield_bps,
                "num_of_periods": periods,
                "revolving": revolving,
            })
        return CreditRecordInfo.from_model(record)

    def update_limit(self, actor_id: str, borrower_id: str, credit_limit: Decimal) -> CreditRecordInfo:
        """Change a credit's limit; the commitment is lowered to the new limit if needed."""
        return self.update_limit_and_commitment(actor_id, borrower_id, credit_limit, None)

    def update_limit_and_commitment(
        self,
        actor_id: str,
        borrower_id: str,
        credit_limit: Decimal,
        committed_amount: Decimal | None,
    ) -> CreditRecordInfo:
        """Change a credit's limit and committed amount.

        For credit lines available credit moves with the limit.  It is then
        capped so that it plus outstanding principal stays within the new
        limit.  A ``None`` commitment keeps the current one, lowered to the
        new limit if needed.  The current bill keeps its committed yield;
        the new commitment is billed from the next period on.

        Raises:
            ValueError: if the limit is negative or the commitment is
                negative or above the limit.
            InvalidStateTransitionError: if the credit is Defaulted or Closed.
        """
        self._require_credit_approver(actor_id, "update_limit_and_commitment")
        if credit_limit < ZERO:
            raise ValueError(f"Credit limit cannot be negative: {credit_limit}")
        if committed_amount is not None:
            if committed_amount < ZERO:
                raise ValueError(f"Committed amount cannot be negative: {committed_amount}")
            if committed_amount > credit_limit:
                raise ValueError(f"Committed amount {committed_amount} exceeds credit limit {credit_limit}")

        with LogContext.bind(pool_id=self.pool_id, actor_id=actor_id, borrower_id=borrower_id), \
                atomic(self.session):
            record = self._credit.record(borrower_id, for_update=True)
            if record.state in (CreditState.DEFAULTED.value, CreditState.CLOSED.value):
                raise InvalidStateTransitionError(borrower_id, record.state, "update_limit_and_commitment")
            old_limit = record.credit_limit
            old_committed = record.committed_amount
            headroom = max(ZERO, credit_limit - self._credit.bill_of(record).principal)
            if self.config.credit_kind == CreditKind.CREDIT_LINE:
                available = record.available_credit + (credit_limit - old_limit)
            else:
                available = record.available_credit
            record.available_credit = max(ZERO, min(available, headroom))
            record.credit_limit = credit_limit
            if committed_amount is None:
                record.committed_amount = min(old_committed, credit_limit)
            else:
                record.committed_amount = committed_amount

            logger.info("credit_limit_updated", extra={
                "old_limit": str(old_limit),
                "new_limit": str(credit_limit),
                "old_committed_amount": str(old_committed),
                "committed_amount": str(record.committed_amount),
                "available_credit": str(record.available_credit),
            })
        return CreditRecordInfo.from_model(record)

    # -------------------------------------------------------------------------
    # Term adjustments
    # -------------------------------------------------------------------------

    def start_committed_credit(self, actor_id: str, borrower_id: str) -> CreditRecordInfo:
        """Start billing committed yield on an Approved credit that has not drawn.

        The first period opens today and runs to the start of the next pay
        period; the credit moves to GoodStanding and from then on is billed
        and refreshed like any drawn credit.

        Raises:
            UnauthorizedError: if the actor is neither an administrator nor
                a credit approver.
            InvalidStateTransitionError: unless the credit is Approved with
                a positive committed amount.
            PoolDisabledError: if the pool is disabled.
        """
        self._require_admin_or_approver(actor_id, "start_committed_credit")
        self._registry.pool(self.pool_id).require_enabled("start_committed_credit")

        credit = self._credit
        with LogContext.bind(pool_id=self.pool_id, actor_id=actor_id, borrower_id=borrower_id), \
                atomic(self.session):
            record = credit.record(borrower_id, for_update=True)
            if record.state != CreditState.APPROVED.value or record.committed_amount <= ZERO:
                raise InvalidStateTransitionError(borrower_id, record.state, "start_committed_credit")
            bill = start_committed_bill(
                bill=credit.bill_of(record),
                terms=credit.terms_for(record),
                as_of=self._clock.today(),
                places=self.places,
            )
            credit.store_bill(record, bill)
            record.state = CreditState.GOOD_STANDING.value

            logger.info("committed_credit_started", extra={
                "committed_amount": str(record.committed_amount),
                "committed_yield": str(bill.committed_yield),
                "next_due_date": bill.next_due_date,
            })
        return CreditRecordInfo.from_model(record)

    def update_yield(self, actor_id: str, borrower_id: str, yield_bps: int) -> CreditRecordInfo:
        """Change a credit's yield rate.

        The bill is refreshed first.  The rest of the current period is then
        charged at the new rate, and later periods are billed at it.

        Raises:
            InvalidStateTransitionError: if the credit is Defaulted or Closed.
            PoolDisabledError: if the pool is disabled.
        """
        self._require_credit_approver(actor_id, "update_yield")
        if yield_bps < 0:
            raise ValueError(f"yield_bps cannot be negative: {yield_bps}")
        self._registry.pool(self.pool_id).require_enabled("update_yield")

        credit = self._credit
        with LogContext.bind(pool_id=self.pool_id, actor_id=actor_id, borrower_id=borrower_id), \
                atomic(self.session):
            record = self._adjustable_record(borrower_id, "update_yield")
            old_bps = record.yield_bps
            old_bill = credit.bill_of(record)
            bill = reprice_yield(
                bill=old_bill,
                terms=credit.terms_for(record),
                new_yield_bps=yield_bps,
                as_of=self._clock.today(),
                places=self.places,
            )
            credit.store_bill(record, bill)
            record.yield_bps = yield_bps

            logger.info("credit_yield_updated", extra={
                "old_yield_bps": old_bps,
                "new_yield_bps": yield_bps,
                "old_yield_due": str(old_bill.yield_due),
                "new_yield_due": str(bill.yield_due),
            })
        return CreditRecordInfo.from_model(record)

    def extend_remaining_period(self, actor_id: str, borrower_id: str, periods: int) -> CreditRecordInfo:
        """Add ``periods`` billing periods to a credit.

        A credit that has matured can draw again once extended.  Amounts
        already billed stay due.

        Raises:
            InvalidStateTransitionError: if the credit is Defaulted or Closed.
            PoolDisabledError: if the pool is disabled.
        """
        self._require_credit_approver(actor_id, "extend_remaining_period")
        if periods < 1:
            raise ValueError(f"Extension must be at least one period: {periods}")
        self._registry.pool(self.pool_id).require_enabled("extend_remaining_period")

        credit = self._credit
        with LogContext.bind(pool_id=self.pool_id, actor_id=actor_id, borrower_id=borrower_id), \
                atomic(self.session):
            record = self._adjustable_record(borrower_id, "extend_remaining_period")
            old_remaining = record.remaining_periods
            credit.store_bill(record, extend_periods(credit.bill_of(record), periods))
            record.num_of_periods += periods

            logger.info("credit_periods_extended", extra={
                "old_remaining_periods": old_remaining,
                "remaining_periods": record.remaining_periods,
            })
        return CreditRecordInfo.from_model(record)

    def waive_late_fee(self, actor_id: str, borrower_id: str, amount: Decimal) -> Decimal:
        """Forgive up to ``amount`` of the credit's late fee.

        The bill is refreshed first so fees accrued up to today can be
        waived.  Returns the late fee left afterwards.

        Raises:
            InvalidStateTransitionError: if the credit is Defaulted or Closed.
            PoolDisabledError: if the pool is disabled.
        """
        self._require_credit_approver(actor_id, "waive_late_fee")
        if amount <= ZERO:
            raise ValueError(f"Waived amount must be positive: {amount}")
        self._registry.pool(self.pool_id).require_enabled("waive_late_fee")

        credit = self._credit
        with LogContext.bind(pool_id=self.pool_id, actor_id=actor_id, borrower_id=borrower_id), \
                atomic(self.session):
            record = self._adjustable_record(borrower_id, "waive_late_fee")
            old_fee = record.late_fee
            bill, waived = waive_late_fee_amount(credit.bill_of(record), amount)
            credit.store_bill(record, bill)

            logger.info("late_fee_waived", extra={
                "old_late_fee": str(old_fee),
                "waived": str(waived),
                "late_fee": str(bill.late_fee),
            })
        return bill.late_fee

    def _adjustable_record(self, borrower_id: str, operation: str) -> CreditRecord:
        """The credit refreshed to today, unless it is Defaulted or Closed."""
        record = self._credit.record(borrower_id, for_update=True)
        self._credit.refresh_record(record)
        if record.state in (CreditState.DEFAULTED.value, CreditState.CLOSED.value):
            raise InvalidStateTransitionError(borrower_id, record.state, operation)
        return record

    def _require_admin_or_approver(self, actor_id: str, operation: str) -> bool:
        """Returns whether ``actor_id`` is an administrator."""
        roles = self.config.roles
        is_admin = actor_id in roles.administrators
        if not is_admin and actor_id not in roles.credit_approvers:
            raise UnauthorizedError(actor_id, "administrator or credit_approver", operation)
        return is_admin

    # -------------------------------------------------------------------------
    # Receivables
    # -------------------------------------------------------------------------

    def create_receivable(
        self,
        borrower_id: str,
        receivable_id: str,
        amount: Decimal,
        maturity_date: date,
    ) -> ReceivableInfo:
        """Register a receivable submitted by the borrower; it starts Pending."""
        kind = self.config.credit_kind
        if kind == CreditKind.CREDIT_LINE:
            raise ValueError("Credit lines have no receivables")
        if amount <= ZERO:
            raise ValueError(f"Receivable amount must be positive: {amount}")

        with atomic(self.session):
            self._credit.record(borrower_id)
            duplicate = self.session.scalars(
                select(Receivable).where(
                    Receivable.pool_id == self.pool_id,
                    Receivable.receivable_id == receivable_id,
                )
            ).one_or_none()
            if duplicate is not None:
                raise ValueError(f"Receivable {receivable_id} already exists")
            receivable = Receivable(
                pool_id=self.pool_id,
                receivable_id=receivable_id,
                borrower_id=borrower_id,
                credit_kind=kind.value,
                amount=amount,
                maturity_date=maturity_date,
                state=ReceivableState.PENDING.value,
                advance_rate_bps=self.config.credit_terms.advance_rate_bps,
                drawn_amount=ZERO,
                paid_amount=ZERO,
            )
            self.session.add(receivable)

        logger.info("receivable_created", extra={
            "pool_id": self.pool_id,
            "borrower_id": borrower_id,
            "receivable_id": receivable_id,
            "amount": str(amount),
            "maturity_date": maturity_date,
        })
        return ReceivableInfo.from_model(receivable)

    def get_receivable(self, receivable_id: str) -> ReceivableInfo:
        return ReceivableInfo.from_model(self._credit.receivable(receivable_id))

    def approve_receivable(self, actor_id: str, receivable_id: str) -> ReceivableInfo:
        """Approve a Pending receivable and add its advance to available credit.

        The advance is ``amount * advance_rate_bps / 10000``; available
        credit is capped so that it plus outstanding principal stays within
        the credit limit.

        Raises:
            InvalidReceivableStateError: unless the receivable is Pending.
            MaturityExceededError: if the receivable has matured.
            InvalidStateTransitionError: unless the credit is Approved or in
                GoodStanding.
        """
        self._require_credit_approver(actor_id, "approve_receivable")
        today = self._clock.today()

        with atomic(self.session):
            receivable = self._credit.receivable(receivable_id, for_update=True)
            if receivable.state != ReceivableState.PENDING.value:
                raise InvalidReceivableStateError(
                    receivable_id, receivable.state, ReceivableState.PENDING.value,
                )
            if is_matured(receivable.maturity_date, today):
                raise MaturityExceededError(receivable_id, str(receivable.maturity_date), str(today))

            record = self._credit.record(receivable.borrower_id, for_update=True)
            if record.state not in (CreditState.APPROVED.value, CreditState.GOOD_STANDING.value):
                raise InvalidStateTransitionError(
                    record.borrower_id, record.state, "approve_receivable",
                )

            advance = apply_bps(receivable.amount, receivable.advance_rate_bps, self.places)
            headroom = max(ZERO, record.credit_limit - self._credit.bill_of(record).principal)
            record.available_credit = min(record.available_credit + advance, headroom)
            receivable.state = ReceivableState.APPROVED.value

        logger.info("receivable_approved", extra={
            "pool_id": self.pool_id,
            "receivable_id": receivable_id,
            "borrower_id": receivable.borrower_id,
            "actor_id": actor_id,
            "advance": str(advance),
            "available_credit": str(record.available_credit),
        })
        return ReceivableInfo.from_model(receivable)

    def reject_receivable(self, actor_id: str, receivable_id: str) -> ReceivableInfo:
        """Reject a Pending receivable.

        Raises:
            InvalidReceivableStateError: unless the receivable is Pending.
        """
        self._require_credit_approver(actor_id, "reject_receivable")
        with atomic(self.session):
            receivable = self._credit.receivable(receivable_id, for_update=True)
            if receivable.state != ReceivableState.PENDING.value:
                raise InvalidReceivableStateError(
                    receivable_id, receivable.state, ReceivableState.PENDING.value,
                )
            receivable.state = ReceivableState.REJECTED.value

        logger.info("receivable_rejected", extra={
            "pool_id": self.pool_id,
            "receivable_id": receivable_id,
            "actor_id": actor_id,
        })
        return ReceivableInfo.from_model(receivable)

    # -------------------------------------------------------------------------
    # Default and close
    # -------------------------------------------------------------------------

    def trigger_default(self, actor_id: str, borrower_id: str) -> CreditRecordInfo:
        """Declare a credit in default and book its principal as pool loss.

        Credit approvers may default a credit once its missed periods reach
        the default threshold; administrators may do so at any time.  If the
        refresh performed first already defaults the credit, that result is
        returned.

        Raises:
            UnauthorizedError: if the actor is neither an administrator nor
                a credit approver.
            InvalidStateTransitionError: if the credit is not in
                GoodStanding or Delayed, or the threshold is not reached.
            PoolDisabledError: if the pool is disabled.
        """
        is_admin = self._require_admin_or_approver(actor_id, "trigger_default")

        credit = self._credit
        with LogContext.bind(pool_id=self.pool_id, actor_id=actor_id, borrower_id=borrower_id), \
                atomic(self.session):
            record = credit.record(borrower_id, for_update=True)
            if record.state == CreditState.DEFAULTED.value:
                raise InvalidStateTransitionError(borrower_id, record.state, "trigger_default")

            self._registry.pool(self.pool_id).require_enabled("trigger_default")
            credit.refresh_record(record)
            if record.state == CreditState.DEFAULTED.value:
                return CreditRecordInfo.from_model(record)
            if record.state not in (CreditState.GOOD_STANDING.value, CreditState.DELAYED.value):
                raise InvalidStateTransitionError(borrower_id, record.state, "trigger_default")

            threshold = credit.terms_for(record).default_threshold_periods
            if not is_admin and record.missed_periods < threshold:
                raise InvalidStateTransitionError(
                    borrower_id, record.state, "trigger_default before the missed-period threshold",
                )
            credit.default_credit(record, reason="triggered", actor_id=actor_id)
        return CreditRecordInfo.from_model(record)

    def close_credit(self, actor_id: str, borrower_id: str) -> CreditRecordInfo:
        """Close a credit that has nothing outstanding, or write off a Defaulted one.

        Approved credits and fully repaid credits can be closed by a credit
        approver or administrator.  Defaulted credits can only be written
        off by an administrator.

        Raises:
            InvalidStateTransitionError: if the credit still owes money or
                is already Closed.
        """
        is_admin = self._require_admin_or_approver(actor_id, "close_credit")

        with atomic(self.session):
            record = self._credit.record(borrower_id, for_update=True)
            state = CreditState(record.state)
            payoff = self._credit.bill_of(record).payoff
            if state == CreditState.DEFAULTED:
                if not is_admin:
                    raise UnauthorizedError(actor_id, "administrator", "close_credit")
            elif state == CreditState.CLOSED or (state != CreditState.APPROVED and payoff > ZERO):
                raise InvalidStateTransitionError(borrower_id, state.value, "close_credit")
            record.state = CreditState.CLOSED.value
            record.available_credit = ZERO

        logger.info("credit_closed", extra={
            "pool_id": self.pool_id,
            "borrower_id": borrower_id,
            "actor_id": actor_id,
            "previous_state": state.value,
            "reason": "administrative",
        })
        return CreditRecordInfo.from_model(record)
