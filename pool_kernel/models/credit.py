"""
Module: pool_kernel.models.credit
Responsibility: ORM persistence for credit records and receivables.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - One credit record per (pool, borrower, credit kind).
    - One receivable per (pool, receivable id).
    - Bill buckets are never negative (CHECK constraints).

Failure modes:
    - IntegrityError on duplicate natural keys.
"""

from datetime import date
from decimal import Decimal

from sqlalchemy import Boolean, CheckConstraint, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from pool_kernel.db.base import TrackedBase


class CreditRecord(TrackedBase):
    """
    Billing record of one borrower credit.

    Contract:
        ``state`` holds a ``CreditState`` value.  The bill is decomposed into
        buckets so payments can be split into profit (yield, late fees) and
        principal:

            next_due  = max(accrued_yield, committed_yield) - paid_yield + principal_due
            past_due  = yield_past_due + principal_past_due + late_fee
            principal = unbilled_principal + principal_due + principal_past_due
    """

    __tablename__ = "credit_records"

    __table_args__ = (
        UniqueConstraint("pool_id", "borrower_id", "credit_kind", name="uq_credit_borrower_kind"),
        CheckConstraint("unbilled_principal >= 0", name="ck_credit_unbilled_non_negative"),
        CheckConstraint("principal_due >= 0", name="ck_credit_principal_due_non_negative"),
        CheckConstraint("principal_past_due >= 0", name="ck_credit_principal_past_due_non_negative"),
        Index("idx_credit_state", "pool_id", "state"),
    )

    pool_id: Mapped[str] = mapped_column(String(64), nullable=False)
    borrower_id: Mapped[str] = mapped_column(String(64), nullable=False)
    credit_kind: Mapped[str] = mapped_column(String(40), nullable=False)
    state: Mapped[str] = mapped_column(String(20), nullable=False)

    # Terms fixed at approval
    credit_limit: Mapped[Decimal] = mapped_column(nullable=False)
    committed_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)
    yield_bps: Mapped[int] = mapped_column(Integer, nullable=False)
    num_of_periods: Mapped[int] = mapped_column(Integer, nullable=False)
    remaining_periods: Mapped[int] = mapped_column(Integer, nullable=False)
    revolving: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    available_credit: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)

    # Current bill
    unbilled_principal: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)
    next_due_date: Mapped[date | None] = mapped_column(nullable=True)
    accrued_yield: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)
    committed_yield: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)
    paid_yield: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)
    principal_due: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)

    # Past due
    yield_past_due: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)
    principal_past_due: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)
    late_fee: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)
    late_fee_updated_date: Mapped[date | None] = mapped_column(nullable=True)
    missed_periods: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    total_drawn: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)

    # Default bookkeeping
    default_loss: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)
    loss_recovered: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)

    def __repr__(self) -> str:
        return f"<CreditRecord {self.pool_id}/{self.borrower_id}/{self.credit_kind}: {self.state}>"


class Receivable(TrackedBase):
    """
    A borrower receivable referenced by receivable-backed and factoring credits.

    Contract:
        ``state`` holds a ``ReceivableState`` value.  ``drawn_amount`` is the
        credit drawn against this receivable; ``paid_amount`` is what its
        payer has repaid.
    """

    __tablename__ = "receivables"

    __table_args__ = (
        UniqueConstraint("pool_id", "receivable_id", name="uq_receivable_pool_id"),
        Index("idx_receivable_borrower", "pool_id", "borrower_id"),
    )

    pool_id: Mapped[str] = mapped_column(String(64), nullable=False)
    receivable_id: Mapped[str] = mapped_column(String(64), nullable=False)
    borrower_id: Mapped[str] = mapped_column(String(64), nullable=False)
    credit_kind: Mapped[str] = mapped_column(String(40), nullable=False)

    amount: Mapped[Decimal] = mapped_column(nullable=False)
    maturity_date: Mapped[date] = mapped_column(nullable=False)
    state: Mapped[str] = mapped_column(String(20), nullable=False)
    advance_rate_bps: Mapped[int] = mapped_column(Integer, nullable=False)

    drawn_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)
    paid_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)

    def __repr__(self) -> str:
        return f"<Receivable {self.pool_id}/{self.receivable_id}: {self.amount} {self.state}>"
