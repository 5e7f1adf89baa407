"""
Module: pool_kernel.models.pool
Responsibility: ORM persistence for the pool ledger -- tranche balances,
    first-loss-cover balances and accrued pool fees.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    LEDGER_CONSERVATION -- senior_assets + junior_assets + sum(cover_assets)
        == total_pool_value.  Rows are mutated only by PoolService and
        FirstLossCoverService ledger operations, which re-check the sum
        after every change.
    NON_NEGATIVE_BALANCES -- balance columns carry CHECK constraints.

Failure modes:
    - IntegrityError on a duplicate pool_id or (pool_id, cover_id).
    - IntegrityError if a balance would be stored negative.
"""

from datetime import date
from decimal import Decimal

from sqlalchemy import Boolean, CheckConstraint, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from pool_kernel.db.base import TrackedBase


class PoolLedger(TrackedBase):
    """
    Tranche balances and pool-safe cash for one pool.

    Contract:
        ``senior_loss`` / ``junior_loss`` hold losses booked against each
        tranche that have not yet been recovered; recovery can never restore
        more than these amounts.  ``available_balance`` is the cash in the
        pool safe that belongs to the tranches (fees, cover money and
        redemption reserves are held elsewhere).
    """

    __tablename__ = "pool_ledgers"

    __table_args__ = (
        UniqueConstraint("pool_id", name="uq_pool_ledger_pool"),
        CheckConstraint("senior_assets >= 0", name="ck_pool_senior_non_negative"),
        CheckConstraint("junior_assets >= 0", name="ck_pool_junior_non_negative"),
    )

    pool_id: Mapped[str] = mapped_column(String(64), nullable=False)

    enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    senior_assets: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)
    junior_assets: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)

    # Unrecovered losses per tranche (recovery high-water marks)
    senior_loss: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)
    junior_loss: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)

    # senior + junior + sum(cover assets)
    total_pool_value: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)

    # Pool-safe cash owned by the tranches
    available_balance: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)

    # Date of the last profit distribution (fixed senior yield accrual start)
    last_profit_date: Mapped[date | None] = mapped_column(nullable=True)

    # Fixed senior yield owed but not yet covered by profit
    senior_unpaid_yield: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)

    def __repr__(self) -> str:
        return (
            f"<PoolLedger {self.pool_id}: senior={self.senior_assets} "
            f"junior={self.junior_assets} enabled={self.enabled}>"
        )


class FirstLossCoverLedger(TrackedBase):
    """
    Balance of one first-loss cover.

    Contract:
        ``rank`` orders absorption (lowest first) and recovery (highest
        first).  ``covered_loss`` is the loss this cover has paid out and not
        yet recovered.
    """

    __tablename__ = "first_loss_covers"

    __table_args__ = (
        UniqueConstraint("pool_id", "cover_id", name="uq_cover_pool_cover"),
        CheckConstraint("cover_assets >= 0", name="ck_cover_assets_non_negative"),
    )

    pool_id: Mapped[str] = mapped_column(String(64), nullable=False)
    cover_id: Mapped[str] = mapped_column(String(64), nullable=False)
    rank: Mapped[int] = mapped_column(Integer, nullable=False)

    cover_assets: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)
    max_liquidity: Mapped[Decimal] = mapped_column(nullable=False)
    covered_loss: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)

    def __repr__(self) -> str:
        return f"<FirstLossCover {self.pool_id}/{self.cover_id} rank={self.rank}: {self.cover_assets}>"


class PoolFeeIncome(TrackedBase):
    """Accrued and withdrawn fee incomes of one pool."""

    __tablename__ = "pool_fee_incomes"

    __table_args__ = (
        UniqueConstraint("pool_id", name="uq_fee_income_pool"),
    )

    pool_id: Mapped[str] = mapped_column(String(64), nullable=False)

    protocol_income: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)
    pool_owner_income: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)
    ea_income: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)

    protocol_withdrawn: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)
    pool_owner_withdrawn: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)
    ea_withdrawn: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)
