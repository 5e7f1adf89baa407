"""
Module: pool_kernel.models.tranche
Responsibility: ORM persistence for tranche vault share ledgers, epochs and
    redemption bookkeeping.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    SEALED_EPOCHS -- an EpochRedemptionSummary with ``sealed=True`` is never
        updated again (EpochManagerService seals, nothing unseals).
    LAZY_LENDER_SETTLEMENT -- LenderRedemptionRecord rows are only written by
        the lender's own vault operations, never by epoch close.

Failure modes:
    - IntegrityError on duplicate natural keys.
"""

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import Boolean, CheckConstraint, DateTime, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from pool_kernel.db.base import TrackedBase


class TrancheVaultState(TrackedBase):
    """Share supply, escrow and redemption reserve of one tranche vault."""

    __tablename__ = "tranche_vaults"

    __table_args__ = (
        UniqueConstraint("pool_id", "tranche", name="uq_vault_pool_tranche"),
        CheckConstraint("total_supply >= 0", name="ck_vault_supply_non_negative"),
        CheckConstraint("reserved_for_redemption >= 0", name="ck_vault_reserve_non_negative"),
    )

    pool_id: Mapped[str] = mapped_column(String(64), nullable=False)
    tranche: Mapped[str] = mapped_column(String(10), nullable=False)

    # Includes escrowed shares; processed shares are burned at epoch close
    total_supply: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)
    escrowed_shares: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)

    # Cash set aside at epoch close, paid out on disburse
    reserved_for_redemption: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)


class LenderShareAccount(TrackedBase):
    """
    Shares held by one lender in one tranche.

    Contract:
        ``shares`` are freely held; ``escrowed_shares`` are requested for
        redemption and not yet matched against sealed epochs for this lender.
    """

    __tablename__ = "lender_share_accounts"

    __table_args__ = (
        UniqueConstraint("pool_id", "tranche", "lender_id", name="uq_share_account"),
        CheckConstraint("shares >= 0", name="ck_share_account_non_negative"),
        CheckConstraint("escrowed_shares >= 0", name="ck_share_escrow_non_negative"),
    )

    pool_id: Mapped[str] = mapped_column(String(64), nullable=False)
    tranche: Mapped[str] = mapped_column(String(10), nullable=False)
    lender_id: Mapped[str] = mapped_column(String(64), nullable=False)

    shares: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)
    escrowed_shares: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)
    total_deposited: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)
    last_deposit_date: Mapped[date | None] = mapped_column(nullable=True)


class LenderRedemptionRecord(TrackedBase):
    """
    Lazy settlement cursor of one lender in one tranche.

    Contract:
        Every sealed epoch with id < ``next_epoch_id`` has been folded into
        the cumulative totals.
    """

    __tablename__ = "lender_redemption_records"

    __table_args__ = (
        UniqueConstraint("pool_id", "tranche", "lender_id", name="uq_redemption_record"),
    )

    pool_id: Mapped[str] = mapped_column(String(64), nullable=False)
    tranche: Mapped[str] = mapped_column(String(10), nullable=False)
    lender_id: Mapped[str] = mapped_column(String(64), nullable=False)

    next_epoch_id: Mapped[int] = mapped_column(Integer, nullable=False)
    total_shares_processed: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)
    total_amount_processed: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)
    total_amount_withdrawn: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)

    @property
    def last_epoch_id(self) -> int:
        """Last sealed epoch folded into this record."""
        return self.next_epoch_id - 1


class Epoch(TrackedBase):
    """One redemption epoch of a pool; ``status`` holds an ``EpochStatus`` value."""

    __tablename__ = "epochs"

    __table_args__ = (
        UniqueConstraint("pool_id", "epoch_id", name="uq_epoch_pool_epoch"),
    )

    pool_id: Mapped[str] = mapped_column(String(64), nullable=False)
    epoch_id: Mapped[int] = mapped_column(Integer, nullable=False)
    start_date: Mapped[date] = mapped_column(nullable=False)
    end_date: Mapped[date] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class EpochRedemptionSummary(TrackedBase):
    """Aggregated redemption requests of one tranche in one epoch."""

    __tablename__ = "epoch_redemption_summaries"

    __table_args__ = (
        UniqueConstraint("pool_id", "tranche", "epoch_id", name="uq_summary_tranche_epoch"),
        CheckConstraint(
            "total_shares_requested >= 0", name="ck_summary_requested_non_negative"
        ),
    )

    pool_id: Mapped[str] = mapped_column(String(64), nullable=False)
    tranche: Mapped[str] = mapped_column(String(10), nullable=False)
    epoch_id: Mapped[int] = mapped_column(Integer, nullable=False)

    total_shares_requested: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)
    total_shares_processed: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)
    total_amount_processed: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)
    price: Mapped[Decimal | None] = mapped_column(nullable=True)
    sealed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
