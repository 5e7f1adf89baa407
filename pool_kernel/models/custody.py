"""
Module: pool_kernel.models.custody
Responsibility: ORM persistence for transfer instructions handed to the
    external custody layer.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - Instructions are append-only and written inside the same transaction
      as the ledger change that caused them, so a rolled-back operation
      leaves no instruction behind.
"""

from decimal import Decimal

from sqlalchemy import CheckConstraint, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from pool_kernel.db.base import TrackedBase


class TransferInstruction(TrackedBase):
    """A single value movement between two named accounts."""

    __tablename__ = "transfer_instructions"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_transfer_positive"),
        UniqueConstraint("pool_id", "sequence", name="uq_transfer_pool_sequence"),
        Index("idx_transfer_pool", "pool_id"),
    )

    pool_id: Mapped[str] = mapped_column(String(64), nullable=False)
    # Per-pool order in which the movements were instructed
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    from_account: Mapped[str] = mapped_column(String(128), nullable=False)
    to_account: Mapped[str] = mapped_column(String(128), nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    purpose: Mapped[str] = mapped_column(String(40), nullable=False)
    reference: Mapped[str | None] = mapped_column(String(128), nullable=True)

    def __repr__(self) -> str:
        return f"<Transfer {self.from_account} -> {self.to_account}: {self.amount} ({self.purpose})>"
