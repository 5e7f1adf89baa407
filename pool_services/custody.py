"""
Custody -- value movements handed to the external custody layer.

Responsibility:
    Records every movement of funds the pool ledger causes as a
    ``TransferInstruction`` between two named accounts.  The ledger is the
    system of record for balances; custody only carries out the transfers.

Architecture position:
    Services -- imperative shell.  Called by the pool, cover, fee, credit,
    vault and epoch services inside their own ``atomic()`` block, so an
    instruction exists only if the ledger change that caused it commits.

Invariants enforced:
    - Instructions are strictly positive; zero movements are skipped.
    - Instructions are append-only.

Failure modes:
    - ValueError on a negative amount.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from decimal import Decimal
from enum import Enum

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from pool_kernel.domain.values import ZERO, Tranche
from pool_kernel.logging_config import get_logger
from pool_kernel.models.custody import TransferInstruction

logger = get_logger("services.custody")

POOL_SAFE = "pool_safe"
FEE_RESERVE = "pool_fee_reserve"


def borrower_account(borrower_id: str) -> str:
    return f"borrower:{borrower_id}"


def lender_account(lender_id: str) -> str:
    return f"lender:{lender_id}"


def cover_account(cover_id: str) -> str:
    return f"cover:{cover_id}"


def redemption_reserve_account(tranche: Tranche) -> str:
    return f"redemption_reserve:{tranche.value}"


class TransferPurpose(str, Enum):
    LENDER_DEPOSIT = "lender_deposit"
    DRAWDOWN = "drawdown"
    PAYMENT = "payment"
    FEE_ACCRUAL = "fee_accrual"
    FEE_WITHDRAWAL = "fee_withdrawal"
    COVER_DEPOSIT = "cover_deposit"
    COVER_WITHDRAWAL = "cover_withdrawal"
    COVER_PROFIT = "cover_profit"
    COVER_LOSS = "cover_loss"
    COVER_RECOVERY = "cover_recovery"
    REDEMPTION_RESERVE = "redemption_reserve"
    DISBURSEMENT = "disbursement"


class Custody(ABC):
    """Moves funds between named accounts on behalf of a pool."""

    @abstractmethod
    def transfer(
        self,
        pool_id: str,
        from_account: str,
        to_account: str,
        amount: Decimal,
        purpose: TransferPurpose,
        reference: str | None = None,
    ) -> None:
        ...


class LedgerCustody(Custody):
    """
    Custody that writes one ``TransferInstruction`` row per movement.

    Guarantees:
        - Rows are added to the caller's session and flushed, never
          committed.
    """

    def __init__(self, session: Session):
        self.session = session

    def transfer(
        self,
        pool_id: str,
        from_account: str,
        to_account: str,
        amount: Decimal,
        purpose: TransferPurpose,
        reference: str | None = None,
    ) -> None:
        if amount < ZERO:
            raise ValueError(f"Transfer amount cannot be negative: {amount}")
        if amount == ZERO:
            return

        last = self.session.scalar(
            select(func.max(TransferInstruction.sequence))
            .where(TransferInstruction.pool_id == pool_id)
        )
        self.session.add(TransferInstruction(
            pool_id=pool_id,
            sequence=(last or 0) + 1,
            from_account=from_account,
            to_account=to_account,
            amount=amount,
            purpose=purpose.value,
            reference=reference,
        ))
        self.session.flush()

        logger.debug("transfer_instructed", extra={
            "pool_id": pool_id,
            "from_account": from_account,
            "to_account": to_account,
            "amount": str(amount),
            "purpose": purpose.value,
        })

    def instructions(self, pool_id: str) -> list[TransferInstruction]:
        """All instructions of a pool in creation order."""
        return list(self.session.scalars(
            select(TransferInstruction)
            .where(TransferInstruction.pool_id == pool_id)
            .order_by(TransferInstruction.sequence)
        ))
