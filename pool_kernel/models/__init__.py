"""ORM models for the pool kernel."""

from pool_kernel.models.credit import CreditRecord, Receivable
from pool_kernel.models.custody import TransferInstruction
from pool_kernel.models.pool import FirstLossCoverLedger, PoolFeeIncome, PoolLedger
from pool_kernel.models.tranche import (
    Epoch,
    EpochRedemptionSummary,
    LenderRedemptionRecord,
    LenderShareAccount,
    TrancheVaultState,
)

__all__ = [
    "PoolLedger",
    "FirstLossCoverLedger",
    "PoolFeeIncome",
    "CreditRecord",
    "Receivable",
    "TrancheVaultState",
    "LenderShareAccount",
    "LenderRedemptionRecord",
    "Epoch",
    "EpochRedemptionSummary",
    "TransferInstruction",
]
