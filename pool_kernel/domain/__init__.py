"""Pure domain vocabulary of the pool kernel: values, clock, read models."""

from pool_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from pool_kernel.domain.dtos import (
    CoverInfo,
    CreditRecordInfo,
    EpochInfo,
    FeeIncomeInfo,
    LenderPositionInfo,
    PoolBalancesInfo,
    ReceivableInfo,
    RedemptionSummaryInfo,
)
from pool_kernel.domain.values import (
    BPS_FACTOR,
    SHARE_PLACES,
    ZERO,
    CreditKind,
    CreditState,
    EpochStatus,
    ReceivableState,
    Tranche,
    apply_bps,
    mul_div,
    quantum,
    round_down,
    round_half_up,
    to_decimal,
)

__all__ = [
    "Clock",
    "SystemClock",
    "DeterministicClock",
    "PoolBalancesInfo",
    "CoverInfo",
    "FeeIncomeInfo",
    "CreditRecordInfo",
    "ReceivableInfo",
    "EpochInfo",
    "RedemptionSummaryInfo",
    "LenderPositionInfo",
    "ZERO",
    "BPS_FACTOR",
    "SHARE_PLACES",
    "Tranche",
    "CreditState",
    "CreditKind",
    "ReceivableState",
    "EpochStatus",
    "to_decimal",
    "quantum",
    "round_down",
    "round_half_up",
    "apply_bps",
    "mul_div",
]
