"""
Module: pool_engines
Responsibility:
    Package entrypoint that re-exports the public symbols of the pure
    calculation engines.  This is the canonical import surface for
    pool_config and pool_services.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import pool_kernel.domain and pool_kernel.logging_config
    (and sibling engine modules).  MUST NOT import pool_config or
    pool_services.

Invariants enforced:
    - Purity: engines never call ``datetime.now()`` or ``date.today()``.
      Dates are passed in by the services, which read them from a Clock.
    - Decimal-only arithmetic with explicit truncation.
    - Determinism: identical inputs always produce identical outputs.

Failure modes:
    - ValueError propagated from individual engines on invalid input.

Audit relevance:
    Every engine invocation is traced via ``@traced_engine`` (see
    ``pool_engines.tracer``), emitting POOL_ENGINE_TRACE log records with
    engine name, version, input fingerprint and duration.
"""

from pool_engines.calendar import (
    DAYS_IN_A_MONTH,
    DAYS_IN_A_YEAR,
    PeriodDuration,
    add_periods,
    days_diff,
    days_in_period,
    days_remaining_in_period,
    is_matured,
    number_of_periods_passed,
    start_of_next_period,
    start_of_period,
)
from pool_engines.credit_due import (
    BillRefresh,
    CreditBill,
    CreditTerms,
    PaymentAllocation,
    apply_drawdown,
    apply_payment,
    calc_yield,
    dist_borrowing_amount,
    extend_periods,
    front_loading_fees,
    in_grace_period,
    late_payment_deadline,
    payoff_amount,
    refresh_bill,
    reprice_yield,
    start_committed_bill,
    waive_late_fee_amount,
)
from pool_engines.fees import FeeDistribution, FeeStructure, calc_fee_distribution
from pool_engines.redemption import (
    EpochSettlement,
    LenderCatchUp,
    RedemptionPriority,
    SealedSummary,
    TrancheRedemptionInput,
    TrancheSettlement,
    compute_price,
    lender_catch_up,
    settle_epoch,
    shares_for_amount,
)
from pool_engines.snapshot import CoverPosition, PoolSnapshot
from pool_engines.tracer import traced_engine
from pool_engines.tranches_policy import (
    FixedSeniorYieldPolicy,
    RiskAdjustedPolicy,
    TrancheProfitSplit,
    TranchesPolicy,
    TranchesPolicyKind,
    build_tranches_policy,
    dist_profit_to_first_loss_covers,
)
from pool_engines.waterfall import (
    LossDistribution,
    ProfitDistribution,
    RecoveryDistribution,
    distribute_loss,
    distribute_loss_recovery,
    distribute_profit,
)

__all__ = [
    # Calendar
    "DAYS_IN_A_MONTH",
    "DAYS_IN_A_YEAR",
    "PeriodDuration",
    "add_periods",
    "days_diff",
    "days_in_period",
    "days_remaining_in_period",
    "is_matured",
    "number_of_periods_passed",
    "start_of_next_period",
    "start_of_period",
    # Credit billing
    "BillRefresh",
    "CreditBill",
    "CreditTerms",
    "PaymentAllocation",
    "apply_drawdown",
    "apply_payment",
    "calc_yield",
    "dist_borrowing_amount",
    "extend_periods",
    "front_loading_fees",
    "in_grace_period",
    "late_payment_deadline",
    "payoff_amount",
    "refresh_bill",
    "reprice_yield",
    "start_committed_bill",
    "waive_late_fee_amount",
    # Fees
    "FeeDistribution",
    "FeeStructure",
    "calc_fee_distribution",
    # Redemption
    "EpochSettlement",
    "LenderCatchUp",
    "RedemptionPriority",
    "SealedSummary",
    "TrancheRedemptionInput",
    "TrancheSettlement",
    "compute_price",
    "lender_catch_up",
    "settle_epoch",
    "shares_for_amount",
    # Waterfall
    "CoverPosition",
    "PoolSnapshot",
    "LossDistribution",
    "ProfitDistribution",
    "RecoveryDistribution",
    "distribute_loss",
    "distribute_loss_recovery",
    "distribute_profit",
    # Tranches policy
    "FixedSeniorYieldPolicy",
    "RiskAdjustedPolicy",
    "TrancheProfitSplit",
    "TranchesPolicy",
    "TranchesPolicyKind",
    "build_tranches_policy",
    "dist_profit_to_first_loss_covers",
    # Tracing
    "traced_engine",
]
