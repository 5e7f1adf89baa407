"""
Module: pool_engines.tranches_policy
Responsibility:
    Split net profit between the senior tranche, the junior tranche and the
    first-loss covers.  Two policies form a closed family selected from pool
    configuration: fixed senior yield and risk adjusted.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - senior + junior + sum(cover profits) == net profit exactly.
    - A cover never receives more than its remaining capacity
      (max_liquidity - cover_assets); the excess stays with junior.
    - Senior never receives more than the profit available.

Failure modes:
    - ValueError on negative profit or an unknown policy kind.

Usage:
    policy = build_tranches_policy(TranchesPolicyKind.RISK_ADJUSTED, risk_adjustment_bps=8000)
    split = policy.dist_profit_to_tranches(profit=Decimal("100"), snapshot=snap,
                                           as_of=date(2024, 3, 1), places=6)
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum

from pool_engines.calendar import DAYS_IN_A_YEAR, days_diff
from pool_engines.snapshot import CoverPosition, PoolSnapshot
from pool_engines.tracer import traced_engine
from pool_kernel.domain.values import BPS_FACTOR, ZERO, apply_bps, mul_div, round_down
from pool_kernel.logging_config import get_logger

logger = get_logger("engines.tranches_policy")


class TranchesPolicyKind(str, Enum):
    FIXED_SENIOR_YIELD = "fixed_senior_yield"
    RISK_ADJUSTED = "risk_adjusted"


@dataclass(frozen=True)
class TrancheProfitSplit:
    """
    Profit allotted to each tranche and cover.

    Guarantees:
        - ``senior + junior + sum(cover_profits.values()) == total``.
        - ``senior_unpaid_yield`` is the fixed senior yield still owed after
          this distribution (always zero for the risk-adjusted policy).
    """

    total: Decimal
    senior: Decimal
    junior: Decimal
    cover_profits: tuple[tuple[str, Decimal], ...] = ()
    senior_unpaid_yield: Decimal = ZERO

    def cover_profit(self, cover_id: str) -> Decimal:
        for cid, amount in self.cover_profits:
            if cid == cover_id:
                return amount
        return ZERO


def dist_profit_to_first_loss_covers(
    *,
    junior_profit: Decimal,
    junior_assets: Decimal,
    covers: tuple[CoverPosition, ...],
    places: int,
) -> tuple[Decimal, tuple[tuple[str, Decimal], ...]]:
    """Share the junior profit with the covers by risk-weighted assets.

    Each cover is weighted as ``cover_assets * risk_yield_multiplier_bps / 10000``
    against the junior tranche's assets.  Cover profit above the cover's
    remaining capacity is returned to junior.

    Returns:
        ``(junior_profit_after_covers, ((cover_id, profit), ...))``
    """
    weights = [
        (cover, cover.cover_assets * Decimal(cover.risk_yield_multiplier_bps) / BPS_FACTOR)
        for cover in sorted(covers, key=lambda c: (c.rank, c.cover_id))
    ]
    total_weight = junior_assets + sum((w for _, w in weights), ZERO)
    if junior_profit <= ZERO or total_weight == ZERO:
        return junior_profit, tuple((c.cover_id, ZERO) for c, _ in weights)

    cover_profits: list[tuple[str, Decimal]] = []
    distributed = ZERO
    for cover, weight in weights:
        share = mul_div(junior_profit, weight, total_weight, places)
        share = min(share, cover.available_cap)
        cover_profits.append((cover.cover_id, share))
        distributed += share

    return junior_profit - distributed, tuple(cover_profits)


@dataclass(frozen=True)
class FixedSeniorYieldPolicy:
    """
    Senior earns a fixed APR on its assets; junior takes what is left.

    Contract:
        Senior yield accrues on 30/360 days since the last profit
        distribution.  Yield that the profit could not cover is carried
        forward as ``senior_unpaid_yield``.
    Non-goals:
        - Does not track intra-period changes of senior assets; accrual uses
          the balance at distribution time.
    """

    yield_bps: int

    kind = TranchesPolicyKind.FIXED_SENIOR_YIELD

    def senior_yield_due(self, snapshot: PoolSnapshot, as_of: date, places: int) -> Decimal:
        accrued = ZERO
        last = snapshot.last_profit_date
        if last is not None and as_of > last:
            days = days_diff(last, as_of)
            accrued = round_down(
                snapshot.senior_assets * Decimal(self.yield_bps) * days
                / DAYS_IN_A_YEAR / BPS_FACTOR,
                places,
            )
        return snapshot.senior_unpaid_yield + accrued

    def split(
        self, profit: Decimal, snapshot: PoolSnapshot, as_of: date, places: int,
    ) -> tuple[Decimal, Decimal, Decimal]:
        due = self.senior_yield_due(snapshot, as_of, places)
        senior = min(profit, due)
        return senior, profit - senior, due - senior

    def dist_profit_to_tranches(
        self, *, profit: Decimal, snapshot: PoolSnapshot, as_of: date, places: int,
    ) -> TrancheProfitSplit:
        return _dist_profit(self, profit=profit, snapshot=snapshot, as_of=as_of, places=places)


@dataclass(frozen=True)
class RiskAdjustedPolicy:
    """
    Profit is shared pro rata by tranche assets, then ``risk_adjustment_bps``
    of the senior share is moved to junior as compensation for first-loss risk.
    """

    risk_adjustment_bps: int

    kind = TranchesPolicyKind.RISK_ADJUSTED

    def split(
        self, profit: Decimal, snapshot: PoolSnapshot, as_of: date, places: int,
    ) -> tuple[Decimal, Decimal, Decimal]:
        total_assets = snapshot.senior_assets + snapshot.junior_assets
        if total_assets == ZERO:
            return ZERO, profit, ZERO
        senior = mul_div(profit, snapshot.senior_assets, total_assets, places)
        senior -= apply_bps(senior, self.risk_adjustment_bps, places)
        return senior, profit - senior, ZERO

    def dist_profit_to_tranches(
        self, *, profit: Decimal, snapshot: PoolSnapshot, as_of: date, places: int,
    ) -> TrancheProfitSplit:
        return _dist_profit(self, profit=profit, snapshot=snapshot, as_of=as_of, places=places)


TranchesPolicy = FixedSeniorYieldPolicy | RiskAdjustedPolicy


@traced_engine("tranches_policy", "1.0", fingerprint_fields=("profit", "snapshot", "as_of"))
def _dist_profit(
    policy: TranchesPolicy,
    *,
    profit: Decimal,
    snapshot: PoolSnapshot,
    as_of: date,
    places: int,
) -> TrancheProfitSplit:
    if profit < ZERO:
        raise ValueError(f"Profit cannot be negative: {profit}")

    senior, junior, unpaid = policy.split(profit, snapshot, as_of, places)
    junior, cover_profits = dist_profit_to_first_loss_covers(
        junior_profit=junior,
        junior_assets=snapshot.junior_assets,
        covers=snapshot.covers,
        places=places,
    )

    logger.debug("tranche_profit_split", extra={
        "policy": policy.kind.value,
        "profit": str(profit),
        "senior": str(senior),
        "junior": str(junior),
        "covers": {cid: str(amount) for cid, amount in cover_profits},
    })

    return TrancheProfitSplit(
        total=profit,
        senior=senior,
        junior=junior,
        cover_profits=cover_profits,
        senior_unpaid_yield=unpaid,
    )


def build_tranches_policy(
    kind: TranchesPolicyKind,
    *,
    fixed_senior_yield_bps: int = 0,
    risk_adjustment_bps: int = 0,
) -> TranchesPolicy:
    """Select the policy variant named by pool configuration."""
    if kind == TranchesPolicyKind.FIXED_SENIOR_YIELD:
        return FixedSeniorYieldPolicy(yield_bps=fixed_senior_yield_bps)
    if kind == TranchesPolicyKind.RISK_ADJUSTED:
        return RiskAdjustedPolicy(risk_adjustment_bps=risk_adjustment_bps)
    raise ValueError(f"Unknown tranches policy: {kind}")
