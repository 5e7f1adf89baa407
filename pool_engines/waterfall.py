"""
Module: pool_engines.waterfall
Responsibility:
    Compute how profit, loss and loss recovery move through the pool's
    tranches and first-loss covers.  Each entry point reads one
    PoolSnapshot and returns a complete, immutable distribution that the
    service layer applies in a single transaction.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    LEDGER_CONSERVATION -- profit increases total value by exactly the net
        profit, loss decreases it by exactly the absorbed loss, recovery
        increases it by exactly the recovered amount.
    NON_NEGATIVE_BALANCES -- loss is capped at each available balance;
        the uncovered remainder is reported as ``shortfall``.
    LOSS_SENIORITY -- loss hits covers (lowest rank first), then junior,
        then senior.
    RECOVERY_HIGH_WATER_MARK -- recovery restores senior, then junior,
        then covers (highest rank first), each only up to its unrecovered
        loss; the rest is returned as ``remaining``.

Failure modes:
    - ValueError on negative amounts.

Usage:
    result = distribute_loss(snapshot=snap, loss=Decimal("110"), places=6)
    result.junior_loss, result.senior_loss, result.shortfall
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from pool_engines.fees import FeeDistribution, FeeStructure, calc_fee_distribution
from pool_engines.snapshot import PoolSnapshot
from pool_engines.tracer import traced_engine
from pool_engines.tranches_policy import TrancheProfitSplit, TranchesPolicy
from pool_kernel.domain.values import ZERO, apply_bps
from pool_kernel.logging_config import get_logger

logger = get_logger("engines.waterfall")


def _require_non_negative(name: str, amount: Decimal) -> None:
    if amount < ZERO:
        raise ValueError(f"{name} cannot be negative: {amount}")


# =============================================================================
# Profit
# =============================================================================


@dataclass(frozen=True)
class ProfitDistribution:
    """
    Fee cut and tranche split of one profit amount.

    Guarantees:
        - ``fees.total_fees + split.total == profit``.
    """

    profit: Decimal
    fees: FeeDistribution
    split: TrancheProfitSplit
    senior_assets_after: Decimal
    junior_assets_after: Decimal

    @property
    def net_profit(self) -> Decimal:
        return self.fees.net_profit

    @property
    def cover_profits(self) -> tuple[tuple[str, Decimal], ...]:
        return self.split.cover_profits


@traced_engine("waterfall.profit", "1.0", fingerprint_fields=("profit", "snapshot", "as_of"))
def distribute_profit(
    *,
    snapshot: PoolSnapshot,
    profit: Decimal,
    fees: FeeStructure,
    policy: TranchesPolicy,
    as_of: date,
    places: int,
) -> ProfitDistribution:
    """Take the pool fees from ``profit`` and split the rest across tranches and covers.

    Pure function.
    """
    _require_non_negative("Profit", profit)

    fee_dist = calc_fee_distribution(profit=profit, fees=fees, places=places)
    split = policy.dist_profit_to_tranches(
        profit=fee_dist.net_profit, snapshot=snapshot, as_of=as_of, places=places,
    )

    return ProfitDistribution(
        profit=profit,
        fees=fee_dist,
        split=split,
        senior_assets_after=snapshot.senior_assets + split.senior,
        junior_assets_after=snapshot.junior_assets + split.junior,
    )


# =============================================================================
# Loss
# =============================================================================


@dataclass(frozen=True)
class LossDistribution:
    """
    Where one loss landed.

    Guarantees:
        - ``sum(cover_losses) + junior_loss + senior_loss + shortfall == loss``.
        - No balance is driven below zero.
    """

    loss: Decimal
    cover_losses: tuple[tuple[str, Decimal], ...]
    junior_loss: Decimal
    senior_loss: Decimal
    shortfall: Decimal

    @property
    def total_cover_loss(self) -> Decimal:
        return sum((amount for _, amount in self.cover_losses), ZERO)

    @property
    def absorbed(self) -> Decimal:
        return self.loss - self.shortfall


@traced_engine("waterfall.loss", "1.0", fingerprint_fields=("loss", "snapshot"))
def distribute_loss(
    *,
    snapshot: PoolSnapshot,
    loss: Decimal,
    places: int,
) -> LossDistribution:
    """Absorb ``loss`` through the covers (lowest rank first), then junior, then senior.

    Each cover takes at most ``remaining * cover_rate_per_loss_bps / 10000``,
    further capped by ``cover_cap_per_loss`` and by its own assets.

    Pure function.
    """
    _require_non_negative("Loss", loss)

    remaining = loss
    cover_losses: list[tuple[str, Decimal]] = []
    for cover in snapshot.covers_by_rank():
        absorbed = min(apply_bps(remaining, cover.cover_rate_per_loss_bps, places), cover.cover_assets)
        if cover.cover_cap_per_loss is not None:
            absorbed = min(absorbed, cover.cover_cap_per_loss)
        cover_losses.append((cover.cover_id, absorbed))
        remaining -= absorbed

    junior_loss = min(remaining, snapshot.junior_assets)
    remaining -= junior_loss
    senior_loss = min(remaining, snapshot.senior_assets)
    remaining -= senior_loss

    if remaining > ZERO:
        logger.warning("loss_exceeds_pool_capital", extra={
            "loss": str(loss),
            "shortfall": str(remaining),
        })

    return LossDistribution(
        loss=loss,
        cover_losses=tuple(cover_losses),
        junior_loss=junior_loss,
        senior_loss=senior_loss,
        shortfall=remaining,
    )


# =============================================================================
# Loss recovery
# =============================================================================


@dataclass(frozen=True)
class RecoveryDistribution:
    """
    Where one recovery landed.

    Guarantees:
        - ``senior + junior + sum(cover_recoveries) + remaining == recovery``.
        - No tranche or cover recovers more than its unrecovered loss.
    """

    recovery: Decimal
    senior_recovered: Decimal
    junior_recovered: Decimal
    cover_recoveries: tuple[tuple[str, Decimal], ...]
    remaining: Decimal

    @property
    def total_cover_recovery(self) -> Decimal:
        return sum((amount for _, amount in self.cover_recoveries), ZERO)

    @property
    def applied(self) -> Decimal:
        return self.recovery - self.remaining


@traced_engine("waterfall.recovery", "1.0", fingerprint_fields=("recovery", "snapshot"))
def distribute_loss_recovery(
    *,
    snapshot: PoolSnapshot,
    recovery: Decimal,
) -> RecoveryDistribution:
    """Restore senior, then junior, then covers (highest rank first).

    Pure function.
    """
    _require_non_negative("Recovery", recovery)

    remaining = recovery
    senior = min(remaining, snapshot.senior_loss)
    remaining -= senior
    junior = min(remaining, snapshot.junior_loss)
    remaining -= junior

    cover_recoveries: list[tuple[str, Decimal]] = []
    for cover in snapshot.covers_by_rank(descending=True):
        recovered = min(remaining, cover.covered_loss)
        cover_recoveries.append((cover.cover_id, recovered))
        remaining -= recovered

    return RecoveryDistribution(
        recovery=recovery,
        senior_recovered=senior,
        junior_recovered=junior,
        cover_recoveries=tuple(cover_recoveries),
        remaining=remaining,
    )
