"""
Module: pool_engines.redemption
Responsibility:
    Epoch settlement of redemption requests: tranche share prices, how many
    requested shares each tranche can honour from the available liquidity,
    and the lazy catch-up that turns sealed epoch summaries into one
    lender's entitlement.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Settled amounts never exceed the liquidity offered, and processed
      shares never exceed the shares requested.
    - Junior redemptions never push junior assets below
      ``senior_assets / max_senior_junior_ratio``.
    LAZY_LENDER_SETTLEMENT -- a lender's entitlement is derived only from
        sealed summaries and their own escrowed shares; the catch-up is
        ``remaining * processed / requested`` per epoch, in epoch order.
    - All divisions truncate, so the sum of lender entitlements never
      exceeds what the epoch processed.  Rounding dust stays in escrow.

Failure modes:
    - ValueError on negative liquidity or requests.

Usage:
    result = settle_epoch(
        senior=TrancheRedemptionInput(Tranche.SENIOR, assets, supply, requested),
        junior=TrancheRedemptionInput(Tranche.JUNIOR, assets, supply, requested),
        available_liquidity=Decimal("600"),
        max_senior_junior_ratio=Decimal("4"),
        priority=RedemptionPriority.SENIOR_FIRST,
        places=6,
    )
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from pool_engines.tracer import traced_engine
from pool_kernel.domain.values import SHARE_PLACES, ZERO, Tranche, round_down
from pool_kernel.logging_config import get_logger

logger = get_logger("engines.redemption")

INITIAL_PRICE = Decimal("1")


class RedemptionPriority(str, Enum):
    """How liquidity is shared when it cannot cover every request."""

    SENIOR_FIRST = "senior_first"
    PRO_RATA = "pro_rata"


def compute_price(assets: Decimal, total_supply: Decimal) -> Decimal:
    """Tranche share price: assets per outstanding share, 1 for an empty vault."""
    if total_supply == ZERO:
        return INITIAL_PRICE
    return round_down(assets / total_supply, SHARE_PLACES)


def shares_for_amount(amount: Decimal, price: Decimal) -> Decimal:
    """Shares minted for a deposit of ``amount`` at ``price``."""
    if price == ZERO:
        raise ValueError("Cannot mint shares at a zero price")
    return round_down(amount / price, SHARE_PLACES)


@dataclass(frozen=True)
class TrancheRedemptionInput:
    tranche: Tranche
    assets: Decimal
    total_supply: Decimal
    shares_requested: Decimal

    def __post_init__(self) -> None:
        if self.shares_requested < ZERO or self.assets < ZERO or self.total_supply < ZERO:
            raise ValueError(f"Negative redemption input for {self.tranche.value}")
        if self.shares_requested > self.total_supply:
            raise ValueError(
                f"{self.tranche.value}: requested {self.shares_requested} exceeds supply "
                f"{self.total_supply}"
            )

    @property
    def price(self) -> Decimal:
        return compute_price(self.assets, self.total_supply)


@dataclass(frozen=True)
class TrancheSettlement:
    tranche: Tranche
    price: Decimal
    shares_requested: Decimal
    shares_processed: Decimal
    amount_processed: Decimal

    @property
    def shares_unprocessed(self) -> Decimal:
        return self.shares_requested - self.shares_processed


@dataclass(frozen=True)
class EpochSettlement:
    """
    Settlement of one epoch for both tranches.

    Guarantees:
        - ``liquidity_used == senior.amount_processed + junior.amount_processed``
          and ``liquidity_used <= available_liquidity``.
    """

    senior: TrancheSettlement
    junior: TrancheSettlement
    available_liquidity: Decimal

    @property
    def liquidity_used(self) -> Decimal:
        return self.senior.amount_processed + self.junior.amount_processed

    def for_tranche(self, tranche: Tranche) -> TrancheSettlement:
        return self.senior if tranche == Tranche.SENIOR else self.junior


def _process(
    request: TrancheRedemptionInput,
    max_amount: Decimal,
    places: int,
) -> TrancheSettlement:
    price = request.price
    if price == ZERO or max_amount <= ZERO or request.shares_requested == ZERO:
        shares = ZERO
    else:
        shares = min(request.shares_requested, round_down(max_amount / price, SHARE_PLACES))
    amount = round_down(shares * price, places)
    return TrancheSettlement(
        tranche=request.tranche,
        price=price,
        shares_requested=request.shares_requested,
        shares_processed=shares,
        amount_processed=amount,
    )


def _junior_ratio_cap(
    junior_assets: Decimal,
    senior_assets_after: Decimal,
    max_senior_junior_ratio: Decimal | None,
) -> Decimal | None:
    if max_senior_junior_ratio is None or max_senior_junior_ratio == ZERO:
        return None
    return max(ZERO, junior_assets - senior_assets_after / max_senior_junior_ratio)


@traced_engine(
    "redemption.settle_epoch", "1.0",
    fingerprint_fields=("senior", "junior", "available_liquidity", "priority"),
)
def settle_epoch(
    *,
    senior: TrancheRedemptionInput,
    junior: TrancheRedemptionInput,
    available_liquidity: Decimal,
    max_senior_junior_ratio: Decimal | None,
    priority: RedemptionPriority,
    places: int,
) -> EpochSettlement:
    """Decide how many requested shares each tranche redeems this epoch.

    ``SENIOR_FIRST`` honours senior requests before junior ones;
    ``PRO_RATA`` gives both tranches the same fraction of their requested
    value.  Junior redemptions are further capped so the senior/junior
    ratio holds after settlement.

    Pure function.
    """
    if available_liquidity < ZERO:
        raise ValueError(f"Available liquidity cannot be negative: {available_liquidity}")

    if priority == RedemptionPriority.SENIOR_FIRST:
        senior_result = _process(senior, available_liquidity, places)
        junior_budget = available_liquidity - senior_result.amount_processed
    elif priority == RedemptionPriority.PRO_RATA:
        senior_value = senior.shares_requested * senior.price
        junior_value = junior.shares_requested * junior.price
        requested_value = senior_value + junior_value
        if requested_value <= available_liquidity:
            senior_budget = senior_value
        else:
            senior_budget = round_down(available_liquidity * senior_value / requested_value, places)
        senior_result = _process(senior, senior_budget, places)
        junior_budget = available_liquidity - senior_result.amount_processed
    else:
        raise ValueError(f"Unknown redemption priority: {priority}")

    cap = _junior_ratio_cap(
        junior.assets,
        senior.assets - senior_result.amount_processed,
        max_senior_junior_ratio,
    )
    if cap is not None:
        junior_budget = min(junior_budget, cap)
    junior_result = _process(junior, junior_budget, places)

    logger.info("epoch_settlement_computed", extra={
        "available_liquidity": str(available_liquidity),
        "priority": priority.value,
        "senior_shares_processed": str(senior_result.shares_processed),
        "junior_shares_processed": str(junior_result.shares_processed),
        "liquidity_used": str(senior_result.amount_processed + junior_result.amount_processed),
    })

    return EpochSettlement(
        senior=senior_result,
        junior=junior_result,
        available_liquidity=available_liquidity,
    )


# =============================================================================
# Lazy lender catch-up
# =============================================================================


@dataclass(frozen=True)
class SealedSummary:
    epoch_id: int
    shares_requested: Decimal
    shares_processed: Decimal
    amount_processed: Decimal


@dataclass(frozen=True)
class LenderCatchUp:
    """
    A lender's share of a run of sealed epochs.

    Guarantees:
        - ``escrowed_after == escrowed_before - shares_processed``.
        - ``next_epoch_id`` is one past the last summary folded in.
    """

    escrowed_before: Decimal
    shares_processed: Decimal
    amount_processed: Decimal
    next_epoch_id: int

    @property
    def escrowed_after(self) -> Decimal:
        return self.escrowed_before - self.shares_processed


@traced_engine("redemption.lender_catch_up", "1.0", fingerprint_fields=("escrowed_shares", "next_epoch_id"))
def lender_catch_up(
    *,
    escrowed_shares: Decimal,
    next_epoch_id: int,
    summaries: Sequence[SealedSummary],
    places: int,
) -> LenderCatchUp:
    """Fold sealed summaries (epoch id >= ``next_epoch_id``) into a lender's totals.

    In each epoch the lender's still-escrowed shares were part of the
    summary's requested shares, so they receive
    ``remaining * processed / requested`` shares and the same fraction of
    the processed amount.

    Pure function.
    """
    remaining = escrowed_shares
    shares_total = ZERO
    amount_total = ZERO
    cursor = next_epoch_id

    for summary in sorted(summaries, key=lambda s: s.epoch_id):
        if summary.epoch_id < cursor:
            continue
        cursor = summary.epoch_id + 1
        if remaining == ZERO or summary.shares_requested == ZERO:
            continue
        shares = round_down(
            remaining * summary.shares_processed / summary.shares_requested, SHARE_PLACES,
        )
        amount = round_down(
            remaining * summary.amount_processed / summary.shares_requested, places,
        )
        shares = min(shares, remaining)
        remaining -= shares
        shares_total += shares
        amount_total += amount

    return LenderCatchUp(
        escrowed_before=escrowed_shares,
        shares_processed=shares_total,
        amount_processed=amount_total,
        next_epoch_id=cursor,
    )
