"""
Module: pool_engines.fees
Responsibility:
    Split gross profit into the fee schedule (fixed fee, protocol fee,
    pool-owner and evaluation-agent rewards) and the net profit left for
    the tranches.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - fixed_fee + protocol_fee + pool_owner_reward + ea_reward + net_profit
      == gross_profit exactly; every fee is truncated so rounding dust
      stays in net profit.
    - No fee exceeds the profit it is taken from.

Failure modes:
    - ValueError on negative profit or out-of-range basis points.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from pool_engines.tracer import traced_engine
from pool_kernel.domain.values import BPS_FACTOR, ZERO, apply_bps
from pool_kernel.logging_config import get_logger

logger = get_logger("engines.fees")


@dataclass(frozen=True)
class FeeStructure:
    """
    Pool fee schedule.

    Contract:
        ``protocol_fee_bps`` is taken from gross profit after the fixed fee;
        the two reward rates are taken from what the protocol leaves.
    Guarantees:
        - Every rate is within [0, 10000] bps and the two reward rates sum
          to at most 10000.
    """

    protocol_fee_bps: int = 0
    pool_owner_reward_bps: int = 0
    ea_reward_bps: int = 0
    fixed_fee_per_distribution: Decimal = ZERO

    def __post_init__(self) -> None:
        for name in ("protocol_fee_bps", "pool_owner_reward_bps", "ea_reward_bps"):
            value = getattr(self, name)
            if value < 0 or value > BPS_FACTOR:
                raise ValueError(f"{name} must be within [0, 10000], got {value}")
        if self.pool_owner_reward_bps + self.ea_reward_bps > BPS_FACTOR:
            raise ValueError("pool_owner_reward_bps + ea_reward_bps exceeds 10000")
        if self.fixed_fee_per_distribution < ZERO:
            raise ValueError("fixed_fee_per_distribution cannot be negative")


@dataclass(frozen=True)
class FeeDistribution:
    """Outcome of applying a FeeStructure to one profit amount."""

    gross_profit: Decimal
    fixed_fee: Decimal
    protocol_fee: Decimal
    pool_owner_reward: Decimal
    ea_reward: Decimal
    net_profit: Decimal

    @property
    def pool_owner_income(self) -> Decimal:
        """The fixed fee is paid to the pool owner along with their reward."""
        return self.fixed_fee + self.pool_owner_reward

    @property
    def total_fees(self) -> Decimal:
        return self.fixed_fee + self.protocol_fee + self.pool_owner_reward + self.ea_reward


@traced_engine("fees", "1.0", fingerprint_fields=("profit", "fees"))
def calc_fee_distribution(
    *,
    profit: Decimal,
    fees: FeeStructure,
    places: int,
) -> FeeDistribution:
    """Apply the fee schedule to ``profit``.

    Pure function.

    Args:
        profit: Gross profit being distributed.
        fees: Pool fee schedule.
        places: Decimal places of the pool's underlying token.

    Returns:
        FeeDistribution whose components sum to ``profit``.
    """
    if profit < ZERO:
        raise ValueError(f"Profit cannot be negative: {profit}")

    fixed_fee = min(fees.fixed_fee_per_distribution, profit)
    remaining = profit - fixed_fee

    protocol_fee = apply_bps(remaining, fees.protocol_fee_bps, places)
    remaining -= protocol_fee

    pool_owner_reward = apply_bps(remaining, fees.pool_owner_reward_bps, places)
    ea_reward = apply_bps(remaining, fees.ea_reward_bps, places)
    net_profit = remaining - pool_owner_reward - ea_reward

    logger.debug("fee_distribution_calculated", extra={
        "gross_profit": str(profit),
        "protocol_fee": str(protocol_fee),
        "pool_owner_income": str(fixed_fee + pool_owner_reward),
        "ea_reward": str(ea_reward),
        "net_profit": str(net_profit),
    })

    return FeeDistribution(
        gross_profit=profit,
        fixed_fee=fixed_fee,
        protocol_fee=protocol_fee,
        pool_owner_reward=pool_owner_reward,
        ea_reward=ea_reward,
        net_profit=net_profit,
    )
