"""
Module: pool_engines.snapshot
Responsibility:
    Immutable view of pool balances handed to the distribution engines, so
    every waterfall computation reads one consistent set of numbers.

Architecture position:
    Engines -- pure data, zero I/O.  Built by PoolService from the ledger
    rows inside the same transaction that applies the result.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from pool_kernel.domain.values import ZERO


@dataclass(frozen=True)
class CoverPosition:
    """
    One first-loss cover as seen by the waterfall.

    Contract:
        ``cover_rate_per_loss_bps`` and ``cover_cap_per_loss`` bound how much
        of a single loss the cover absorbs; ``risk_yield_multiplier_bps``
        weights the cover's assets when it shares in junior profit.
    """

    cover_id: str
    rank: int
    cover_assets: Decimal
    max_liquidity: Decimal
    covered_loss: Decimal = ZERO
    cover_rate_per_loss_bps: int = 10000
    cover_cap_per_loss: Decimal | None = None
    risk_yield_multiplier_bps: int = 0

    @property
    def available_cap(self) -> Decimal:
        return max(ZERO, self.max_liquidity - self.cover_assets)


@dataclass(frozen=True)
class PoolSnapshot:
    """Tranche and cover balances at the start of a distribution."""

    senior_assets: Decimal
    junior_assets: Decimal
    senior_loss: Decimal = ZERO
    junior_loss: Decimal = ZERO
    covers: tuple[CoverPosition, ...] = ()
    last_profit_date: date | None = None
    senior_unpaid_yield: Decimal = ZERO

    def __post_init__(self) -> None:
        if self.senior_assets < ZERO or self.junior_assets < ZERO:
            raise ValueError("Tranche assets cannot be negative")
        ids = [c.cover_id for c in self.covers]
        if len(ids) != len(set(ids)):
            raise ValueError(f"Duplicate cover ids in snapshot: {ids}")

    @property
    def total_cover_assets(self) -> Decimal:
        return sum((c.cover_assets for c in self.covers), ZERO)

    @property
    def total_value(self) -> Decimal:
        return self.senior_assets + self.junior_assets + self.total_cover_assets

    def covers_by_rank(self, *, descending: bool = False) -> list[CoverPosition]:
        return sorted(self.covers, key=lambda c: (c.rank, c.cover_id), reverse=descending)
