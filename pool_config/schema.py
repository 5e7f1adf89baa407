"""
Pool configuration schema.

Defines the reviewable configuration of one pool: liquidity rules, fee
schedule, tranches policy, first-loss covers, credit terms, epoch cadence
and roles.  YAML documents are parsed into these types by the loader and
checked by the validator before any service sees them.

Services receive a ``PoolConfig`` explicitly; nothing reads configuration
from ambient global state.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from pool_engines.calendar import PeriodDuration
from pool_engines.credit_due import CreditTerms
from pool_engines.fees import FeeStructure
from pool_engines.redemption import RedemptionPriority
from pool_engines.snapshot import CoverPosition
from pool_engines.tranches_policy import TranchesPolicy, TranchesPolicyKind, build_tranches_policy
from pool_kernel.domain.values import ZERO, CreditKind

# ---------------------------------------------------------------------------
# Liquidity
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LPConfig:
    """Rules for lender deposits and redemptions."""

    liquidity_cap: Decimal
    max_senior_junior_ratio: Decimal | None = None  # None = unlimited
    withdrawal_lockout_days: int = 0
    min_pool_balance_for_redemption: Decimal = ZERO
    redemption_priority: RedemptionPriority = RedemptionPriority.SENIOR_FIRST


# ---------------------------------------------------------------------------
# Tranches and covers
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TranchesPolicyConfig:
    kind: TranchesPolicyKind
    fixed_senior_yield_bps: int = 0
    risk_adjustment_bps: int = 0


@dataclass(frozen=True)
class FirstLossCoverConfig:
    """Terms of one first-loss cover; ``rank`` 0 absorbs loss first."""

    cover_id: str
    rank: int
    max_liquidity: Decimal
    cover_rate_per_loss_bps: int = 10000
    cover_cap_per_loss: Decimal | None = None
    risk_yield_multiplier_bps: int = 0


# ---------------------------------------------------------------------------
# Epochs and roles
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EpochConfig:
    """Each epoch ends at the start of the next ``epoch_period``."""

    epoch_period: PeriodDuration = PeriodDuration.MONTHLY


@dataclass(frozen=True)
class PoolRoles:
    """Actors allowed to run administrative and credit-approval operations."""

    administrators: frozenset[str] = frozenset()
    credit_approvers: frozenset[str] = frozenset()
    protocol_treasury: str = "protocol_treasury"
    pool_owner_treasury: str = "pool_owner_treasury"
    ea_account: str = "evaluation_agent"


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PoolConfig:
    """
    Complete configuration of one pool.

    Contract:
        ``token_decimals`` is the precision of every monetary amount the
        pool stores or moves.
    """

    pool_id: str
    name: str
    token_decimals: int
    credit_kind: CreditKind
    lp: LPConfig
    fees: FeeStructure
    tranches_policy: TranchesPolicyConfig
    credit_terms: CreditTerms
    covers: tuple[FirstLossCoverConfig, ...] = ()
    epoch: EpochConfig = field(default_factory=EpochConfig)
    roles: PoolRoles = field(default_factory=PoolRoles)
    version: int = 1

    def build_policy(self) -> TranchesPolicy:
        return build_tranches_policy(
            self.tranches_policy.kind,
            fixed_senior_yield_bps=self.tranches_policy.fixed_senior_yield_bps,
            risk_adjustment_bps=self.tranches_policy.risk_adjustment_bps,
        )

    def cover_config(self, cover_id: str) -> FirstLossCoverConfig | None:
        for cover in self.covers:
            if cover.cover_id == cover_id:
                return cover
        return None

    def cover_position(
        self,
        cover_id: str,
        cover_assets: Decimal,
        covered_loss: Decimal,
        max_liquidity: Decimal | None = None,
    ) -> CoverPosition:
        """Combine a cover's configured terms with its current balances."""
        cfg = self.cover_config(cover_id)
        if cfg is None:
            raise KeyError(cover_id)
        return CoverPosition(
            cover_id=cfg.cover_id,
            rank=cfg.rank,
            cover_assets=cover_assets,
            max_liquidity=cfg.max_liquidity if max_liquidity is None else max_liquidity,
            covered_loss=covered_loss,
            cover_rate_per_loss_bps=cfg.cover_rate_per_loss_bps,
            cover_cap_per_loss=cfg.cover_cap_per_loss,
            risk_yield_multiplier_bps=cfg.risk_yield_multiplier_bps,
        )
