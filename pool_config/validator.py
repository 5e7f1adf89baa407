"""
Configuration Validator (``pool_config.validator``).

Responsibility
--------------
Validates a ``PoolConfig`` before it is handed to the services, catching
inconsistent liquidity rules, cover definitions and role assignments that
the individual dataclasses cannot see on their own.

Architecture position
---------------------
**Config layer** -- called by ``pool_config.loader`` after parsing and by
``PoolRegistry.update_config`` before swapping configuration.

Invariants enforced
-------------------
* Cover ids and ranks are unique.
* Amounts and thresholds are non-negative; the liquidity cap is positive.
* The late-payment grace period is shorter than one pay period.
* At least one administrator and one credit approver are configured.

Failure modes
-------------
* Validation errors (``ConfigValidationResult.errors``)  -> the
  configuration MUST NOT be used.
* Validation warnings  -> usable, but should be reviewed.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from pool_config.schema import PoolConfig
from pool_engines.calendar import days_in_period
from pool_engines.tranches_policy import TranchesPolicyKind
from pool_kernel.domain.values import BPS_FACTOR, ZERO


@dataclass
class ConfigValidationResult:
    """
    Result of configuration validation.

    Contract
    --------
    * ``is_valid`` returns ``True`` only when ``errors`` is empty.
    """

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return len(self.errors) == 0

    def add_error(self, msg: str) -> None:
        self.errors.append(msg)

    def add_warning(self, msg: str) -> None:
        self.warnings.append(msg)


def validate_pool_config(config: PoolConfig) -> ConfigValidationResult:
    """Run every check against ``config``."""
    result = ConfigValidationResult()
    _validate_identity(config, result)
    _validate_lp(config, result)
    _validate_tranches_policy(config, result)
    _validate_covers(config, result)
    _validate_credit_terms(config, result)
    _validate_roles(config, result)
    return result


def _validate_identity(config: PoolConfig, result: ConfigValidationResult) -> None:
    if not config.pool_id:
        result.add_error("pool_id must not be empty")
    if not 0 <= config.token_decimals <= 18:
        result.add_error(f"token_decimals must be within [0, 18], got {config.token_decimals}")


def _validate_lp(config: PoolConfig, result: ConfigValidationResult) -> None:
    lp = config.lp
    if lp.liquidity_cap <= ZERO:
        result.add_error(f"lp.liquidity_cap must be positive, got {lp.liquidity_cap}")
    if lp.max_senior_junior_ratio is not None and lp.max_senior_junior_ratio < ZERO:
        result.add_error("lp.max_senior_junior_ratio cannot be negative")
    if lp.withdrawal_lockout_days < 0:
        result.add_error("lp.withdrawal_lockout_days cannot be negative")
    if lp.min_pool_balance_for_redemption < ZERO:
        result.add_error("lp.min_pool_balance_for_redemption cannot be negative")
    if lp.max_senior_junior_ratio == ZERO:
        result.add_warning("lp.max_senior_junior_ratio is 0: senior deposits are always rejected")


def _validate_tranches_policy(config: PoolConfig, result: ConfigValidationResult) -> None:
    policy = config.tranches_policy
    if not 0 <= policy.risk_adjustment_bps <= BPS_FACTOR:
        result.add_error("tranches_policy.risk_adjustment_bps must be within [0, 10000]")
    if policy.fixed_senior_yield_bps < 0:
        result.add_error("tranches_policy.fixed_senior_yield_bps cannot be negative")
    if policy.kind == TranchesPolicyKind.FIXED_SENIOR_YIELD and policy.fixed_senior_yield_bps == 0:
        result.add_warning("fixed senior yield policy with 0 bps gives all profit to junior")


def _validate_covers(config: PoolConfig, result: ConfigValidationResult) -> None:
    seen_ids: set[str] = set()
    seen_ranks: set[int] = set()
    for cover in config.covers:
        if cover.cover_id in seen_ids:
            result.add_error(f"Duplicate cover id: {cover.cover_id}")
        seen_ids.add(cover.cover_id)
        if cover.rank in seen_ranks:
            result.add_error(f"Duplicate cover rank {cover.rank} ({cover.cover_id})")
        seen_ranks.add(cover.rank)
        if cover.max_liquidity < ZERO:
            result.add_error(f"Cover {cover.cover_id}: max_liquidity cannot be negative")
        if not 0 <= cover.cover_rate_per_loss_bps <= BPS_FACTOR:
            result.add_error(f"Cover {cover.cover_id}: cover_rate_per_loss_bps must be within [0, 10000]")
        if cover.cover_cap_per_loss is not None and cover.cover_cap_per_loss < ZERO:
            result.add_error(f"Cover {cover.cover_id}: cover_cap_per_loss cannot be negative")
        if cover.risk_yield_multiplier_bps < 0:
            result.add_error(f"Cover {cover.cover_id}: risk_yield_multiplier_bps cannot be negative")
    if not config.covers:
        result.add_warning("No first-loss covers configured: junior absorbs losses first")


def _validate_credit_terms(config: PoolConfig, result: ConfigValidationResult) -> None:
    terms = config.credit_terms
    grace = terms.late_payment_grace_period_days
    if grace < 0:
        result.add_error("credit.late_payment_grace_period_days cannot be negative")
    elif grace >= days_in_period(terms.period_duration):
        result.add_error(
            f"credit.late_payment_grace_period_days ({grace}) must be shorter than one "
            f"{terms.period_duration.value} pay period"
        )


def _validate_roles(config: PoolConfig, result: ConfigValidationResult) -> None:
    if not config.roles.administrators:
        result.add_error("roles.administrators must name at least one actor")
    if not config.roles.credit_approvers:
        result.add_error("roles.credit_approvers must name at least one actor")
