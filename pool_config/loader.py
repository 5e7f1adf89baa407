"""
Configuration Loader (``pool_config.loader``).

Responsibility
--------------
Loads a pool YAML document and parses it into the typed
``pool_config.schema`` dataclasses.

Architecture position
---------------------
**Config layer** -- may import pool_engines term types and pool_kernel
values; never imports pool_services.

Invariants enforced
-------------------
* Monetary amounts must be written as strings or integers; YAML floats are
  rejected so no binary rounding ever enters the ledger.
* Every parsed object is a frozen dataclass from ``schema.py``.
* ``compute_checksum`` produces a deterministic SHA-256 hash for
  configuration identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing keys, bad values or failed validation  -> ``InvalidPoolConfigError``
  from ``load_pool_config``.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal
from pathlib import Path
from typing import Any

import yaml

from pool_config.schema import (
    EpochConfig,
    FirstLossCoverConfig,
    LPConfig,
    PoolConfig,
    PoolRoles,
    TranchesPolicyConfig,
)
from pool_config.validator import validate_pool_config
from pool_engines.calendar import PeriodDuration
from pool_engines.credit_due import CreditTerms
from pool_engines.fees import FeeStructure
from pool_engines.redemption import RedemptionPriority
from pool_engines.tranches_policy import TranchesPolicyKind
from pool_kernel.domain.values import CreditKind, to_decimal
from pool_kernel.exceptions import InvalidPoolConfigError
from pool_kernel.logging_config import get_logger

logger = get_logger("config.loader")


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_amount(value: Any) -> Decimal:
    """Parse a monetary amount, rejecting YAML floats."""
    if isinstance(value, float):
        raise ValueError(f"Amount {value!r} must be quoted or an integer")
    return to_decimal(value)


def _optional_amount(value: Any) -> Decimal | None:
    return None if value is None else parse_amount(value)


def parse_lp(data: dict[str, Any]) -> LPConfig:
    return LPConfig(
        liquidity_cap=parse_amount(data["liquidity_cap"]),
        max_senior_junior_ratio=_optional_amount(data.get("max_senior_junior_ratio")),
        withdrawal_lockout_days=int(data.get("withdrawal_lockout_days", 0)),
        min_pool_balance_for_redemption=parse_amount(data.get("min_pool_balance_for_redemption", 0)),
        redemption_priority=RedemptionPriority(data.get("redemption_priority", "senior_first")),
    )


def parse_fees(data: dict[str, Any]) -> FeeStructure:
    return FeeStructure(
        protocol_fee_bps=int(data.get("protocol_fee_bps", 0)),
        pool_owner_reward_bps=int(data.get("pool_owner_reward_bps", 0)),
        ea_reward_bps=int(data.get("ea_reward_bps", 0)),
        fixed_fee_per_distribution=parse_amount(data.get("fixed_fee_per_distribution", 0)),
    )


def parse_tranches_policy(data: dict[str, Any]) -> TranchesPolicyConfig:
    return TranchesPolicyConfig(
        kind=TranchesPolicyKind(data["kind"]),
        fixed_senior_yield_bps=int(data.get("fixed_senior_yield_bps", 0)),
        risk_adjustment_bps=int(data.get("risk_adjustment_bps", 0)),
    )


def parse_cover(data: dict[str, Any]) -> FirstLossCoverConfig:
    return FirstLossCoverConfig(
        cover_id=data["cover_id"],
        rank=int(data["rank"]),
        max_liquidity=parse_amount(data["max_liquidity"]),
        cover_rate_per_loss_bps=int(data.get("cover_rate_per_loss_bps", 10000)),
        cover_cap_per_loss=_optional_amount(data.get("cover_cap_per_loss")),
        risk_yield_multiplier_bps=int(data.get("risk_yield_multiplier_bps", 0)),
    )


def parse_credit_terms(data: dict[str, Any]) -> CreditTerms:
    return CreditTerms(
        yield_bps=int(data["yield_bps"]),
        num_of_periods=int(data["num_of_periods"]),
        period_duration=PeriodDuration(data.get("period_duration", "monthly")),
        committed_amount=parse_amount(data.get("committed_amount", 0)),
        principal_rate_bps=int(data.get("principal_rate_bps", 0)),
        revolving=bool(data.get("revolving", True)),
        front_loading_fee_flat=parse_amount(data.get("front_loading_fee_flat", 0)),
        front_loading_fee_bps=int(data.get("front_loading_fee_bps", 0)),
        late_fee_flat=parse_amount(data.get("late_fee_flat", 0)),
        late_fee_bps=int(data.get("late_fee_bps", 0)),
        late_payment_grace_period_days=int(data.get("late_payment_grace_period_days", 0)),
        delayed_threshold=int(data.get("delayed_threshold", 1)),
        default_threshold_periods=int(data.get("default_threshold_periods", 3)),
        auto_default=bool(data.get("auto_default", True)),
        advance_rate_bps=int(data.get("advance_rate_bps", 10000)),
    )


def parse_roles(data: dict[str, Any]) -> PoolRoles:
    defaults = PoolRoles()
    return PoolRoles(
        administrators=frozenset(data.get("administrators", ())),
        credit_approvers=frozenset(data.get("credit_approvers", ())),
        protocol_treasury=data.get("protocol_treasury", defaults.protocol_treasury),
        pool_owner_treasury=data.get("pool_owner_treasury", defaults.pool_owner_treasury),
        ea_account=data.get("ea_account", defaults.ea_account),
    )


def parse_pool_config(data: dict[str, Any]) -> PoolConfig:
    """
    Parse a ``PoolConfig`` from a dict.

    Raises:
        KeyError: if a required key is missing.
        ValueError: if a value is malformed or out of range.
    """
    epoch = data.get("epoch") or {}
    return PoolConfig(
        pool_id=data["pool_id"],
        name=data.get("name", data["pool_id"]),
        token_decimals=int(data.get("token_decimals", 6)),
        credit_kind=CreditKind(data.get("credit_kind", CreditKind.CREDIT_LINE.value)),
        lp=parse_lp(data["lp"]),
        fees=parse_fees(data.get("fees") or {}),
        tranches_policy=parse_tranches_policy(data["tranches_policy"]),
        credit_terms=parse_credit_terms(data["credit"]),
        covers=tuple(parse_cover(c) for c in data.get("first_loss_covers") or ()),
        epoch=EpochConfig(epoch_period=PeriodDuration(epoch.get("epoch_period", "monthly"))),
        roles=parse_roles(data.get("roles") or {}),
        version=int(data.get("version", 1)),
    )


def load_pool_config(path: Path) -> PoolConfig:
    """Load, parse and validate the pool configuration at ``path``.

    Raises:
        InvalidPoolConfigError: on missing keys, bad values or failed
            validation.
    """
    data = load_yaml_file(path)
    pool_id = str(data.get("pool_id", path.stem))
    try:
        config = parse_pool_config(data)
    except (KeyError, ValueError, TypeError) as exc:
        raise InvalidPoolConfigError(pool_id, [f"{type(exc).__name__}: {exc}"]) from exc

    result = validate_pool_config(config)
    for warning in result.warnings:
        logger.warning("pool_config_warning", extra={"pool_id": pool_id, "warning": warning})
    if not result.is_valid:
        raise InvalidPoolConfigError(pool_id, result.errors)

    logger.info("pool_config_loaded", extra={
        "pool_id": pool_id,
        "path": str(path),
        "checksum": compute_checksum(data),
    })
    return config


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
