"""
Kernel Invariants Contract.

These invariants are structural law. No pool configuration, tranches policy
or credit variant may override them.

This module exists solely to declare these invariants explicitly. The
enforcement is distributed across the pure engines in pool_engines and the
services in pool_services.
"""

from enum import Enum, unique


@unique
class KernelInvariant(str, Enum):
    """Non-configurable invariants enforced by the kernel.

    Configuration may influence *how much* moves between balances, but never
    *whether* these rules apply.
    """

    LEDGER_CONSERVATION = "ledger_conservation"
    """senior + junior + sum(cover assets) equals the pool's total value after
    every ledger operation. Checked by PoolService after each mutation."""

    NON_NEGATIVE_BALANCES = "non_negative_balances"
    """No tranche or cover balance is ever driven below zero. Loss beyond
    available capital is reported as a shortfall."""

    LOSS_SENIORITY = "loss_seniority"
    """Losses hit covers (lowest rank first), then junior, then senior.
    Recoveries restore senior, then junior, then covers (highest rank first)."""

    RECOVERY_HIGH_WATER_MARK = "recovery_high_water_mark"
    """Recovery restores at most the loss previously booked against a balance."""

    ATOMIC_OPERATIONS = "atomic_operations"
    """Every monetary operation either completes fully or leaves no trace.
    Enforced by pool_services.base.atomic (SAVEPOINT per operation)."""

    SEALED_EPOCHS = "sealed_epochs"
    """An epoch redemption summary never changes once its epoch is closed."""

    LAZY_LENDER_SETTLEMENT = "lazy_lender_settlement"
    """Epoch close never iterates lenders; entitlement is derived at
    disbursement time from sealed summaries."""


# All invariants as a frozenset for programmatic checks.
ALL_KERNEL_INVARIANTS: frozenset[KernelInvariant] = frozenset(KernelInvariant)

# The kernel package may not import from these packages.
# This is enforced by tests/architecture/test_layer_boundaries.py.
FORBIDDEN_KERNEL_IMPORTS: tuple[str, ...] = (
    "pool_engines",
    "pool_config",
    "pool_services",
)
