"""
pool_services -- Package init and public API.

Responsibility:
    Stateful services that apply the pure engines in ``pool_engines`` to the
    ledger rows in ``pool_kernel.models`` inside the caller's transaction.
    This is the only layer that holds database sessions or reads the clock.

Architecture position:
    Services -- imperative shell over engines, config and kernel.

    Dependency direction (enforced by tests/architecture/test_layer_boundaries.py):
        pool_services/ -> pool_engines/, pool_config/, pool_kernel/  (allowed)
        pool_engines/  -> pool_services/                             (FORBIDDEN)
        pool_kernel/   -> pool_services/                             (FORBIDDEN)

Invariants enforced:
    - Services never commit; ``atomic()`` wraps each operation in a
      savepoint of the caller's transaction.
    - All wiring is centralised in ``PoolRegistry``; no service constructs
      another.
"""

from pool_services.base import BaseService, PoolScopedService, atomic, require_role
from pool_services.credit_manager_service import CreditManagerService
from pool_services.credit_service import CreditService, PaymentResult
from pool_services.custody import (
    FEE_RESERVE,
    POOL_SAFE,
    Custody,
    LedgerCustody,
    TransferPurpose,
    borrower_account,
    cover_account,
    lender_account,
    redemption_reserve_account,
)
from pool_services.epoch_manager_service import EpochCloseResult, EpochManagerService
from pool_services.fee_manager_service import PoolFeeManagerService
from pool_services.first_loss_cover_service import FirstLossCoverService
from pool_services.pool_service import PoolService
from pool_services.registry import PoolRegistry
from pool_services.tranche_vault_service import TrancheVaultService

__all__ = [
    "BaseService",
    "CreditManagerService",
    "CreditService",
    "Custody",
    "EpochCloseResult",
    "EpochManagerService",
    "FEE_RESERVE",
    "FirstLossCoverService",
    "LedgerCustody",
    "POOL_SAFE",
    "PaymentResult",
    "PoolFeeManagerService",
    "PoolRegistry",
    "PoolScopedService",
    "PoolService",
    "TrancheVaultService",
    "TransferPurpose",
    "atomic",
    "borrower_account",
    "cover_account",
    "lender_account",
    "redemption_reserve_account",
    "require_role",
]
