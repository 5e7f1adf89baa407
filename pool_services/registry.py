"""
PoolRegistry -- composition root for the pool services.

Responsibility:
    Holds the session, clock, custody and the configuration of every pool
    it manages, creates the ledger rows of a new pool, and hands out the
    pool-scoped services.  Services find each other through the registry
    by pool id, so none of them holds a reference to another.

Architecture position:
    Services -- outermost layer of the imperative shell.  The caller owns
    the transaction::

        with session_scope() as session:
            registry = PoolRegistry(session, clock=clock)
            registry.initialize_pool(config)
            registry.vault(config.pool_id, Tranche.JUNIOR).deposit("lender-1", amount)

Invariants enforced:
    - A configuration is validated before it is registered or swapped in.
    - ``initialize_pool`` is idempotent for an existing pool.

Failure modes:
    - ``InvalidPoolConfigError`` when a configuration fails validation, or
      an update would drop a cover that still holds assets.
    - ``PoolNotFoundError`` when a pool id has no registered configuration.
    - ``UnauthorizedError`` when a non-administrator updates configuration.
"""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from pool_config.schema import PoolConfig
from pool_config.validator import validate_pool_config
from pool_kernel.domain.clock import Clock, SystemClock
from pool_kernel.domain.dtos import PoolBalancesInfo
from pool_kernel.domain.values import ZERO, Tranche
from pool_kernel.exceptions import InvalidPoolConfigError, PoolNotFoundError
from pool_kernel.logging_config import get_logger
from pool_kernel.models.pool import FirstLossCoverLedger, PoolFeeIncome, PoolLedger
from pool_kernel.models.tranche import TrancheVaultState
from pool_services.base import atomic, require_role
from pool_services.credit_manager_service import CreditManagerService
from pool_services.credit_service import CreditService
from pool_services.custody import Custody, LedgerCustody
from pool_services.epoch_manager_service import EpochManagerService
from pool_services.fee_manager_service import PoolFeeManagerService
from pool_services.first_loss_cover_service import FirstLossCoverService
from pool_services.pool_service import PoolService
from pool_services.tranche_vault_service import TrancheVaultService

logger = get_logger("services.registry")


class PoolRegistry:
    """
    Session-scoped registry of pools and their services.

    Contract:
        One registry per session.  Services are created lazily and cached
        per pool id.
    """

    def __init__(
        self,
        session: Session,
        configs: tuple[PoolConfig, ...] = (),
        clock: Clock | None = None,
        custody: Custody | None = None,
    ):
        self.session = session
        self.clock = clock or SystemClock()
        self.custody = custody or LedgerCustody(session)
        self._configs: dict[str, PoolConfig] = {}
        self._services: dict[tuple, object] = {}
        for config in configs:
            self.register(config)

    # -------------------------------------------------------------------------
    # Configuration
    # -------------------------------------------------------------------------

    def register(self, config: PoolConfig) -> None:
        """Validate and register ``config`` without touching the database."""
        result = validate_pool_config(config)
        if not result.is_valid:
            raise InvalidPoolConfigError(config.pool_id, result.errors)
        for warning in result.warnings:
            logger.warning("pool_config_warning", extra={"pool_id": config.pool_id, "warning": warning})
        self._configs[config.pool_id] = config

    def config(self, pool_id: str) -> PoolConfig:
        try:
            return self._configs[pool_id]
        except KeyError:
            raise PoolNotFoundError(pool_id) from None

    def pool_ids(self) -> list[str]:
        return sorted(self._configs)

    def initialize_pool(self, config: PoolConfig) -> PoolBalancesInfo:
        """Register ``config`` and create the pool's ledger rows and first epoch.

        Calling it again for an initialized pool only re-registers the
        configuration.
        """
        self.register(config)
        pool_id = config.pool_id
        existing = self.session.scalars(
            select(PoolLedger).where(PoolLedger.pool_id == pool_id)
        ).one_or_none()
        if existing is not None:
            return PoolBalancesInfo.from_model(existing)

        with atomic(self.session):
            ledger = PoolLedger(
                pool_id=pool_id,
                enabled=True,
                senior_assets=ZERO,
                junior_assets=ZERO,
                senior_loss=ZERO,
                junior_loss=ZERO,
                total_pool_value=ZERO,
                available_balance=ZERO,
                last_profit_date=self.clock.today(),
                senior_unpaid_yield=ZERO,
            )
            self.session.add(ledger)
            self.session.add(PoolFeeIncome(
                pool_id=pool_id,
                protocol_income=ZERO,
                pool_owner_income=ZERO,
                ea_income=ZERO,
                protocol_withdrawn=ZERO,
                pool_owner_withdrawn=ZERO,
                ea_withdrawn=ZERO,
            ))
            for cover in config.covers:
                self.session.add(self._new_cover(pool_id, cover.cover_id, cover.rank, cover.max_liquidity))
            for tranche in Tranche:
                self.session.add(TrancheVaultState(
                    pool_id=pool_id,
                    tranche=tranche.value,
                    total_supply=ZERO,
                    escrowed_shares=ZERO,
                    reserved_for_redemption=ZERO,
                ))
            self.session.flush()
            epoch = self.epochs(pool_id).start_first_epoch()

        logger.info("pool_initialized", extra={
            "pool_id": pool_id,
            "pool_name": config.name,
            "credit_kind": config.credit_kind.value,
            "covers": [c.cover_id for c in config.covers],
            "first_epoch_end": epoch.end_date,
        })
        return PoolBalancesInfo.from_model(ledger)

    @staticmethod
    def _new_cover(pool_id: str, cover_id: str, rank: int, max_liquidity: Decimal) -> FirstLossCoverLedger:
        return FirstLossCoverLedger(
            pool_id=pool_id,
            cover_id=cover_id,
            rank=rank,
            cover_assets=ZERO,
            max_liquidity=max_liquidity,
            covered_loss=ZERO,
        )

    def update_config(self, actor_id: str, config: PoolConfig) -> PoolConfig:
        """Swap in a new configuration for an initialized pool.

        Cover rows follow the new cover list: new covers are created,
        changed ranks and max liquidity are applied, and unfunded covers
        that disappeared are removed.

        Raises:
            UnauthorizedError: if ``actor_id`` is not an administrator of
                the current configuration.
            InvalidPoolConfigError: if the new configuration is invalid,
                changes the credit kind, or drops a cover holding assets or
                unrecovered loss.
        """
        current = self.config(config.pool_id)
        require_role(current.roles.administrators, actor_id, "administrator", "update_config")

        result = validate_pool_config(config)
        errors = list(result.errors)
        if config.credit_kind != current.credit_kind:
            errors.append("credit_kind cannot change on an existing pool")

        rows = {
            row.cover_id: row
            for row in self.session.scalars(
                select(FirstLossCoverLedger).where(FirstLossCoverLedger.pool_id == config.pool_id)
            )
        }
        new_ids = {c.cover_id for c in config.covers}
        for cover_id, row in rows.items():
            if cover_id not in new_ids and (row.cover_assets > ZERO or row.covered_loss > ZERO):
                errors.append(f"Cover {cover_id} still holds assets or unrecovered loss")
        if errors:
            raise InvalidPoolConfigError(config.pool_id, errors)

        with atomic(self.session):
            for cover_id, row in rows.items():
                if cover_id not in new_ids:
                    self.session.delete(row)
            for cover in config.covers:
                row = rows.get(cover.cover_id)
                if row is None:
                    self.session.add(
                        self._new_cover(config.pool_id, cover.cover_id, cover.rank, cover.max_liquidity)
                    )
                else:
                    row.rank = cover.rank
                    row.max_liquidity = cover.max_liquidity
            self._configs[config.pool_id] = config

        logger.info("pool_config_updated", extra={
            "pool_id": config.pool_id,
            "actor_id": actor_id,
            "old_version": current.version,
            "new_version": config.version,
        })
        return config

    # -------------------------------------------------------------------------
    # Services
    # -------------------------------------------------------------------------

    def _service(self, key: tuple, factory):
        service = self._services.get(key)
        if service is None:
            self.config(key[1])
            service = factory()
            self._services[key] = service
        return service

    def pool(self, pool_id: str) -> PoolService:
        return self._service(("pool", pool_id), lambda: PoolService(self, pool_id))

    def covers(self, pool_id: str) -> FirstLossCoverService:
        return self._service(("covers", pool_id), lambda: FirstLossCoverService(self, pool_id))

    def fees(self, pool_id: str) -> PoolFeeManagerService:
        return self._service(("fees", pool_id), lambda: PoolFeeManagerService(self, pool_id))

    def credit(self, pool_id: str) -> CreditService:
        return self._service(("credit", pool_id), lambda: CreditService(self, pool_id))

    def credit_manager(self, pool_id: str) -> CreditManagerService:
        return self._service(("credit_manager", pool_id), lambda: CreditManagerService(self, pool_id))

    def epochs(self, pool_id: str) -> EpochManagerService:
        return self._service(("epochs", pool_id), lambda: EpochManagerService(self, pool_id))

    def vault(self, pool_id: str, tranche: Tranche) -> TrancheVaultService:
        return self._service(
            ("vault", pool_id, tranche.value),
            lambda: TrancheVaultService(self, pool_id, tranche),
        )
