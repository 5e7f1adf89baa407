"""
PoolService -- the pool ledger and its profit, loss and recovery waterfall.

Responsibility:
    Owns the ``PoolLedger`` row of one pool: tranche assets, unrecovered
    tranche losses, pool-safe cash and total pool value.  Applies the
    distributions computed by ``pool_engines.waterfall`` to the ledger,
    the first-loss covers and the fee incomes in one savepoint, and gates
    money-moving operations on the pool's enabled flag.

Architecture position:
    Services -- imperative shell.  Called by the credit, vault and epoch
    services; reaches the cover and fee services through the registry.

Invariants enforced:
    LEDGER_CONSERVATION -- after every mutation
        ``senior + junior + sum(cover assets) == total_pool_value``;
        a violation raises ``LedgerInvariantViolationError`` and the
        savepoint rolls back.
    NON_NEGATIVE_BALANCES -- the engines cap every loss at the balance it
        hits; cash never leaves the pool safe beyond ``available_balance``.
    ATOMIC_OPERATIONS -- each distribution is computed by a pure engine
        before the first row is touched and applied inside ``atomic()``.

Failure modes:
    - ``PoolNotFoundError`` if the pool was never initialized.
    - ``PoolDisabledError`` for distributions while the pool is disabled.
    - ``InsufficientLiquidityError`` when the pool safe cannot fund a
      movement.
    - ``LedgerInvariantViolationError`` if balances stop summing up.

Audit relevance:
    Every distribution logs its full breakdown.  Loss beyond total pool
    capital is logged at ERROR level as ``loss_shortfall`` rather than
    raised.
"""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import select

from pool_engines.snapshot import PoolSnapshot
from pool_engines.waterfall import (
    LossDistribution,
    ProfitDistribution,
    RecoveryDistribution,
    distribute_loss,
    distribute_loss_recovery,
    distribute_profit,
)
from pool_kernel.domain.dtos import PoolBalancesInfo
from pool_kernel.domain.values import ZERO, Tranche
from pool_kernel.exceptions import (
    InsufficientLiquidityError,
    LedgerInvariantViolationError,
    PoolDisabledError,
    PoolNotFoundError,
)
from pool_kernel.logging_config import LogContext, get_logger
from pool_kernel.models.pool import FirstLossCoverLedger, PoolLedger
from pool_services.base import PoolScopedService, atomic
from pool_services.custody import FEE_RESERVE, POOL_SAFE, TransferPurpose

logger = get_logger("services.pool")


class PoolService(PoolScopedService):
    """
    Ledger and waterfall of one pool.

    Contract:
        ``distribute_profit`` and ``distribute_loss_recovery`` assume the
        cash they distribute is already in the pool safe (the caller
        records the inflow with ``receive`` first).  ``distribute_loss``
        moves no tranche cash; covers pay their share into the pool safe.

    Guarantees:
        - Total pool value changes by exactly the net profit, the absorbed
          loss or the applied recovery.

    Non-goals:
        - Does NOT decide what counts as profit or loss; the credit
          services do.
    """

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def ledger(self, *, for_update: bool = False) -> PoolLedger:
        """Load the pool ledger row.

        Raises:
            PoolNotFoundError: if the pool has not been initialized.
        """
        stmt = select(PoolLedger).where(PoolLedger.pool_id == self.pool_id)
        if for_update:
            stmt = stmt.with_for_update()
        ledger = self.session.scalars(stmt).one_or_none()
        if ledger is None:
            raise PoolNotFoundError(self.pool_id)
        return ledger

    def cover_rows(self) -> list[FirstLossCoverLedger]:
        return list(self.session.scalars(
            select(FirstLossCoverLedger)
            .where(FirstLossCoverLedger.pool_id == self.pool_id)
            .order_by(FirstLossCoverLedger.rank)
        ))

    def get_balances(self) -> PoolBalancesInfo:
        return PoolBalancesInfo.from_model(self.ledger())

    def is_enabled(self) -> bool:
        return self.ledger().enabled

    def require_enabled(self, operation: str) -> None:
        if not self.ledger().enabled:
            raise PoolDisabledError(self.pool_id, operation)

    def snapshot(self) -> PoolSnapshot:
        """Immutable view of tranche and cover balances for the engines."""
        ledger = self.ledger()
        config = self.config
        covers = tuple(
            config.cover_position(
                row.cover_id,
                cover_assets=row.cover_assets,
                covered_loss=row.covered_loss,
                max_liquidity=row.max_liquidity,
            )
            for row in self.cover_rows()
        )
        return PoolSnapshot(
            senior_assets=ledger.senior_assets,
            junior_assets=ledger.junior_assets,
            senior_loss=ledger.senior_loss,
            junior_loss=ledger.junior_loss,
            covers=covers,
            last_profit_date=ledger.last_profit_date,
            senior_unpaid_yield=ledger.senior_unpaid_yield,
        )

    def check_ledger_invariant(self) -> None:
        """Raise unless tranche and cover balances sum to the pool value."""
        ledger = self.ledger()
        components = (
            ledger.senior_assets
            + ledger.junior_assets
            + sum((row.cover_assets for row in self.cover_rows()), ZERO)
        )
        if components != ledger.total_pool_value:
            logger.critical("ledger_invariant_violated", extra={
                "pool_id": self.pool_id,
                "total_pool_value": str(ledger.total_pool_value),
                "components_sum": str(components),
            })
            raise LedgerInvariantViolationError(
                self.pool_id, ledger.total_pool_value, components,
            )

    # -------------------------------------------------------------------------
    # Administration
    # -------------------------------------------------------------------------

    def enable_pool(self, actor_id: str) -> PoolBalancesInfo:
        return self._set_enabled(actor_id, True)

    def disable_pool(self, actor_id: str) -> PoolBalancesInfo:
        """Switch the pool off.

        While disabled, deposits, redemption requests, epoch close,
        drawdowns, payments and distributions raise ``PoolDisabledError``.
        Lenders can still collect already-processed redemptions.
        """
        return self._set_enabled(actor_id, False)

    def _set_enabled(self, actor_id: str, enabled: bool) -> PoolBalancesInfo:
        operation = "enable_pool" if enabled else "disable_pool"
        self._require_administrator(actor_id, operation)
        with atomic(self.session):
            ledger = self.ledger(for_update=True)
            ledger.enabled = enabled

        logger.info("pool_enabled" if enabled else "pool_disabled", extra={
            "pool_id": self.pool_id,
            "actor_id": actor_id,
        })
        return PoolBalancesInfo.from_model(ledger)

    # -------------------------------------------------------------------------
    # Cash and tranche capital
    # -------------------------------------------------------------------------

    def receive(
        self,
        amount: Decimal,
        from_account: str,
        purpose: TransferPurpose,
        reference: str | None = None,
    ) -> None:
        """Record cash arriving in the pool safe without changing tranche assets."""
        with atomic(self.session):
            ledger = self.ledger(for_update=True)
            ledger.available_balance += amount
            self._registry.custody.transfer(
                self.pool_id, from_account, POOL_SAFE, amount, purpose, reference,
            )

    def pay_out(
        self,
        amount: Decimal,
        to_account: str,
        purpose: TransferPurpose,
        reference: str | None = None,
    ) -> None:
        """Send cash out of the pool safe without changing tranche assets.

        Raises:
            InsufficientLiquidityError: if the pool safe holds less than
                ``amount``.
        """
        with atomic(self.session):
            ledger = self.ledger(for_update=True)
            self._take_cash(ledger, amount)
            self._registry.custody.transfer(
                self.pool_id, POOL_SAFE, to_account, amount, purpose, reference,
            )

    def add_tranche_assets(
        self,
        tranche: Tranche,
        amount: Decimal,
        from_account: str,
        reference: str | None = None,
    ) -> PoolBalancesInfo:
        """Book a lender deposit: cash in, tranche assets and pool value up."""
        with atomic(self.session):
            ledger = self.ledger(for_update=True)
            if tranche == Tranche.SENIOR:
                ledger.senior_assets += amount
            else:
                ledger.junior_assets += amount
            ledger.total_pool_value += amount
            ledger.available_balance += amount
            self._registry.custody.transfer(
                self.pool_id, from_account, POOL_SAFE, amount,
                TransferPurpose.LENDER_DEPOSIT, reference,
            )
            self.check_ledger_invariant()
        return PoolBalancesInfo.from_model(ledger)

    def remove_tranche_assets(
        self,
        tranche: Tranche,
        amount: Decimal,
        to_account: str,
        reference: str | None = None,
    ) -> PoolBalancesInfo:
        """Move redeemed cash out of the pool safe and lower the tranche's assets.

        Raises:
            InsufficientLiquidityError: if the tranche or the pool safe
                holds less than ``amount``.
        """
        with atomic(self.session):
            ledger = self.ledger(for_update=True)
            assets = ledger.senior_assets if tranche == Tranche.SENIOR else ledger.junior_assets
            if amount > assets:
                raise InsufficientLiquidityError(f"tranche:{tranche.value}", amount, assets)
            self._take_cash(ledger, amount)
            if tranche == Tranche.SENIOR:
                ledger.senior_assets -= amount
            else:
                ledger.junior_assets -= amount
            ledger.total_pool_value -= amount
            self._registry.custody.transfer(
                self.pool_id, POOL_SAFE, to_account, amount,
                TransferPurpose.REDEMPTION_RESERVE, reference,
            )
            self.check_ledger_invariant()
        return PoolBalancesInfo.from_model(ledger)

    def _take_cash(self, ledger: PoolLedger, amount: Decimal) -> None:
        if amount > ledger.available_balance:
            raise InsufficientLiquidityError(POOL_SAFE, amount, ledger.available_balance)
        ledger.available_balance -= amount

    # -------------------------------------------------------------------------
    # Waterfall
    # -------------------------------------------------------------------------

    def distribute_profit(self, profit: Decimal, reference: str | None = None) -> ProfitDistribution:
        """Take pool fees from ``profit`` and split the rest across tranches and covers.

        Raises:
            PoolDisabledError: if the pool is disabled.
        """
        self.require_enabled("distribute_profit")
        today = self._clock.today()
        result = distribute_profit(
            snapshot=self.snapshot(),
            profit=profit,
            fees=self.config.fees,
            policy=self.config.build_policy(),
            as_of=today,
            places=self.places,
        )

        with LogContext.bind(pool_id=self.pool_id), atomic(self.session):
            ledger = self.ledger(for_update=True)
            fee_manager = self._registry.fees(self.pool_id)
            if result.fees.total_fees > ZERO:
                self._take_cash(ledger, result.fees.total_fees)
                self._registry.custody.transfer(
                    self.pool_id, POOL_SAFE, FEE_RESERVE, result.fees.total_fees,
                    TransferPurpose.FEE_ACCRUAL, reference,
                )
            fee_manager.accrue(result.fees)

            covers = self._registry.covers(self.pool_id)
            for cover_id, amount in result.cover_profits:
                covers.book_profit(cover_id, amount, reference)

            ledger.senior_assets += result.split.senior
            ledger.junior_assets += result.split.junior
            ledger.total_pool_value += result.split.senior + result.split.junior
            ledger.senior_unpaid_yield = result.split.senior_unpaid_yield
            ledger.last_profit_date = today
            self.check_ledger_invariant()

            logger.info("profit_distributed", extra={
                "profit": str(profit),
                "total_fees": str(result.fees.total_fees),
                "senior_profit": str(result.split.senior),
                "junior_profit": str(result.split.junior),
                "cover_profits": {cid: str(amount) for cid, amount in result.cover_profits},
                "senior_unpaid_yield": str(result.split.senior_unpaid_yield),
                "reference": reference,
            })
        return result

    def distribute_loss(self, loss: Decimal, reference: str | None = None) -> LossDistribution:
        """Absorb ``loss`` through the covers, then junior, then senior.

        Loss beyond every available balance is reported on
        ``LossDistribution.shortfall``; it is never raised.

        Raises:
            PoolDisabledError: if the pool is disabled.
        """
        self.require_enabled("distribute_loss")
        result = distribute_loss(snapshot=self.snapshot(), loss=loss, places=self.places)

        with LogContext.bind(pool_id=self.pool_id), atomic(self.session):
            ledger = self.ledger(for_update=True)
            covers = self._registry.covers(self.pool_id)
            for cover_id, amount in result.cover_losses:
                covers.book_loss(cover_id, amount, reference)

            ledger.junior_assets -= result.junior_loss
            ledger.junior_loss += result.junior_loss
            ledger.senior_assets -= result.senior_loss
            ledger.senior_loss += result.senior_loss
            ledger.total_pool_value -= result.junior_loss + result.senior_loss
            self.check_ledger_invariant()

            logger.info("loss_distributed", extra={
                "loss": str(loss),
                "cover_losses": {cid: str(amount) for cid, amount in result.cover_losses},
                "junior_loss": str(result.junior_loss),
                "senior_loss": str(result.senior_loss),
                "reference": reference,
            })
            if result.shortfall > ZERO:
                logger.error("loss_shortfall", extra={
                    "loss": str(loss),
                    "shortfall": str(result.shortfall),
                    "reference": reference,
                })
        return result

    def distribute_loss_recovery(
        self, recovery: Decimal, reference: str | None = None,
    ) -> RecoveryDistribution:
        """Restore senior, then junior, then covers (highest rank first).

        Returns the distribution; ``remaining`` is the part of ``recovery``
        that no booked loss could absorb and is left in the pool safe for
        the caller to treat as profit.

        Raises:
            PoolDisabledError: if the pool is disabled.
        """
        self.require_enabled("distribute_loss_recovery")
        result = distribute_loss_recovery(snapshot=self.snapshot(), recovery=recovery)

        with LogContext.bind(pool_id=self.pool_id), atomic(self.session):
            ledger = self.ledger(for_update=True)
            ledger.senior_assets += result.senior_recovered
            ledger.senior_loss -= result.senior_recovered
            ledger.junior_assets += result.junior_recovered
            ledger.junior_loss -= result.junior_recovered
            ledger.total_pool_value += result.senior_recovered + result.junior_recovered

            covers = self._registry.covers(self.pool_id)
            for cover_id, amount in result.cover_recoveries:
                covers.book_recovery(cover_id, amount, reference)
            self.check_ledger_invariant()

            logger.info("loss_recovery_distributed", extra={
                "recovery": str(recovery),
                "senior_recovered": str(result.senior_recovered),
                "junior_recovered": str(result.junior_recovered),
                "cover_recoveries": {cid: str(amount) for cid, amount in result.cover_recoveries},
                "remaining": str(result.remaining),
                "reference": reference,
            })
        return result
