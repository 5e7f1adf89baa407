"""
TrancheVaultService -- lender shares of one tranche.

Responsibility:
    Mints shares for lender deposits at the tranche's current price,
    escrows shares requested for redemption, and pays lenders what sealed
    epochs processed for them.  A lender's entitlement is worked out lazily
    from the sealed epoch summaries the first time the lender acts after
    those epochs closed.

Architecture position:
    Services -- imperative shell.  Price and catch-up arithmetic come from
    ``pool_engines.redemption``; tranche assets and pool cash are changed
    only through ``PoolService``.

Invariants enforced:
    LAZY_LENDER_SETTLEMENT -- epoch close never touches lender rows; every
        lender operation first folds the sealed summaries since the
        lender's cursor into their record.
    - Deposits never push tranche assets above the liquidity cap, nor
      senior assets above ``junior * max_senior_junior_ratio``.
    - ``disburse`` pays each processed amount exactly once.

Failure modes:
    - ``LiquidityCapExceededError``, ``TrancheRatioExceededError`` on
      deposit.
    - ``WithdrawalLockoutError`` for redemption requests inside the
      lockout window.
    - ``InsufficientSharesError`` when requesting or cancelling more shares
      than held or escrowed.
    - ``PoolDisabledError`` for deposits and redemption requests while the
      pool is disabled.  ``disburse`` stays available.
"""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import select

from pool_engines.redemption import (
    SealedSummary,
    compute_price,
    lender_catch_up,
    shares_for_amount,
)
from pool_kernel.domain.dtos import LenderPositionInfo
from pool_kernel.domain.values import ZERO, Tranche, round_down
from pool_kernel.exceptions import (
    InsufficientSharesError,
    LiquidityCapExceededError,
    PoolNotFoundError,
    TrancheRatioExceededError,
    WithdrawalLockoutError,
)
from pool_kernel.logging_config import LogContext, get_logger
from pool_kernel.models.tranche import (
    EpochRedemptionSummary,
    LenderRedemptionRecord,
    LenderShareAccount,
    TrancheVaultState,
)
from pool_services.base import PoolScopedService, atomic
from pool_services.custody import (
    TransferPurpose,
    lender_account,
    redemption_reserve_account,
)

if TYPE_CHECKING:
    from pool_services.registry import PoolRegistry

logger = get_logger("services.tranche_vault")


class TrancheVaultService(PoolScopedService):
    """
    Share vault of one tranche.

    Contract:
        Share price is ``tranche assets / total supply`` (escrowed shares
        included), or 1 for an empty vault.

    Non-goals:
        - Shares are not transferable between lenders.
    """

    def __init__(self, registry: PoolRegistry, pool_id: str, tranche: Tranche):
        super().__init__(registry, pool_id)
        self.tranche = tranche

    # -------------------------------------------------------------------------
    # Row access
    # -------------------------------------------------------------------------

    def vault_state(self, *, for_update: bool = False) -> TrancheVaultState:
        stmt = select(TrancheVaultState).where(
            TrancheVaultState.pool_id == self.pool_id,
            TrancheVaultState.tranche == self.tranche.value,
        )
        if for_update:
            stmt = stmt.with_for_update()
        state = self.session.scalars(stmt).one_or_none()
        if state is None:
            raise PoolNotFoundError(self.pool_id)
        return state

    def _account(self, lender_id: str, *, create: bool = False) -> LenderShareAccount | None:
        account = self.session.scalars(
            select(LenderShareAccount).where(
                LenderShareAccount.pool_id == self.pool_id,
                LenderShareAccount.tranche == self.tranche.value,
                LenderShareAccount.lender_id == lender_id,
            ).with_for_update()
        ).one_or_none()
        if account is None and create:
            account = LenderShareAccount(
                pool_id=self.pool_id,
                tranche=self.tranche.value,
                lender_id=lender_id,
                shares=ZERO,
                escrowed_shares=ZERO,
                total_deposited=ZERO,
            )
            self.session.add(account)
            self.session.flush()
        return account

    def _require_account(self, lender_id: str, requested: Decimal) -> LenderShareAccount:
        account = self._account(lender_id)
        if account is None:
            raise InsufficientSharesError(lender_id, self.tranche.value, requested, ZERO)
        return account

    def _record(self, lender_id: str) -> LenderRedemptionRecord | None:
        return self.session.scalars(
            select(LenderRedemptionRecord).where(
                LenderRedemptionRecord.pool_id == self.pool_id,
                LenderRedemptionRecord.tranche == self.tranche.value,
                LenderRedemptionRecord.lender_id == lender_id,
            ).with_for_update()
        ).one_or_none()

    def current_summary(self, epoch_id: int) -> EpochRedemptionSummary:
        """Get or create the open summary of this tranche for ``epoch_id``."""
        summary = self.session.scalars(
            select(EpochRedemptionSummary).where(
                EpochRedemptionSummary.pool_id == self.pool_id,
                EpochRedemptionSummary.tranche == self.tranche.value,
                EpochRedemptionSummary.epoch_id == epoch_id,
            ).with_for_update()
        ).one_or_none()
        if summary is None:
            summary = EpochRedemptionSummary(
                pool_id=self.pool_id,
                tranche=self.tranche.value,
                epoch_id=epoch_id,
                total_shares_requested=ZERO,
                total_shares_processed=ZERO,
                total_amount_processed=ZERO,
                sealed=False,
            )
            self.session.add(summary)
            self.session.flush()
        return summary

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def share_price(self) -> Decimal:
        assets = self._registry.pool(self.pool_id).get_balances().assets_of(self.tranche)
        return compute_price(assets, self.vault_state().total_supply)

    def total_supply(self) -> Decimal:
        return self.vault_state().total_supply

    def balance_of(self, lender_id: str) -> LenderPositionInfo:
        """The lender's position as of the last operation they performed.

        Sealed epochs since then are not folded in until the lender's next
        request, cancel or disburse.
        """
        account = self._account(lender_id, create=False)
        if account is None:
            return LenderPositionInfo(
                tranche=self.tranche,
                lender_id=lender_id,
                shares=ZERO,
                escrowed_shares=ZERO,
                last_epoch_id=0,
                total_shares_processed=ZERO,
                total_amount_processed=ZERO,
                total_amount_withdrawn=ZERO,
            )
        return LenderPositionInfo.from_models(account, self._record(lender_id))

    def asset_value_of(self, lender_id: str) -> Decimal:
        """Current value of the lender's held and escrowed shares."""
        position = self.balance_of(lender_id)
        return round_down((position.shares + position.escrowed_shares) * self.share_price(), self.places)

    # -------------------------------------------------------------------------
    # Deposit
    # -------------------------------------------------------------------------

    def deposit(self, lender_id: str, amount: Decimal) -> LenderPositionInfo:
        """Deposit ``amount`` and mint shares at the current price.

        Raises:
            PoolDisabledError: if the pool is disabled.
            LiquidityCapExceededError: if tranche assets would exceed the cap.
            TrancheRatioExceededError: if a senior deposit would break the
                senior/junior ratio.
        """
        pool = self._registry.pool(self.pool_id)
        pool.require_enabled("deposit")
        if amount <= ZERO:
            raise ValueError(f"Deposit amount must be positive: {amount}")

        lp = self.config.lp
        with LogContext.bind(pool_id=self.pool_id, lender_id=lender_id), atomic(self.session):
            balances = pool.get_balances()
            if balances.total_tranche_assets + amount > lp.liquidity_cap:
                raise LiquidityCapExceededError(self.pool_id, amount, lp.liquidity_cap)
            if self.tranche == Tranche.SENIOR and lp.max_senior_junior_ratio is not None:
                senior_after = balances.senior_assets + amount
                if senior_after > balances.junior_assets * lp.max_senior_junior_ratio:
                    raise TrancheRatioExceededError(
                        senior_after, balances.junior_assets, lp.max_senior_junior_ratio,
                    )

            vault = self.vault_state(for_update=True)
            price = compute_price(balances.assets_of(self.tranche), vault.total_supply)
            shares = shares_for_amount(amount, price)

            account = self._account(lender_id, create=True)
            account.shares += shares
            account.total_deposited += amount
            account.last_deposit_date = self._clock.today()
            vault.total_supply += shares
            pool.add_tranche_assets(
                self.tranche, amount, lender_account(lender_id),
                reference=f"{self.tranche.value}:{lender_id}",
            )

            logger.info("lender_deposit", extra={
                "tranche": self.tranche.value,
                "amount": str(amount),
                "price": str(price),
                "shares": str(shares),
            })
        return LenderPositionInfo.from_models(account, self._record(lender_id))

    # -------------------------------------------------------------------------
    # Redemption
    # -------------------------------------------------------------------------

    def _catch_up(self, lender_id: str, account: LenderShareAccount | None) -> LenderRedemptionRecord:
        """Fold the sealed epochs since the lender's cursor into their record."""
        current_epoch_id = self._registry.epochs(self.pool_id).current_epoch().epoch_id
        record = self._record(lender_id)
        if record is None:
            record = LenderRedemptionRecord(
                pool_id=self.pool_id,
                tranche=self.tranche.value,
                lender_id=lender_id,
                next_epoch_id=current_epoch_id,
                total_shares_processed=ZERO,
                total_amount_processed=ZERO,
                total_amount_withdrawn=ZERO,
            )
            self.session.add(record)
            self.session.flush()
            return record

        if record.next_epoch_id >= current_epoch_id:
            return record

        rows = self.session.scalars(
            select(EpochRedemptionSummary).where(
                EpochRedemptionSummary.pool_id == self.pool_id,
                EpochRedemptionSummary.tranche == self.tranche.value,
                EpochRedemptionSummary.epoch_id >= record.next_epoch_id,
                EpochRedemptionSummary.epoch_id < current_epoch_id,
                EpochRedemptionSummary.sealed.is_(True),
            ).order_by(EpochRedemptionSummary.epoch_id)
        ).all()
        escrowed = account.escrowed_shares if account is not None else ZERO
        result = lender_catch_up(
            escrowed_shares=escrowed,
            next_epoch_id=record.next_epoch_id,
            summaries=[
                SealedSummary(
                    epoch_id=row.epoch_id,
                    shares_requested=row.total_shares_requested,
                    shares_processed=row.total_shares_processed,
                    amount_processed=row.total_amount_processed,
                )
                for row in rows
            ],
            places=self.places,
        )

        if account is not None:
            account.escrowed_shares = result.escrowed_after
        record.total_shares_processed += result.shares_processed
        record.total_amount_processed += result.amount_processed
        record.next_epoch_id = current_epoch_id
        self.session.flush()

        if result.shares_processed > ZERO:
            logger.info("lender_redemption_caught_up", extra={
                "tranche": self.tranche.value,
                "shares_processed": str(result.shares_processed),
                "amount_processed": str(result.amount_processed),
                "next_epoch_id": current_epoch_id,
            })
        return record

    def add_redemption_request(self, lender_id: str, shares: Decimal) -> LenderPositionInfo:
        """Escrow ``shares`` for redemption in the current epoch.

        Raises:
            PoolDisabledError: if the pool is disabled.
            WithdrawalLockoutError: if the lender deposited within the
                lockout window.
            InsufficientSharesError: if the lender holds fewer shares.
        """
        self._registry.pool(self.pool_id).require_enabled("add_redemption_request")
        if shares <= ZERO:
            raise ValueError(f"Redemption shares must be positive: {shares}")

        with LogContext.bind(pool_id=self.pool_id, lender_id=lender_id), atomic(self.session):
            account = self._require_account(lender_id, shares)
            lockout_days = self.config.lp.withdrawal_lockout_days
            if account.last_deposit_date is not None and lockout_days > 0:
                unlock = account.last_deposit_date + timedelta(days=lockout_days)
                if self._clock.today() < unlock:
                    raise WithdrawalLockoutError(lender_id, str(unlock))
            if shares > account.shares:
                raise InsufficientSharesError(lender_id, self.tranche.value, shares, account.shares)

            record = self._catch_up(lender_id, account)
            epoch_id = self._registry.epochs(self.pool_id).current_epoch().epoch_id
            summary = self.current_summary(epoch_id)
            vault = self.vault_state(for_update=True)

            account.shares -= shares
            account.escrowed_shares += shares
            vault.escrowed_shares += shares
            summary.total_shares_requested += shares

            logger.info("redemption_requested", extra={
                "tranche": self.tranche.value,
                "shares": str(shares),
                "epoch_id": epoch_id,
                "epoch_shares_requested": str(summary.total_shares_requested),
            })
        return LenderPositionInfo.from_models(account, record)

    def cancel_redemption_request(self, lender_id: str, shares: Decimal) -> LenderPositionInfo:
        """Return ``shares`` from escrow to the lender.

        Only shares still escrowed after folding in sealed epochs can be
        cancelled.

        Raises:
            PoolDisabledError: if the pool is disabled.
            InsufficientSharesError: if fewer shares are escrowed.
        """
        self._registry.pool(self.pool_id).require_enabled("cancel_redemption_request")
        if shares <= ZERO:
            raise ValueError(f"Cancelled shares must be positive: {shares}")

        with LogContext.bind(pool_id=self.pool_id, lender_id=lender_id), atomic(self.session):
            account = self._require_account(lender_id, shares)
            record = self._catch_up(lender_id, account)
            if shares > account.escrowed_shares:
                raise InsufficientSharesError(
                    lender_id, self.tranche.value, shares, account.escrowed_shares,
                )
            epoch_id = self._registry.epochs(self.pool_id).current_epoch().epoch_id
            summary = self.current_summary(epoch_id)
            vault = self.vault_state(for_update=True)

            account.escrowed_shares -= shares
            account.shares += shares
            vault.escrowed_shares -= min(shares, vault.escrowed_shares)
            summary.total_shares_requested -= min(shares, summary.total_shares_requested)

            logger.info("redemption_cancelled", extra={
                "tranche": self.tranche.value,
                "shares": str(shares),
                "epoch_id": epoch_id,
            })
        return LenderPositionInfo.from_models(account, record)

    def disburse(self, lender_id: str) -> Decimal:
        """Pay the lender everything sealed epochs processed for them and return the amount.

        Calling it again without a new sealed epoch pays nothing.
        """
        with LogContext.bind(pool_id=self.pool_id, lender_id=lender_id), atomic(self.session):
            account = self._account(lender_id)
            if account is None:
                return ZERO
            record = self._catch_up(lender_id, account)
            amount = record.total_amount_processed - record.total_amount_withdrawn
            if amount <= ZERO:
                return ZERO

            vault = self.vault_state(for_update=True)
            vault.reserved_for_redemption -= amount
            record.total_amount_withdrawn += amount
            self._registry.custody.transfer(
                self.pool_id, redemption_reserve_account(self.tranche), lender_account(lender_id),
                amount, TransferPurpose.DISBURSEMENT, f"{self.tranche.value}:{lender_id}",
            )

            logger.info("redemption_disbursed", extra={
                "tranche": self.tranche.value,
                "amount": str(amount),
                "total_amount_withdrawn": str(record.total_amount_withdrawn),
            })
        return amount
