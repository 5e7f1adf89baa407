"""
EpochManagerService -- periodic settlement of redemption requests.

Responsibility:
    Keeps the pool's epoch sequence.  Closing an epoch prices both
    tranches, decides with ``pool_engines.redemption.settle_epoch`` how
    many requested shares the available liquidity can redeem, burns those
    shares, moves their value into each tranche's redemption reserve,
    seals the epoch summaries and opens the next epoch.

Architecture position:
    Services -- imperative shell.  Tranche assets and pool cash change only
    through ``PoolService``; vault rows through ``TrancheVaultService``.

Invariants enforced:
    SEALED_EPOCHS -- summaries are sealed at close and never written again.
    LAZY_LENDER_SETTLEMENT -- close touches only per-tranche aggregates;
        no lender row is read or written.
    - Requested shares left unprocessed carry over into the next epoch's
      summary.
    - Liquidity offered to redemptions keeps
      ``min_pool_balance_for_redemption`` in the pool safe.

Failure modes:
    - ``EpochInProgressError`` if the current epoch is already settling.
    - ``EpochClosedTooEarlyError`` before the epoch's end date.
    - ``PoolDisabledError`` while the pool is disabled.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import select

from pool_engines.calendar import start_of_next_period
from pool_engines.redemption import EpochSettlement, TrancheRedemptionInput, settle_epoch
from pool_kernel.domain.dtos import EpochInfo, RedemptionSummaryInfo
from pool_kernel.domain.values import ZERO, EpochStatus, Tranche
from pool_kernel.exceptions import (
    EpochClosedTooEarlyError,
    EpochInProgressError,
    PoolNotFoundError,
)
from pool_kernel.logging_config import LogContext, get_logger
from pool_kernel.models.tranche import Epoch, EpochRedemptionSummary
from pool_services.base import PoolScopedService, atomic
from pool_services.custody import redemption_reserve_account

logger = get_logger("services.epoch_manager")


@dataclass(frozen=True)
class EpochCloseResult:
    closed_epoch: EpochInfo
    next_epoch: EpochInfo
    settlement: EpochSettlement


class EpochManagerService(PoolScopedService):
    """
    Epoch sequence of one pool.

    Contract:
        Exactly one epoch is open at a time; it is the epoch with the
        highest id.  Each epoch ends at the start of the next
        ``epoch_period`` after it opened.
    """

    def _current_row(self, *, for_update: bool = False) -> Epoch:
        stmt = (
            select(Epoch)
            .where(Epoch.pool_id == self.pool_id)
            .order_by(Epoch.epoch_id.desc())
            .limit(1)
        )
        if for_update:
            stmt = stmt.with_for_update()
        epoch = self.session.scalars(stmt).one_or_none()
        if epoch is None:
            raise PoolNotFoundError(self.pool_id)
        return epoch

    def current_epoch(self) -> EpochInfo:
        return EpochInfo.from_model(self._current_row())

    def get_summary(self, tranche: Tranche, epoch_id: int) -> RedemptionSummaryInfo | None:
        row = self.session.scalars(
            select(EpochRedemptionSummary).where(
                EpochRedemptionSummary.pool_id == self.pool_id,
                EpochRedemptionSummary.tranche == tranche.value,
                EpochRedemptionSummary.epoch_id == epoch_id,
            )
        ).one_or_none()
        return RedemptionSummaryInfo.from_model(row) if row is not None else None

    def start_first_epoch(self) -> EpochInfo:
        """Open epoch 1 starting today; returns the current epoch if one exists."""
        existing = self.session.scalars(
            select(Epoch).where(Epoch.pool_id == self.pool_id).limit(1)
        ).one_or_none()
        if existing is not None:
            return self.current_epoch()

        epoch = self._open_epoch(1)
        logger.info("epoch_started", extra={
            "pool_id": self.pool_id,
            "epoch": epoch.epoch_id,
            "end_date": epoch.end_date,
        })
        return EpochInfo.from_model(epoch)

    def _open_epoch(self, epoch_id: int) -> Epoch:
        today = self._clock.today()
        epoch = Epoch(
            pool_id=self.pool_id,
            epoch_id=epoch_id,
            start_date=today,
            end_date=start_of_next_period(self.config.epoch.epoch_period, today),
            status=EpochStatus.OPEN.value,
        )
        self.session.add(epoch)
        self.session.flush()
        return epoch

    def close_epoch(self) -> EpochCloseResult:
        """Settle the current epoch's redemption requests and open the next epoch.

        The epoch is marked Settling before any summary is touched.  An
        epoch found Settling was left behind by an interrupted settlement
        (a crash or a commit outside this savepoint); closing it again
        would settle the same requests twice, so it is refused until an
        operator has reconciled it.

        Raises:
            PoolDisabledError: if the pool is disabled.
            EpochInProgressError: if the epoch is left Settling by an
                interrupted settlement.
            EpochClosedTooEarlyError: if today is before the epoch end date.
        """
        pool = self._registry.pool(self.pool_id)
        pool.require_enabled("close_epoch")
        today = self._clock.today()
        lp = self.config.lp

        epoch = self._current_row(for_update=True)
        with LogContext.bind(pool_id=self.pool_id, epoch_id=epoch.epoch_id), atomic(self.session):
            if epoch.status == EpochStatus.SETTLING.value:
                raise EpochInProgressError(self.pool_id, epoch.epoch_id)
            if today < epoch.end_date:
                raise EpochClosedTooEarlyError(epoch.epoch_id, str(epoch.end_date), str(today))
            epoch.status = EpochStatus.SETTLING.value
            self.session.flush()

            balances = pool.get_balances()
            vaults = {t: self._registry.vault(self.pool_id, t) for t in Tranche}
            states = {t: vaults[t].vault_state(for_update=True) for t in Tranche}
            summaries = {t: vaults[t].current_summary(epoch.epoch_id) for t in Tranche}
            inputs = {
                t: TrancheRedemptionInput(
                    tranche=t,
                    assets=balances.assets_of(t),
                    total_supply=states[t].total_supply,
                    shares_requested=summaries[t].total_shares_requested,
                )
                for t in Tranche
            }
            liquidity = max(ZERO, balances.available_balance - lp.min_pool_balance_for_redemption)

            settlement = settle_epoch(
                senior=inputs[Tranche.SENIOR],
                junior=inputs[Tranche.JUNIOR],
                available_liquidity=liquidity,
                max_senior_junior_ratio=lp.max_senior_junior_ratio,
                priority=lp.redemption_priority,
                places=self.places,
            )

            next_epoch = self._open_epoch(epoch.epoch_id + 1)
            for tranche in Tranche:
                result = settlement.for_tranche(tranche)
                summary = summaries[tranche]
                state = states[tranche]

                summary.total_shares_processed = result.shares_processed
                summary.total_amount_processed = result.amount_processed
                summary.price = result.price
                summary.sealed = True

                state.total_supply -= result.shares_processed
                state.escrowed_shares -= min(result.shares_processed, state.escrowed_shares)
                state.reserved_for_redemption += result.amount_processed
                if result.amount_processed > ZERO:
                    pool.remove_tranche_assets(
                        tranche, result.amount_processed, redemption_reserve_account(tranche),
                        reference=f"epoch:{epoch.epoch_id}",
                    )

                if result.shares_unprocessed > ZERO:
                    carried = vaults[tranche].current_summary(next_epoch.epoch_id)
                    carried.total_shares_requested += result.shares_unprocessed

            epoch.status = EpochStatus.CLOSED.value
            epoch.closed_at = self._clock.now()

            logger.info("epoch_closed", extra={
                "closed_epoch": epoch.epoch_id,
                "next_epoch": next_epoch.epoch_id,
                "next_end_date": next_epoch.end_date,
                "available_liquidity": str(liquidity),
                "liquidity_used": str(settlement.liquidity_used),
                "senior_price": str(settlement.senior.price),
                "junior_price": str(settlement.junior.price),
                "senior_shares_processed": str(settlement.senior.shares_processed),
                "junior_shares_processed": str(settlement.junior.shares_processed),
                "senior_shares_carried": str(settlement.senior.shares_unprocessed),
                "junior_shares_carried": str(settlement.junior.shares_unprocessed),
            })

        return EpochCloseResult(
            closed_epoch=EpochInfo.from_model(epoch),
            next_epoch=EpochInfo.from_model(next_epoch),
            settlement=settlement,
        )
