"""
FirstLossCoverService -- capital that absorbs pool losses before junior.

Responsibility:
    Owns the ``FirstLossCoverLedger`` rows of one pool: provider deposits
    and administrator withdrawals, plus the profit, loss and recovery
    bookings the pool waterfall hands to each cover.  Cover cash lives in
    the cover's own custody account, outside the pool safe.

Architecture position:
    Services -- imperative shell.  ``book_*`` methods are called only by
    ``PoolService`` while it applies a distribution.

Invariants enforced:
    - ``cover_assets`` never exceeds ``max_liquidity`` through deposits or
      profit; ``add_cover_assets`` leaves the balance unchanged when it
      refuses.
    - Every change to ``cover_assets`` moves ``total_pool_value`` by the
      same amount, keeping the ledger conserved.
    RECOVERY_HIGH_WATER_MARK -- a cover recovers at most its
        ``covered_loss``.

Failure modes:
    - ``CoverNotFoundError`` for an unknown cover id.
    - ``CoverCapExceededError`` when a deposit would exceed max liquidity.
    - ``InsufficientLiquidityError`` for withdrawals above the cover's
      assets.
    - ``UnauthorizedError`` when a non-administrator withdraws.
"""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import select

from pool_kernel.domain.dtos import CoverInfo
from pool_kernel.domain.values import ZERO
from pool_kernel.exceptions import (
    CoverCapExceededError,
    CoverNotFoundError,
    InsufficientLiquidityError,
)
from pool_kernel.logging_config import get_logger
from pool_kernel.models.pool import FirstLossCoverLedger
from pool_services.base import PoolScopedService, atomic
from pool_services.custody import POOL_SAFE, TransferPurpose, cover_account

logger = get_logger("services.first_loss_cover")


class FirstLossCoverService(PoolScopedService):
    """
    First-loss covers of one pool.

    Contract:
        Deposits are open to any provider; withdrawals require an
        administrator and go to the named account.

    Non-goals:
        - Does NOT track individual provider stakes inside a cover.
    """

    def _cover(self, cover_id: str, *, for_update: bool = False) -> FirstLossCoverLedger:
        stmt = select(FirstLossCoverLedger).where(
            FirstLossCoverLedger.pool_id == self.pool_id,
            FirstLossCoverLedger.cover_id == cover_id,
        )
        if for_update:
            stmt = stmt.with_for_update()
        cover = self.session.scalars(stmt).one_or_none()
        if cover is None:
            raise CoverNotFoundError(self.pool_id, cover_id)
        return cover

    def get_cover(self, cover_id: str) -> CoverInfo:
        return CoverInfo.from_model(self._cover(cover_id))

    def list_covers(self) -> list[CoverInfo]:
        return [CoverInfo.from_model(row) for row in self._registry.pool(self.pool_id).cover_rows()]

    def add_cover_assets(self, cover_id: str, amount: Decimal) -> CoverInfo:
        """Raise a cover's assets (and the pool value) by ``amount``.

        Raises:
            CoverCapExceededError: if the cover would exceed its max
                liquidity; nothing is changed.
        """
        if amount < ZERO:
            raise ValueError(f"Cover amount cannot be negative: {amount}")
        with atomic(self.session):
            cover = self._cover(cover_id, for_update=True)
            if cover.cover_assets + amount > cover.max_liquidity:
                raise CoverCapExceededError(
                    cover_id, amount, cover.cover_assets, cover.max_liquidity,
                )
            ledger = self._registry.pool(self.pool_id).ledger(for_update=True)
            cover.cover_assets += amount
            ledger.total_pool_value += amount
        return CoverInfo.from_model(cover)

    def deposit_cover(self, provider_id: str, cover_id: str, amount: Decimal) -> CoverInfo:
        """Fund a cover from a provider's account."""
        if amount <= ZERO:
            raise ValueError(f"Cover deposit must be positive: {amount}")
        with atomic(self.session):
            info = self.add_cover_assets(cover_id, amount)
            self._registry.custody.transfer(
                self.pool_id, provider_id, cover_account(cover_id), amount,
                TransferPurpose.COVER_DEPOSIT,
            )
            self._registry.pool(self.pool_id).check_ledger_invariant()

        logger.info("cover_deposited", extra={
            "pool_id": self.pool_id,
            "cover_id": cover_id,
            "provider_id": provider_id,
            "amount": str(amount),
            "cover_assets": str(info.cover_assets),
        })
        return info

    def withdraw_cover(
        self,
        actor_id: str,
        cover_id: str,
        amount: Decimal,
        to_account: str,
    ) -> CoverInfo:
        """Withdraw cover assets to ``to_account``.

        Raises:
            UnauthorizedError: if ``actor_id`` is not an administrator.
            InsufficientLiquidityError: if the cover holds less than
                ``amount``.
        """
        self._require_administrator(actor_id, "withdraw_cover")
        if amount <= ZERO:
            raise ValueError(f"Cover withdrawal must be positive: {amount}")
        with atomic(self.session):
            cover = self._cover(cover_id, for_update=True)
            if amount > cover.cover_assets:
                raise InsufficientLiquidityError(cover_account(cover_id), amount, cover.cover_assets)
            ledger = self._registry.pool(self.pool_id).ledger(for_update=True)
            cover.cover_assets -= amount
            ledger.total_pool_value -= amount
            self._registry.custody.transfer(
                self.pool_id, cover_account(cover_id), to_account, amount,
                TransferPurpose.COVER_WITHDRAWAL,
            )
            self._registry.pool(self.pool_id).check_ledger_invariant()

        logger.info("cover_withdrawn", extra={
            "pool_id": self.pool_id,
            "cover_id": cover_id,
            "actor_id": actor_id,
            "amount": str(amount),
            "to_account": to_account,
        })
        return CoverInfo.from_model(cover)

    # -------------------------------------------------------------------------
    # Waterfall bookings
    # -------------------------------------------------------------------------

    def book_profit(self, cover_id: str, amount: Decimal, reference: str | None = None) -> None:
        """Move a cover's profit share from the pool safe into the cover."""
        if amount == ZERO:
            return
        ledger = self._registry.pool(self.pool_id).ledger(for_update=True)
        if amount > ledger.available_balance:
            raise InsufficientLiquidityError(POOL_SAFE, amount, ledger.available_balance)
        self.add_cover_assets(cover_id, amount)
        ledger.available_balance -= amount
        self._registry.custody.transfer(
            self.pool_id, POOL_SAFE, cover_account(cover_id), amount,
            TransferPurpose.COVER_PROFIT, reference,
        )

    def book_loss(self, cover_id: str, amount: Decimal, reference: str | None = None) -> None:
        """Pay ``amount`` of a loss from the cover into the pool safe."""
        if amount == ZERO:
            return
        cover = self._cover(cover_id, for_update=True)
        ledger = self._registry.pool(self.pool_id).ledger(for_update=True)
        cover.cover_assets -= amount
        cover.covered_loss += amount
        ledger.total_pool_value -= amount
        ledger.available_balance += amount
        self._registry.custody.transfer(
            self.pool_id, cover_account(cover_id), POOL_SAFE, amount,
            TransferPurpose.COVER_LOSS, reference,
        )
        logger.info("cover_loss_booked", extra={
            "pool_id": self.pool_id,
            "cover_id": cover_id,
            "amount": str(amount),
            "covered_loss": str(cover.covered_loss),
        })

    def book_recovery(self, cover_id: str, amount: Decimal, reference: str | None = None) -> None:
        """Return recovered cash from the pool safe to the cover."""
        if amount == ZERO:
            return
        cover = self._cover(cover_id, for_update=True)
        ledger = self._registry.pool(self.pool_id).ledger(for_update=True)
        if amount > cover.covered_loss:
            raise ValueError(
                f"Recovery {amount} exceeds covered loss {cover.covered_loss} of cover {cover_id}"
            )
        if amount > ledger.available_balance:
            raise InsufficientLiquidityError(POOL_SAFE, amount, ledger.available_balance)
        cover.cover_assets += amount
        cover.covered_loss -= amount
        ledger.total_pool_value += amount
        ledger.available_balance -= amount
        self._registry.custody.transfer(
            self.pool_id, POOL_SAFE, cover_account(cover_id), amount,
            TransferPurpose.COVER_RECOVERY, reference,
        )
