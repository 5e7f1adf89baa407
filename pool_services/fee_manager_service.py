"""
PoolFeeManagerService -- protocol, pool-owner and evaluation-agent income.

Responsibility:
    Accrues the fee cut of every profit distribution into the pool's
    ``PoolFeeIncome`` row and pays accrued income out of the fee reserve to
    the treasury accounts named in the pool's roles.

Architecture position:
    Services -- imperative shell.  ``accrue`` is called by ``PoolService``
    inside the profit distribution savepoint.

Invariants enforced:
    - Withdrawn income never exceeds accrued income for any recipient.

Failure modes:
    - ``UnauthorizedError`` when a non-administrator withdraws.
    - ``InsufficientLiquidityError`` when the withdrawal exceeds what the
      recipient can still withdraw.
"""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import select

from pool_engines.fees import FeeDistribution
from pool_kernel.domain.dtos import FeeIncomeInfo
from pool_kernel.domain.values import ZERO
from pool_kernel.exceptions import InsufficientLiquidityError, PoolNotFoundError
from pool_kernel.logging_config import get_logger
from pool_kernel.models.pool import PoolFeeIncome
from pool_services.base import PoolScopedService, atomic
from pool_services.custody import FEE_RESERVE, TransferPurpose

logger = get_logger("services.fee_manager")

# recipient -> (income column, withdrawn column)
_RECIPIENTS = {
    "protocol": ("protocol_income", "protocol_withdrawn"),
    "pool_owner": ("pool_owner_income", "pool_owner_withdrawn"),
    "ea": ("ea_income", "ea_withdrawn"),
}


class PoolFeeManagerService(PoolScopedService):
    """Fee incomes of one pool."""

    def _income(self, *, for_update: bool = False) -> PoolFeeIncome:
        stmt = select(PoolFeeIncome).where(PoolFeeIncome.pool_id == self.pool_id)
        if for_update:
            stmt = stmt.with_for_update()
        income = self.session.scalars(stmt).one_or_none()
        if income is None:
            raise PoolNotFoundError(self.pool_id)
        return income

    def get_fee_income(self) -> FeeIncomeInfo:
        return FeeIncomeInfo.from_model(self._income())

    def accrue(self, fees: FeeDistribution) -> FeeIncomeInfo:
        """Add one distribution's fees to the accrued incomes."""
        income = self._income(for_update=True)
        income.protocol_income += fees.protocol_fee
        income.pool_owner_income += fees.pool_owner_income
        income.ea_income += fees.ea_reward
        self.session.flush()

        if fees.total_fees > ZERO:
            logger.info("fees_accrued", extra={
                "pool_id": self.pool_id,
                "protocol_fee": str(fees.protocol_fee),
                "pool_owner_income": str(fees.pool_owner_income),
                "ea_reward": str(fees.ea_reward),
            })
        return FeeIncomeInfo.from_model(income)

    def withdraw_protocol_fee(self, actor_id: str, amount: Decimal) -> FeeIncomeInfo:
        return self._withdraw(actor_id, "protocol", amount, self.config.roles.protocol_treasury)

    def withdraw_pool_owner_fee(self, actor_id: str, amount: Decimal) -> FeeIncomeInfo:
        return self._withdraw(actor_id, "pool_owner", amount, self.config.roles.pool_owner_treasury)

    def withdraw_ea_fee(self, actor_id: str, amount: Decimal) -> FeeIncomeInfo:
        return self._withdraw(actor_id, "ea", amount, self.config.roles.ea_account)

    def _withdraw(
        self,
        actor_id: str,
        recipient: str,
        amount: Decimal,
        to_account: str,
    ) -> FeeIncomeInfo:
        operation = f"withdraw_{recipient}_fee"
        self._require_administrator(actor_id, operation)
        if amount <= ZERO:
            raise ValueError(f"Fee withdrawal must be positive: {amount}")

        income_field, withdrawn_field = _RECIPIENTS[recipient]
        with atomic(self.session):
            income = self._income(for_update=True)
            withdrawable = getattr(income, income_field) - getattr(income, withdrawn_field)
            if amount > withdrawable:
                raise InsufficientLiquidityError(f"{FEE_RESERVE}:{recipient}", amount, withdrawable)
            setattr(income, withdrawn_field, getattr(income, withdrawn_field) + amount)
            self._registry.custody.transfer(
                self.pool_id, FEE_RESERVE, to_account, amount, TransferPurpose.FEE_WITHDRAWAL,
            )

        logger.info("fee_withdrawn", extra={
            "pool_id": self.pool_id,
            "recipient": recipient,
            "actor_id": actor_id,
            "amount": str(amount),
            "to_account": to_account,
        })
        return FeeIncomeInfo.from_model(income)
