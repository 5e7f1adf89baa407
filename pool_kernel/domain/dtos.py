"""
DTOs -- Immutable read models returned by the service layer.

Responsibility:
    Frozen snapshots of pool balances, covers, credit records, receivables,
    epochs and redemption bookkeeping.  Callers receive these instead of live
    ORM rows so nothing outside a service can mutate the ledger.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    ``from_model()`` class methods are boundary converters invoked only from
    pool_services.

Invariants enforced:
    - DTOs are frozen; enum-valued columns are converted back into their
      enums on the way out.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING

from pool_kernel.domain.values import (
    ZERO,
    CreditKind,
    CreditState,
    EpochStatus,
    ReceivableState,
    Tranche,
)

if TYPE_CHECKING:
    from pool_kernel.models.credit import CreditRecord, Receivable
    from pool_kernel.models.pool import FirstLossCoverLedger, PoolFeeIncome, PoolLedger
    from pool_kernel.models.tranche import (
        Epoch,
        EpochRedemptionSummary,
        LenderRedemptionRecord,
        LenderShareAccount,
    )


@dataclass(frozen=True)
class PoolBalancesInfo:
    """Snapshot of a pool ledger."""

    pool_id: str
    enabled: bool
    senior_assets: Decimal
    junior_assets: Decimal
    senior_loss: Decimal
    junior_loss: Decimal
    total_pool_value: Decimal
    available_balance: Decimal
    last_profit_date: date | None
    senior_unpaid_yield: Decimal = ZERO

    def assets_of(self, tranche: Tranche) -> Decimal:
        return self.senior_assets if tranche == Tranche.SENIOR else self.junior_assets

    @property
    def total_tranche_assets(self) -> Decimal:
        return self.senior_assets + self.junior_assets

    @classmethod
    def from_model(cls, model: PoolLedger) -> PoolBalancesInfo:
        return cls(
            pool_id=model.pool_id,
            enabled=model.enabled,
            senior_assets=model.senior_assets,
            junior_assets=model.junior_assets,
            senior_loss=model.senior_loss,
            junior_loss=model.junior_loss,
            total_pool_value=model.total_pool_value,
            available_balance=model.available_balance,
            last_profit_date=model.last_profit_date,
            senior_unpaid_yield=model.senior_unpaid_yield,
        )


@dataclass(frozen=True)
class CoverInfo:
    """Snapshot of one first-loss cover."""

    cover_id: str
    rank: int
    cover_assets: Decimal
    max_liquidity: Decimal
    covered_loss: Decimal

    @property
    def available_cap(self) -> Decimal:
        """Room left below ``max_liquidity``."""
        return max(ZERO, self.max_liquidity - self.cover_assets)

    @classmethod
    def from_model(cls, model: FirstLossCoverLedger) -> CoverInfo:
        return cls(
            cover_id=model.cover_id,
            rank=model.rank,
            cover_assets=model.cover_assets,
            max_liquidity=model.max_liquidity,
            covered_loss=model.covered_loss,
        )


@dataclass(frozen=True)
class FeeIncomeInfo:
    """Accrued fee incomes and what each recipient can still withdraw."""

    protocol_income: Decimal
    pool_owner_income: Decimal
    ea_income: Decimal
    protocol_withdrawable: Decimal
    pool_owner_withdrawable: Decimal
    ea_withdrawable: Decimal

    @classmethod
    def from_model(cls, model: PoolFeeIncome) -> FeeIncomeInfo:
        return cls(
            protocol_income=model.protocol_income,
            pool_owner_income=model.pool_owner_income,
            ea_income=model.ea_income,
            protocol_withdrawable=model.protocol_income - model.protocol_withdrawn,
            pool_owner_withdrawable=model.pool_owner_income - model.pool_owner_withdrawn,
            ea_withdrawable=model.ea_income - model.ea_withdrawn,
        )


@dataclass(frozen=True)
class CreditRecordInfo:
    """
    Snapshot of a credit record with its derived due amounts.

    ``next_due``, ``past_due`` and ``payoff`` are computed from the bill
    buckets exactly as the billing engine defines them.
    """

    borrower_id: str
    credit_kind: CreditKind
    state: CreditState
    credit_limit: Decimal
    available_credit: Decimal
    committed_amount: Decimal
    yield_bps: int
    remaining_periods: int
    missed_periods: int
    next_due_date: date | None
    unbilled_principal: Decimal
    yield_due: Decimal
    principal_due: Decimal
    yield_past_due: Decimal
    principal_past_due: Decimal
    late_fee: Decimal
    total_drawn: Decimal
    default_loss: Decimal
    loss_recovered: Decimal

    @property
    def next_due(self) -> Decimal:
        return self.yield_due + self.principal_due

    @property
    def past_due(self) -> Decimal:
        return self.late_fee + self.yield_past_due + self.principal_past_due

    @property
    def payoff(self) -> Decimal:
        return self.past_due + self.next_due + self.unbilled_principal

    @property
    def principal(self) -> Decimal:
        return self.unbilled_principal + self.principal_due + self.principal_past_due

    @classmethod
    def from_model(cls, model: CreditRecord) -> CreditRecordInfo:
        yield_due = max(model.accrued_yield, model.committed_yield) - model.paid_yield
        return cls(
            borrower_id=model.borrower_id,
            credit_kind=CreditKind(model.credit_kind),
            state=CreditState(model.state),
            credit_limit=model.credit_limit,
            available_credit=model.available_credit,
            committed_amount=model.committed_amount,
            yield_bps=model.yield_bps,
            remaining_periods=model.remaining_periods,
            missed_periods=model.missed_periods,
            next_due_date=model.next_due_date,
            unbilled_principal=model.unbilled_principal,
            yield_due=max(ZERO, yield_due),
            principal_due=model.principal_due,
            yield_past_due=model.yield_past_due,
            principal_past_due=model.principal_past_due,
            late_fee=model.late_fee,
            total_drawn=model.total_drawn,
            default_loss=model.default_loss,
            loss_recovered=model.loss_recovered,
        )


@dataclass(frozen=True)
class ReceivableInfo:
    receivable_id: str
    borrower_id: str
    credit_kind: CreditKind
    amount: Decimal
    maturity_date: date
    state: ReceivableState
    advance_rate_bps: int
    drawn_amount: Decimal
    paid_amount: Decimal

    @property
    def outstanding(self) -> Decimal:
        return max(ZERO, self.amount - self.paid_amount)

    @classmethod
    def from_model(cls, model: Receivable) -> ReceivableInfo:
        return cls(
            receivable_id=model.receivable_id,
            borrower_id=model.borrower_id,
            credit_kind=CreditKind(model.credit_kind),
            amount=model.amount,
            maturity_date=model.maturity_date,
            state=ReceivableState(model.state),
            advance_rate_bps=model.advance_rate_bps,
            drawn_amount=model.drawn_amount,
            paid_amount=model.paid_amount,
        )


@dataclass(frozen=True)
class EpochInfo:
    epoch_id: int
    start_date: date
    end_date: date
    status: EpochStatus

    @classmethod
    def from_model(cls, model: Epoch) -> EpochInfo:
        return cls(
            epoch_id=model.epoch_id,
            start_date=model.start_date,
            end_date=model.end_date,
            status=EpochStatus(model.status),
        )


@dataclass(frozen=True)
class RedemptionSummaryInfo:
    tranche: Tranche
    epoch_id: int
    total_shares_requested: Decimal
    total_shares_processed: Decimal
    total_amount_processed: Decimal
    price: Decimal | None
    sealed: bool

    @classmethod
    def from_model(cls, model: EpochRedemptionSummary) -> RedemptionSummaryInfo:
        return cls(
            tranche=Tranche(model.tranche),
            epoch_id=model.epoch_id,
            total_shares_requested=model.total_shares_requested,
            total_shares_processed=model.total_shares_processed,
            total_amount_processed=model.total_amount_processed,
            price=model.price,
            sealed=model.sealed,
        )


@dataclass(frozen=True)
class LenderPositionInfo:
    """A lender's shares in one tranche plus their redemption progress."""

    tranche: Tranche
    lender_id: str
    shares: Decimal
    escrowed_shares: Decimal
    last_epoch_id: int
    total_shares_processed: Decimal
    total_amount_processed: Decimal
    total_amount_withdrawn: Decimal

    @property
    def withdrawable(self) -> Decimal:
        return self.total_amount_processed - self.total_amount_withdrawn

    @classmethod
    def from_models(
        cls,
        account: LenderShareAccount,
        record: LenderRedemptionRecord | None,
    ) -> LenderPositionInfo:
        return cls(
            tranche=Tranche(account.tranche),
            lender_id=account.lender_id,
            shares=account.shares,
            escrowed_shares=account.escrowed_shares,
            last_epoch_id=record.last_epoch_id if record is not None else 0,
            total_shares_processed=record.total_shares_processed if record is not None else ZERO,
            total_amount_processed=record.total_amount_processed if record is not None else ZERO,
            total_amount_withdrawn=record.total_amount_withdrawn if record is not None else ZERO,
        )
