"""
Tests for PoolService: the pool ledger and its waterfall.

Covers:
- Pool initialization and the first epoch
- Profit, loss and recovery bookings against the ledger
- Ledger invariant enforcement
- Enable / disable gating
- Custody instructions emitted for every movement
"""

from datetime import date
from decimal import Decimal

import pytest

from pool_kernel.domain.values import Tranche
from pool_kernel.exceptions import (
    InsufficientLiquidityError,
    LedgerInvariantViolationError,
    PoolDisabledError,
    PoolNotFoundError,
    UnauthorizedError,
)
from pool_services.custody import POOL_SAFE, TransferPurpose, borrower_account, lender_account
from tests.conftest import ADMIN, OUTSIDER


class TestInitialization:

    def test_new_pool_is_empty_and_enabled(self, registry, pool_id):
        balances = registry.pool(pool_id).get_balances()

        assert balances.enabled
        assert balances.total_pool_value == Decimal("0")
        assert balances.available_balance == Decimal("0")
        assert balances.last_profit_date == date(2024, 1, 15)

    def test_first_epoch_runs_to_next_month(self, registry, pool_id):
        epoch = registry.epochs(pool_id).current_epoch()

        assert epoch.epoch_id == 1
        assert epoch.start_date == date(2024, 1, 15)
        assert epoch.end_date == date(2024, 2, 1)

    def test_initialize_is_idempotent(self, registry, pool_config, pool_id, fund_pool):
        fund_pool()

        balances = registry.initialize_pool(pool_config)

        assert balances.total_pool_value == Decimal("10000")
        assert registry.epochs(pool_id).current_epoch().epoch_id == 1

    def test_unknown_pool_rejected(self, registry):
        with pytest.raises(PoolNotFoundError):
            registry.pool("no-such-pool")


class TestProfit:

    def test_profit_split_by_policy(self, registry, pool_id, fund_pool):
        fund_pool()
        pool = registry.pool(pool_id)
        pool.receive(Decimal("100"), borrower_account("b-1"), TransferPurpose.PAYMENT)

        result = pool.distribute_profit(Decimal("100"))

        balances = pool.get_balances()
        assert result.split.senior == Decimal("80")
        assert result.split.junior == Decimal("20")
        assert balances.senior_assets == Decimal("8080")
        assert balances.junior_assets == Decimal("2020")
        assert balances.total_pool_value == Decimal("10100")
        assert balances.available_balance == Decimal("10100")

    def test_profit_logged(self, registry, pool_id, fund_pool, captured_logs):
        fund_pool()
        pool = registry.pool(pool_id)
        pool.receive(Decimal("10"), borrower_account("b-1"), TransferPurpose.PAYMENT)

        pool.distribute_profit(Decimal("10"), reference="payment:b-1")

        records = [r for r in captured_logs() if r["message"] == "profit_distributed"]
        assert len(records) == 1
        assert records[0]["pool_id"] == pool_id
        assert records[0]["reference"] == "payment:b-1"

    def test_last_profit_date_moves_to_today(self, registry, pool_id, clock, fund_pool):
        fund_pool()
        clock.set_date(date(2024, 1, 20))
        pool = registry.pool(pool_id)
        pool.receive(Decimal("10"), borrower_account("b-1"), TransferPurpose.PAYMENT)

        pool.distribute_profit(Decimal("10"))

        assert pool.get_balances().last_profit_date == date(2024, 1, 20)


class TestLoss:

    def test_loss_hits_junior_then_senior(self, registry, pool_id, fund_pool):
        fund_pool()
        pool = registry.pool(pool_id)

        result = pool.distribute_loss(Decimal("2010"))

        balances = pool.get_balances()
        assert result.junior_loss == Decimal("2000")
        assert result.senior_loss == Decimal("10")
        assert balances.junior_assets == Decimal("0")
        assert balances.senior_assets == Decimal("7990")
        assert balances.junior_loss == Decimal("2000")
        assert balances.senior_loss == Decimal("10")
        assert balances.total_pool_value == Decimal("7990")

    def test_shortfall_logged_as_error(self, registry, pool_id, fund_pool, captured_logs):
        fund_pool()

        result = registry.pool(pool_id).distribute_loss(Decimal("20000"))

        assert result.shortfall == Decimal("10000")
        errors = [r for r in captured_logs() if r["message"] == "loss_shortfall"]
        assert errors and errors[0]["level"] == "ERROR"

    def test_recovery_restores_senior_before_junior(self, registry, pool_id, fund_pool):
        fund_pool()
        pool = registry.pool(pool_id)
        pool.distribute_loss(Decimal("2010"))
        pool.receive(Decimal("500"), borrower_account("b-1"), TransferPurpose.PAYMENT)

        result = pool.distribute_loss_recovery(Decimal("500"))

        balances = pool.get_balances()
        assert result.senior_recovered == Decimal("10")
        assert result.junior_recovered == Decimal("490")
        assert balances.senior_assets == Decimal("8000")
        assert balances.senior_loss == Decimal("0")
        assert balances.junior_assets == Decimal("490")
        assert balances.junior_loss == Decimal("1510")


class TestLedgerInvariant:

    def test_tampered_total_detected(self, registry, pool_id, fund_pool, session):
        fund_pool()
        pool = registry.pool(pool_id)
        pool.ledger().total_pool_value += Decimal("1")

        with pytest.raises(LedgerInvariantViolationError):
            pool.check_ledger_invariant()

    def test_consistent_ledger_passes(self, registry, pool_id, fund_pool):
        fund_pool()

        registry.pool(pool_id).check_ledger_invariant()


class TestCash:

    def test_pay_out_beyond_safe_rejected(self, registry, pool_id, fund_pool):
        fund_pool(junior=Decimal("100"), senior=Decimal("0"))

        with pytest.raises(InsufficientLiquidityError):
            registry.pool(pool_id).pay_out(
                Decimal("101"), borrower_account("b-1"), TransferPurpose.DRAWDOWN,
            )

        assert registry.pool(pool_id).get_balances().available_balance == Decimal("100")

    def test_movements_recorded_in_order(self, registry, pool_id, fund_pool):
        fund_pool()
        registry.pool(pool_id).pay_out(Decimal("50"), borrower_account("b-1"), TransferPurpose.DRAWDOWN)

        instructions = registry.custody.instructions(pool_id)

        assert [i.sequence for i in instructions] == [1, 2, 3]
        assert instructions[0].from_account == lender_account("junior-lender")
        assert instructions[0].to_account == POOL_SAFE
        assert instructions[0].purpose == TransferPurpose.LENDER_DEPOSIT.value
        assert instructions[2].to_account == borrower_account("b-1")
        assert instructions[2].amount == Decimal("50")


class TestEnableDisable:

    def test_disabled_pool_rejects_distribution(self, registry, pool_id):
        pool = registry.pool(pool_id)
        pool.disable_pool(ADMIN)

        with pytest.raises(PoolDisabledError):
            pool.distribute_profit(Decimal("1"))
        with pytest.raises(PoolDisabledError):
            registry.vault(pool_id, Tranche.JUNIOR).deposit("lender", Decimal("1"))

    def test_re_enable(self, registry, pool_id):
        pool = registry.pool(pool_id)
        pool.disable_pool(ADMIN)
        pool.enable_pool(ADMIN)

        assert pool.is_enabled()

    def test_only_admin_can_disable(self, registry, pool_id):
        with pytest.raises(UnauthorizedError):
            registry.pool(pool_id).disable_pool(OUTSIDER)

        assert registry.pool(pool_id).is_enabled()
