"""
Tests for FirstLossCoverService and PoolFeeManagerService.

Covers:
- Cover deposits, the max-liquidity cap and administrator withdrawals
- Losses absorbed by covers and recoveries returned to them
- Cover share of junior profit
- Fee accrual on profit and fee withdrawals to the treasury accounts
"""

from decimal import Decimal

import pytest

from pool_config.schema import FirstLossCoverConfig
from pool_engines.fees import FeeStructure
from pool_kernel.exceptions import (
    CoverCapExceededError,
    CoverNotFoundError,
    InsufficientLiquidityError,
    UnauthorizedError,
)
from pool_services.custody import FEE_RESERVE, TransferPurpose, borrower_account, cover_account
from tests.conftest import ADMIN, OUTSIDER, make_pool_config

COVERS = (
    FirstLossCoverConfig(cover_id="borrower-cover", rank=0, max_liquidity=Decimal("1000")),
    FirstLossCoverConfig(
        cover_id="admin-cover", rank=1, max_liquidity=Decimal("5000"),
        risk_yield_multiplier_bps=20000,
    ),
)


@pytest.fixture
def pool_config():
    return make_pool_config(
        covers=COVERS,
        fees=FeeStructure(protocol_fee_bps=1000, pool_owner_reward_bps=200, ea_reward_bps=300),
    )


class TestCoverDeposits:

    def test_deposit_raises_cover_and_pool_value(self, registry, pool_id):
        covers = registry.covers(pool_id)

        info = covers.deposit_cover("provider-1", "borrower-cover", Decimal("500"))

        assert info.cover_assets == Decimal("500")
        assert registry.pool(pool_id).get_balances().total_pool_value == Decimal("500")
        last = registry.custody.instructions(pool_id)[-1]
        assert last.from_account == "provider-1"
        assert last.to_account == cover_account("borrower-cover")

    def test_cap_exceeded_changes_nothing(self, registry, pool_id):
        covers = registry.covers(pool_id)

        with pytest.raises(CoverCapExceededError):
            covers.deposit_cover("provider-1", "borrower-cover", Decimal("1001"))

        assert covers.get_cover("borrower-cover").cover_assets == Decimal("0")
        assert registry.pool(pool_id).get_balances().total_pool_value == Decimal("0")
        assert registry.custody.instructions(pool_id) == []

    def test_unknown_cover(self, registry, pool_id):
        with pytest.raises(CoverNotFoundError):
            registry.covers(pool_id).deposit_cover("provider-1", "nope", Decimal("1"))

    def test_list_covers_by_rank(self, registry, pool_id):
        ids = [c.cover_id for c in registry.covers(pool_id).list_covers()]

        assert ids == ["borrower-cover", "admin-cover"]


class TestCoverWithdrawal:

    def test_admin_withdraws(self, registry, pool_id):
        covers = registry.covers(pool_id)
        covers.deposit_cover("provider-1", "admin-cover", Decimal("500"))

        info = covers.withdraw_cover(ADMIN, "admin-cover", Decimal("200"), "admin-wallet")

        assert info.cover_assets == Decimal("300")
        assert registry.pool(pool_id).get_balances().total_pool_value == Decimal("300")

    def test_non_admin_rejected(self, registry, pool_id):
        covers = registry.covers(pool_id)
        covers.deposit_cover("provider-1", "admin-cover", Decimal("500"))

        with pytest.raises(UnauthorizedError):
            covers.withdraw_cover(OUTSIDER, "admin-cover", Decimal("200"), "wallet")

    def test_cannot_withdraw_more_than_assets(self, registry, pool_id):
        covers = registry.covers(pool_id)
        covers.deposit_cover("provider-1", "admin-cover", Decimal("500"))

        with pytest.raises(InsufficientLiquidityError):
            covers.withdraw_cover(ADMIN, "admin-cover", Decimal("501"), "admin-wallet")


class TestCoverWaterfall:

    def test_cover_absorbs_loss_first(self, registry, pool_id, fund_pool):
        fund_pool()
        registry.covers(pool_id).deposit_cover("provider-1", "borrower-cover", Decimal("500"))
        pool = registry.pool(pool_id)

        result = pool.distribute_loss(Decimal("800"))

        cover = registry.covers(pool_id).get_cover("borrower-cover")
        balances = pool.get_balances()
        assert result.cover_losses[0] == ("borrower-cover", Decimal("500"))
        assert result.junior_loss == Decimal("300")
        assert cover.cover_assets == Decimal("0")
        assert cover.covered_loss == Decimal("500")
        assert balances.junior_assets == Decimal("1700")
        assert balances.available_balance == Decimal("10500")
        assert balances.total_pool_value == Decimal("9700")

    def test_recovery_returns_to_cover_after_tranches(self, registry, pool_id, fund_pool):
        fund_pool()
        covers = registry.covers(pool_id)
        covers.deposit_cover("provider-1", "borrower-cover", Decimal("500"))
        pool = registry.pool(pool_id)
        pool.distribute_loss(Decimal("800"))
        pool.receive(Decimal("800"), borrower_account("b-1"), TransferPurpose.PAYMENT)

        result = pool.distribute_loss_recovery(Decimal("800"))

        cover = covers.get_cover("borrower-cover")
        balances = pool.get_balances()
        assert result.junior_recovered == Decimal("300")
        assert result.cover_recoveries == (
            ("admin-cover", Decimal("0")), ("borrower-cover", Decimal("500")),
        )
        assert cover.cover_assets == Decimal("500")
        assert cover.covered_loss == Decimal("0")
        assert balances.junior_assets == Decimal("2000")
        assert balances.available_balance == Decimal("10800")

    def test_cover_earns_share_of_junior_profit(self, registry, pool_id, fund_pool):
        fund_pool()
        registry.covers(pool_id).deposit_cover("provider-1", "admin-cover", Decimal("1000"))
        pool = registry.pool(pool_id)
        pool.receive(Decimal("1000"), borrower_account("b-1"), TransferPurpose.PAYMENT)

        result = pool.distribute_profit(Decimal("1000"))

        # 855 net: senior 684, junior 171 shared 50/50 with the 2x-weighted cover
        assert result.net_profit == Decimal("855")
        assert result.split.senior == Decimal("684")
        assert result.cover_profits == (
            ("borrower-cover", Decimal("0")), ("admin-cover", Decimal("85.5")),
        )
        assert registry.covers(pool_id).get_cover("admin-cover").cover_assets == Decimal("1085.5")
        pool.check_ledger_invariant()


class TestFees:

    def _distribute(self, registry, pool_id, amount: Decimal):
        pool = registry.pool(pool_id)
        pool.receive(amount, borrower_account("b-1"), TransferPurpose.PAYMENT)
        return pool.distribute_profit(amount)

    def test_profit_accrues_fees(self, registry, pool_id, fund_pool):
        fund_pool()

        self._distribute(registry, pool_id, Decimal("1000"))

        income = registry.fees(pool_id).get_fee_income()
        balances = registry.pool(pool_id).get_balances()
        assert income.protocol_income == Decimal("100")
        assert income.pool_owner_income == Decimal("18")
        assert income.ea_income == Decimal("27")
        assert balances.available_balance == Decimal("10855")
        assert balances.total_pool_value == Decimal("10855")
        reserve = [i for i in registry.custody.instructions(pool_id) if i.to_account == FEE_RESERVE]
        assert reserve[0].amount == Decimal("145")

    def test_withdraw_protocol_fee_to_treasury(self, registry, pool_id, pool_config, fund_pool):
        fund_pool()
        self._distribute(registry, pool_id, Decimal("1000"))

        income = registry.fees(pool_id).withdraw_protocol_fee(ADMIN, Decimal("60"))

        assert income.protocol_withdrawable == Decimal("40")
        last = registry.custody.instructions(pool_id)[-1]
        assert last.from_account == FEE_RESERVE
        assert last.to_account == pool_config.roles.protocol_treasury
        assert last.purpose == TransferPurpose.FEE_WITHDRAWAL.value

    def test_withdraw_more_than_accrued_rejected(self, registry, pool_id, fund_pool):
        fund_pool()
        self._distribute(registry, pool_id, Decimal("1000"))

        with pytest.raises(InsufficientLiquidityError):
            registry.fees(pool_id).withdraw_ea_fee(ADMIN, Decimal("27.01"))

        assert registry.fees(pool_id).get_fee_income().ea_withdrawable == Decimal("27")

    def test_withdraw_requires_admin(self, registry, pool_id, fund_pool):
        fund_pool()
        self._distribute(registry, pool_id, Decimal("1000"))

        with pytest.raises(UnauthorizedError):
            registry.fees(pool_id).withdraw_pool_owner_fee(OUTSIDER, Decimal("1"))
