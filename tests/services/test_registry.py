"""
Tests for PoolRegistry configuration management.
"""

from dataclasses import replace
from decimal import Decimal

import pytest

from pool_config.schema import FirstLossCoverConfig, LPConfig, PoolRoles
from pool_engines.fees import FeeStructure
from pool_kernel.domain.values import CreditKind
from pool_kernel.exceptions import InvalidPoolConfigError, UnauthorizedError
from tests.conftest import ADMIN, APPROVER, make_pool_config

COVER = FirstLossCoverConfig(cover_id="borrower-cover", rank=0, max_liquidity=Decimal("1000"))


@pytest.fixture
def pool_config():
    return make_pool_config(covers=(COVER,))


class TestInitializePool:

    def test_invalid_config_rejected(self, registry):
        config = make_pool_config(
            pool_id="bad-pool", lp=LPConfig(liquidity_cap=Decimal("0")),
        )

        with pytest.raises(InvalidPoolConfigError) as exc_info:
            registry.initialize_pool(config)

        assert any("liquidity_cap" in e for e in exc_info.value.errors)
        assert "bad-pool" not in registry.pool_ids()

    def test_several_pools_share_one_registry(self, registry, pool_id):
        registry.initialize_pool(make_pool_config(pool_id="second-pool"))

        assert sorted(registry.pool_ids()) == ["second-pool", pool_id]


class TestUpdateConfig:

    def test_admin_updates_fees(self, registry, pool_config, pool_id):
        new = replace(pool_config, version=2, fees=FeeStructure(protocol_fee_bps=500))

        registry.update_config(ADMIN, new)

        assert registry.config(pool_id).version == 2
        assert registry.config(pool_id).fees.protocol_fee_bps == 500

    def test_non_admin_rejected(self, registry, pool_config):
        with pytest.raises(UnauthorizedError):
            registry.update_config(APPROVER, replace(pool_config, version=2))

    def test_credit_kind_cannot_change(self, registry, pool_config):
        new = replace(pool_config, credit_kind=CreditKind.RECEIVABLE_FACTORING)

        with pytest.raises(InvalidPoolConfigError):
            registry.update_config(ADMIN, new)

    def test_new_cover_created(self, registry, pool_config, pool_id):
        extra = FirstLossCoverConfig(cover_id="admin-cover", rank=1, max_liquidity=Decimal("500"))

        registry.update_config(ADMIN, replace(pool_config, covers=(COVER, extra)))

        info = registry.covers(pool_id).get_cover("admin-cover")
        assert info.max_liquidity == Decimal("500")

    def test_max_liquidity_change_applied(self, registry, pool_config, pool_id):
        raised = replace(COVER, max_liquidity=Decimal("3000"))

        registry.update_config(ADMIN, replace(pool_config, covers=(raised,)))

        assert registry.covers(pool_id).get_cover("borrower-cover").max_liquidity == Decimal("3000")

    def test_funded_cover_cannot_be_dropped(self, registry, pool_config, pool_id):
        registry.covers(pool_id).deposit_cover("provider-1", "borrower-cover", Decimal("10"))

        with pytest.raises(InvalidPoolConfigError):
            registry.update_config(ADMIN, replace(pool_config, covers=()))

        assert [c.cover_id for c in registry.covers(pool_id).list_covers()] == ["borrower-cover"]

    def test_unfunded_cover_removed(self, registry, pool_config, pool_id):
        registry.update_config(ADMIN, replace(pool_config, covers=()))

        assert registry.covers(pool_id).list_covers() == []

    def test_roles_take_effect(self, registry, pool_config, pool_id):
        roles = PoolRoles(administrators=frozenset({"new-admin"}), credit_approvers=frozenset({APPROVER}))
        registry.update_config(ADMIN, replace(pool_config, roles=roles))

        with pytest.raises(UnauthorizedError):
            registry.pool(pool_id).disable_pool(ADMIN)

        registry.pool(pool_id).disable_pool("new-admin")
        assert not registry.pool(pool_id).is_enabled()
