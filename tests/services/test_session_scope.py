"""
Tests for the module-level engine and ``session_scope``.

Covers:
- A committed scope is visible to the next session
- A failing scope rolls back every operation in it
- Sessions require an initialized engine
"""

from decimal import Decimal

import pytest

from pool_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session,
    init_engine_from_url,
    reset_engine,
    session_scope,
)
from pool_kernel.domain.values import Tranche
from pool_kernel.exceptions import TrancheRatioExceededError
from pool_services.registry import PoolRegistry
from tests.conftest import make_pool_config

POOL = "scoped-pool"


@pytest.fixture
def module_engine(clock):
    engine = init_engine_from_url("sqlite:///:memory:")
    create_tables()
    with session_scope() as session:
        PoolRegistry(session, clock=clock).initialize_pool(make_pool_config(pool_id=POOL))
    yield engine
    drop_tables()
    reset_engine()


def _registry(session, clock) -> PoolRegistry:
    return PoolRegistry(session, (make_pool_config(pool_id=POOL),), clock)


def test_committed_scope_visible_to_next_session(module_engine, clock):
    with session_scope() as session:
        _registry(session, clock).vault(POOL, Tranche.JUNIOR).deposit("junior-lender", Decimal("2000"))

    with session_scope() as session:
        balances = _registry(session, clock).pool(POOL).get_balances()

    assert balances.junior_assets == Decimal("2000")
    assert balances.available_balance == Decimal("2000")


def test_failed_scope_rolls_back_everything(module_engine, clock, captured_logs):
    with pytest.raises(TrancheRatioExceededError):
        with session_scope() as session:
            registry = _registry(session, clock)
            registry.vault(POOL, Tranche.JUNIOR).deposit("junior-lender", Decimal("2000"))
            registry.vault(POOL, Tranche.SENIOR).deposit("senior-lender", Decimal("9000"))

    with session_scope() as session:
        balances = _registry(session, clock).pool(POOL).get_balances()

    assert balances.junior_assets == Decimal("0")
    assert balances.total_pool_value == Decimal("0")
    assert any(r["message"] == "transaction_rolled_back" for r in captured_logs())


def test_session_requires_initialized_engine():
    reset_engine()

    with pytest.raises(RuntimeError):
        get_session()
