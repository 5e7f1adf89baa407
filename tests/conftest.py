"""
Pytest fixtures for the pool settlement test suite.

Every service test runs against a fresh in-memory SQLite database with a
DeterministicClock fixed at 2024-01-15, and a small two-tranche credit
line pool whose fees are zero unless a test swaps in its own config.
"""

import json
import logging
from dataclasses import replace
from datetime import date, datetime, timezone
from decimal import Decimal
from io import StringIO

import pytest
from sqlalchemy.orm import sessionmaker

from pool_config.schema import (
    EpochConfig,
    FirstLossCoverConfig,
    LPConfig,
    PoolConfig,
    PoolRoles,
    TranchesPolicyConfig,
)
from pool_engines.calendar import PeriodDuration
from pool_engines.credit_due import CreditTerms
from pool_engines.fees import FeeStructure
from pool_engines.tranches_policy import TranchesPolicyKind
from pool_kernel.db.engine import build_engine, create_tables
from pool_kernel.domain.clock import DeterministicClock
from pool_kernel.domain.values import CreditKind, Tranche
from pool_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from pool_services.registry import PoolRegistry

ADMIN = "pool-admin"
APPROVER = "evaluation-agent"
OUTSIDER = "mallory"

START_DATE = date(2024, 1, 15)


# ---------------------------------------------------------------------------
# Logging fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture pool_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, registry):
            registry.pool("test-pool").distribute_profit(Decimal("10"))
            logs = captured_logs()
            assert any(r["message"] == "profit_distributed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("pool_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def engine():
    """Fresh in-memory SQLite database per test."""
    eng = build_engine("sqlite:///:memory:")
    create_tables(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session(engine):
    factory = sessionmaker(bind=engine, expire_on_commit=False)
    sess = factory()
    yield sess
    sess.rollback()
    sess.close()


@pytest.fixture
def clock():
    return DeterministicClock(datetime(2024, 1, 15, 12, 0, 0, tzinfo=timezone.utc))


# ---------------------------------------------------------------------------
# Pool configuration
# ---------------------------------------------------------------------------


def make_pool_config(
    *,
    pool_id: str = "test-pool",
    credit_kind: CreditKind = CreditKind.CREDIT_LINE,
    covers: tuple[FirstLossCoverConfig, ...] = (),
    fees: FeeStructure | None = None,
    policy: TranchesPolicyConfig | None = None,
    lp: LPConfig | None = None,
    **terms_overrides,
) -> PoolConfig:
    """Build a 6-decimal pool config; keyword arguments override credit terms."""
    terms = CreditTerms(
        yield_bps=1200,
        num_of_periods=3,
        period_duration=PeriodDuration.MONTHLY,
        revolving=True,
        delayed_threshold=1,
        default_threshold_periods=3,
        auto_default=True,
        advance_rate_bps=8000,
    )
    if terms_overrides:
        terms = replace(terms, **terms_overrides)
    return PoolConfig(
        pool_id=pool_id,
        name="Test Pool",
        token_decimals=6,
        credit_kind=credit_kind,
        lp=lp or LPConfig(liquidity_cap=Decimal("1000000"), max_senior_junior_ratio=Decimal("4")),
        fees=fees or FeeStructure(),
        tranches_policy=policy or TranchesPolicyConfig(
            kind=TranchesPolicyKind.RISK_ADJUSTED, risk_adjustment_bps=0,
        ),
        credit_terms=terms,
        covers=covers,
        epoch=EpochConfig(epoch_period=PeriodDuration.MONTHLY),
        roles=PoolRoles(
            administrators=frozenset({ADMIN}),
            credit_approvers=frozenset({APPROVER}),
        ),
    )


@pytest.fixture
def pool_config() -> PoolConfig:
    return make_pool_config()


@pytest.fixture
def registry(session, clock, pool_config) -> PoolRegistry:
    """Registry with ``pool_config`` initialized on the clock's start date."""
    reg = PoolRegistry(session, clock=clock)
    reg.initialize_pool(pool_config)
    return reg


@pytest.fixture
def pool_id(pool_config) -> str:
    return pool_config.pool_id


@pytest.fixture
def fund_pool(registry, pool_id):
    """Deposit junior and senior capital; returns the registry."""

    def _fund(junior: Decimal = Decimal("2000"), senior: Decimal = Decimal("8000")):
        if junior:
            registry.vault(pool_id, Tranche.JUNIOR).deposit("junior-lender", junior)
        if senior:
            registry.vault(pool_id, Tranche.SENIOR).deposit("senior-lender", senior)
        return registry

    return _fund
