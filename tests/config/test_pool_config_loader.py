"""
Tests for pool configuration loading and validation.

Covers:
- The bundled example pool parses into typed config
- YAML floats rejected for amounts
- Missing keys and failed validation reported as InvalidPoolConfigError
- Validation warnings logged, checksums deterministic
"""

from decimal import Decimal

import pytest
import yaml

from pool_config import (
    EXAMPLE_POOL_PATH,
    compute_checksum,
    load_pool_config,
    parse_pool_config,
    validate_pool_config,
)
from pool_engines.calendar import PeriodDuration
from pool_engines.redemption import RedemptionPriority
from pool_engines.tranches_policy import TranchesPolicyKind
from pool_kernel.domain.values import CreditKind
from pool_kernel.exceptions import InvalidPoolConfigError
from tests.conftest import make_pool_config


def _example_data() -> dict:
    with open(EXAMPLE_POOL_PATH) as f:
        return yaml.safe_load(f)


def _write(tmp_path, data: dict):
    path = tmp_path / "pool.yaml"
    path.write_text(yaml.safe_dump(data))
    return path


class TestExamplePool:

    def test_loads(self):
        config = load_pool_config(EXAMPLE_POOL_PATH)

        assert config.pool_id == "example-pool"
        assert config.token_decimals == 6
        assert config.credit_kind == CreditKind.CREDIT_LINE
        assert config.lp.liquidity_cap == Decimal("10000000")
        assert config.lp.redemption_priority == RedemptionPriority.SENIOR_FIRST
        assert config.tranches_policy.kind == TranchesPolicyKind.FIXED_SENIOR_YIELD
        assert config.credit_terms.period_duration == PeriodDuration.MONTHLY
        assert config.credit_terms.late_payment_grace_period_days == 5

    def test_covers_in_rank_order(self):
        config = load_pool_config(EXAMPLE_POOL_PATH)

        assert [c.cover_id for c in config.covers] == ["borrower-cover", "admin-cover"]
        assert config.cover_config("admin-cover").cover_cap_per_loss == Decimal("250000")
        assert config.cover_config("borrower-cover").cover_cap_per_loss is None

    def test_roles(self):
        config = load_pool_config(EXAMPLE_POOL_PATH)

        assert config.roles.administrators == frozenset({"pool-admin"})
        assert config.roles.credit_approvers == frozenset({"evaluation-agent"})

    def test_loaded_config_logged_with_checksum(self, captured_logs):
        load_pool_config(EXAMPLE_POOL_PATH)

        loaded = [r for r in captured_logs() if r["message"] == "pool_config_loaded"]
        assert loaded[0]["checksum"] == compute_checksum(_example_data())


class TestParsing:

    def test_float_amount_rejected(self, tmp_path):
        data = _example_data()
        data["lp"]["liquidity_cap"] = 1000.5

        with pytest.raises(InvalidPoolConfigError) as exc_info:
            load_pool_config(_write(tmp_path, data))

        assert "quoted" in exc_info.value.errors[0]

    def test_integer_amount_accepted(self):
        data = _example_data()
        data["lp"]["liquidity_cap"] = 5000

        assert parse_pool_config(data).lp.liquidity_cap == Decimal("5000")

    def test_missing_section_rejected(self, tmp_path):
        data = _example_data()
        del data["credit"]

        with pytest.raises(InvalidPoolConfigError) as exc_info:
            load_pool_config(_write(tmp_path, data))

        assert exc_info.value.pool_id == "example-pool"
        assert exc_info.value.errors[0].startswith("KeyError")

    def test_unknown_enum_value_rejected(self, tmp_path):
        data = _example_data()
        data["credit_kind"] = "payday_loan"

        with pytest.raises(InvalidPoolConfigError):
            load_pool_config(_write(tmp_path, data))

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_pool_config(tmp_path / "absent.yaml")


class TestValidation:

    def test_duplicate_cover_rank_rejected(self, tmp_path):
        data = _example_data()
        data["first_loss_covers"][1]["rank"] = 0

        with pytest.raises(InvalidPoolConfigError) as exc_info:
            load_pool_config(_write(tmp_path, data))

        assert any("Duplicate cover rank" in e for e in exc_info.value.errors)

    def test_roles_required(self):
        data = _example_data()
        data["roles"] = {}

        result = validate_pool_config(parse_pool_config(data))

        assert not result.is_valid
        assert len(result.errors) == 2

    def test_grace_period_must_be_shorter_than_pay_period(self):
        result = validate_pool_config(make_pool_config(late_payment_grace_period_days=30))

        assert not result.is_valid
        assert any("late_payment_grace_period_days" in e for e in result.errors)

    def test_grace_period_inside_pay_period_accepted(self):
        assert validate_pool_config(make_pool_config(late_payment_grace_period_days=29)).is_valid

    def test_no_covers_is_a_warning(self):
        result = validate_pool_config(make_pool_config())

        assert result.is_valid
        assert any("first-loss covers" in w for w in result.warnings)

    def test_warning_logged_on_load(self, tmp_path, captured_logs):
        data = _example_data()
        data["first_loss_covers"] = []

        load_pool_config(_write(tmp_path, data))

        warnings = [r for r in captured_logs() if r["message"] == "pool_config_warning"]
        assert warnings and warnings[0]["level"] == "WARNING"


class TestChecksum:

    def test_key_order_does_not_matter(self):
        data = _example_data()
        reordered = dict(reversed(list(data.items())))

        assert compute_checksum(data) == compute_checksum(reordered)

    def test_any_change_alters_checksum(self):
        data = _example_data()
        changed = {**data, "version": 2}

        assert compute_checksum(data) != compute_checksum(changed)
