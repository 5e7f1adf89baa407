"""Tests for the structured logging system (pool_kernel/logging_config.py)."""

import json
import logging
from decimal import Decimal
from io import StringIO

import pytest

from pool_engines.fees import FeeStructure, calc_fee_distribution
from pool_engines.tracer import TRACE_TYPE, compute_input_fingerprint
from pool_kernel.exceptions import InsufficientLiquidityError
from pool_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Reset logging state between tests and restore the suite configuration."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()
    configure_logging(level=logging.DEBUG)


def _make_handler() -> tuple[logging.Handler, StringIO]:
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    return handler, stream


def _parse_all_logs(stream: StringIO) -> list[dict]:
    lines = stream.getvalue().strip().split("\n")
    return [json.loads(line) for line in lines if line]


class TestStructuredFormatter:

    def test_basic_json_output(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)

        get_logger("test").info("hello")

        record = _parse_all_logs(stream)[0]
        assert record["level"] == "INFO"
        assert record["message"] == "hello"
        assert record["logger"] == "pool_kernel.test"
        assert "ts" in record

    def test_extra_fields_and_decimals(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)

        get_logger("test").info("paid", extra={"amount": Decimal("1.50"), "epoch": 3})

        record = _parse_all_logs(stream)[0]
        assert record["amount"] == "1.50"
        assert record["epoch"] == 3

    def test_context_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)

        with LogContext.bind(pool_id="p-1", borrower_id="b-1"):
            get_logger("test").info("inside")
        get_logger("test").info("outside")

        inside, outside = _parse_all_logs(stream)
        assert inside["pool_id"] == "p-1"
        assert inside["borrower_id"] == "b-1"
        assert "pool_id" not in outside

    def test_nested_bind_restores_outer_value(self):
        with LogContext.bind(pool_id="outer"):
            with LogContext.bind(pool_id="inner", lender_id="l-1"):
                assert LogContext.get_all() == {"pool_id": "inner", "lender_id": "l-1"}
            assert LogContext.get_all() == {"pool_id": "outer"}

    def test_exception_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)

        try:
            raise InsufficientLiquidityError("pool_safe", Decimal("10"), Decimal("5"))
        except InsufficientLiquidityError:
            get_logger("test").exception("failed")

        record = _parse_all_logs(stream)[0]
        assert record["exc_type"] == "InsufficientLiquidityError"
        assert record["exc_code"] == "INSUFFICIENT_LIQUIDITY"
        assert record["exc_account"] == "pool_safe"
        assert "traceback" in record


class TestConfigureLogging:

    def test_idempotent(self):
        handler, _ = _make_handler()
        configure_logging(handler=handler)
        configure_logging(handler=handler)

        assert len(logging.getLogger("pool_kernel").handlers) == 1

    def test_level_filters(self):
        handler, stream = _make_handler()
        configure_logging(level=logging.WARNING, handler=handler)

        get_logger("test").info("dropped")
        get_logger("test").warning("kept")

        assert [r["message"] for r in _parse_all_logs(stream)] == ["kept"]


class TestEngineTrace:

    def test_engine_call_emits_trace(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)

        calc_fee_distribution(profit=Decimal("100"), fees=FeeStructure(protocol_fee_bps=1000), places=6)

        traces = [r for r in _parse_all_logs(stream) if r.get("trace_type") == TRACE_TYPE]
        assert len(traces) == 1
        assert traces[0]["engine_name"] == "fees"
        assert traces[0]["logger"] == "pool_kernel.engines.tracer"
        assert len(traces[0]["input_fingerprint"]) == 16

    def test_fingerprint_is_deterministic(self):
        kwargs = {"profit": Decimal("100"), "fees": FeeStructure(protocol_fee_bps=1000)}

        first = compute_input_fingerprint(("profit", "fees"), kwargs)
        second = compute_input_fingerprint(("profit", "fees"), dict(reversed(list(kwargs.items()))))
        other = compute_input_fingerprint(("profit", "fees"), {**kwargs, "profit": Decimal("101")})

        assert first == second
        assert first != other
