"""
Tests for epoch settlement and lazy lender catch-up.

Covers:
- Share price
- Senior-first and pro-rata liquidity sharing
- Junior cap from the senior/junior ratio
- Folding sealed epoch summaries into one lender's totals
"""

from decimal import Decimal

import pytest

from pool_engines.redemption import (
    RedemptionPriority,
    SealedSummary,
    TrancheRedemptionInput,
    compute_price,
    lender_catch_up,
    settle_epoch,
    shares_for_amount,
)
from pool_kernel.domain.values import Tranche


def _input(tranche: Tranche, assets: str, supply: str, requested: str) -> TrancheRedemptionInput:
    return TrancheRedemptionInput(
        tranche=tranche,
        assets=Decimal(assets),
        total_supply=Decimal(supply),
        shares_requested=Decimal(requested),
    )


class TestPrice:

    def test_empty_vault_prices_at_one(self):
        assert compute_price(Decimal("0"), Decimal("0")) == Decimal("1")

    def test_price_is_assets_per_share(self):
        assert compute_price(Decimal("1100"), Decimal("1000")) == Decimal("1.1")

    def test_shares_for_amount(self):
        assert shares_for_amount(Decimal("550"), Decimal("1.1")) == Decimal("500")

    def test_zero_price_cannot_mint(self):
        with pytest.raises(ValueError):
            shares_for_amount(Decimal("1"), Decimal("0"))

    def test_request_above_supply_rejected(self):
        with pytest.raises(ValueError):
            _input(Tranche.JUNIOR, "100", "100", "101")


class TestSettleEpoch:

    def test_partial_liquidity(self):
        result = settle_epoch(
            senior=_input(Tranche.SENIOR, "0", "0", "0"),
            junior=_input(Tranche.JUNIOR, "1000", "1000", "1000"),
            available_liquidity=Decimal("600"),
            max_senior_junior_ratio=None,
            priority=RedemptionPriority.SENIOR_FIRST,
            places=6,
        )

        assert result.junior.shares_processed == Decimal("600")
        assert result.junior.amount_processed == Decimal("600")
        assert result.junior.shares_unprocessed == Decimal("400")
        assert result.liquidity_used == Decimal("600")

    def test_processes_at_current_price(self):
        result = settle_epoch(
            senior=_input(Tranche.SENIOR, "0", "0", "0"),
            junior=_input(Tranche.JUNIOR, "1100", "1000", "1000"),
            available_liquidity=Decimal("550"),
            max_senior_junior_ratio=None,
            priority=RedemptionPriority.SENIOR_FIRST,
            places=6,
        )

        assert result.junior.price == Decimal("1.1")
        assert result.junior.shares_processed == Decimal("500")
        assert result.junior.amount_processed == Decimal("550")

    def test_senior_first(self):
        result = settle_epoch(
            senior=_input(Tranche.SENIOR, "2000", "2000", "500"),
            junior=_input(Tranche.JUNIOR, "1000", "1000", "500"),
            available_liquidity=Decimal("500"),
            max_senior_junior_ratio=None,
            priority=RedemptionPriority.SENIOR_FIRST,
            places=6,
        )

        assert result.senior.amount_processed == Decimal("500")
        assert result.junior.amount_processed == Decimal("0")

    def test_pro_rata(self):
        result = settle_epoch(
            senior=_input(Tranche.SENIOR, "2000", "2000", "500"),
            junior=_input(Tranche.JUNIOR, "1000", "1000", "500"),
            available_liquidity=Decimal("500"),
            max_senior_junior_ratio=None,
            priority=RedemptionPriority.PRO_RATA,
            places=6,
        )

        assert result.senior.amount_processed == Decimal("250")
        assert result.junior.amount_processed == Decimal("250")

    def test_junior_capped_by_ratio(self):
        """Senior 2000 after redemption needs 500 junior at ratio 4."""
        result = settle_epoch(
            senior=_input(Tranche.SENIOR, "4000", "4000", "2000"),
            junior=_input(Tranche.JUNIOR, "1000", "1000", "800"),
            available_liquidity=Decimal("3000"),
            max_senior_junior_ratio=Decimal("4"),
            priority=RedemptionPriority.SENIOR_FIRST,
            places=6,
        )

        assert result.senior.amount_processed == Decimal("2000")
        assert result.junior.amount_processed == Decimal("500")
        assert result.junior.shares_unprocessed == Decimal("300")

    def test_junior_blocked_when_ratio_already_at_limit(self):
        result = settle_epoch(
            senior=_input(Tranche.SENIOR, "4000", "4000", "0"),
            junior=_input(Tranche.JUNIOR, "1000", "1000", "500"),
            available_liquidity=Decimal("1000"),
            max_senior_junior_ratio=Decimal("4"),
            priority=RedemptionPriority.SENIOR_FIRST,
            places=6,
        )

        assert result.junior.shares_processed == Decimal("0")

    def test_negative_liquidity_rejected(self):
        with pytest.raises(ValueError):
            settle_epoch(
                senior=_input(Tranche.SENIOR, "0", "0", "0"),
                junior=_input(Tranche.JUNIOR, "0", "0", "0"),
                available_liquidity=Decimal("-1"),
                max_senior_junior_ratio=None,
                priority=RedemptionPriority.SENIOR_FIRST,
                places=6,
            )


class TestLenderCatchUp:

    SUMMARIES = (
        SealedSummary(
            epoch_id=1, shares_requested=Decimal("1000"),
            shares_processed=Decimal("600"), amount_processed=Decimal("600"),
        ),
        SealedSummary(
            epoch_id=2, shares_requested=Decimal("400"),
            shares_processed=Decimal("400"), amount_processed=Decimal("400"),
        ),
    )

    def test_pro_rata_share_of_one_epoch(self):
        result = lender_catch_up(
            escrowed_shares=Decimal("400"), next_epoch_id=1, summaries=self.SUMMARIES[:1], places=6,
        )

        assert result.shares_processed == Decimal("240")
        assert result.amount_processed == Decimal("240")
        assert result.escrowed_after == Decimal("160")
        assert result.next_epoch_id == 2

    def test_carried_shares_settle_in_later_epoch(self):
        result = lender_catch_up(
            escrowed_shares=Decimal("400"), next_epoch_id=1, summaries=self.SUMMARIES, places=6,
        )

        assert result.shares_processed == Decimal("400")
        assert result.amount_processed == Decimal("400")
        assert result.escrowed_after == Decimal("0")
        assert result.next_epoch_id == 3

    def test_epochs_before_cursor_ignored(self):
        result = lender_catch_up(
            escrowed_shares=Decimal("100"), next_epoch_id=2, summaries=self.SUMMARIES, places=6,
        )

        assert result.shares_processed == Decimal("100")
        assert result.next_epoch_id == 3

    def test_nothing_escrowed(self):
        result = lender_catch_up(
            escrowed_shares=Decimal("0"), next_epoch_id=1, summaries=self.SUMMARIES, places=6,
        )

        assert result.amount_processed == Decimal("0")
        assert result.next_epoch_id == 3
