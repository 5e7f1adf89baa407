"""
Property-based tests for the profit / loss / recovery waterfall.

Properties checked over generated pools:
- Loss: every unit of loss lands on a cover, a tranche or the shortfall,
  and no balance goes negative.
- Recovery: nothing is restored beyond the loss booked against it.
- Profit: fees plus the tranche and cover split add back up to the profit.
- Billing: a payment never uses more than the payoff.
"""

from datetime import date, timedelta
from decimal import Decimal

from hypothesis import given, settings
from hypothesis import strategies as st
from hypothesis.strategies import composite

from pool_engines.credit_due import CreditBill, CreditTerms, apply_drawdown, apply_payment, payoff_amount
from pool_engines.fees import FeeStructure
from pool_engines.snapshot import CoverPosition, PoolSnapshot
from pool_engines.tranches_policy import TranchesPolicyKind, build_tranches_policy
from pool_engines.waterfall import distribute_loss, distribute_loss_recovery, distribute_profit

PLACES = 6
ZERO = Decimal("0")

amounts = st.decimals(
    min_value=Decimal("0"),
    max_value=Decimal("1000000"),
    places=PLACES,
    allow_nan=False,
    allow_infinity=False,
)
bps = st.integers(min_value=0, max_value=10000)


@composite
def cover_positions(draw, max_covers: int = 3):
    count = draw(st.integers(min_value=0, max_value=max_covers))
    covers = []
    for rank in range(count):
        assets = draw(amounts)
        covers.append(CoverPosition(
            cover_id=f"cover-{rank}",
            rank=rank,
            cover_assets=assets,
            max_liquidity=assets + draw(amounts),
            covered_loss=draw(amounts),
            cover_rate_per_loss_bps=draw(bps),
            cover_cap_per_loss=draw(st.none() | amounts),
            risk_yield_multiplier_bps=draw(st.integers(min_value=0, max_value=30000)),
        ))
    return tuple(covers)


@composite
def snapshots(draw):
    return PoolSnapshot(
        senior_assets=draw(amounts),
        junior_assets=draw(amounts),
        senior_loss=draw(amounts),
        junior_loss=draw(amounts),
        covers=draw(cover_positions()),
        last_profit_date=date(2024, 1, 1),
        senior_unpaid_yield=draw(amounts),
    )


class TestLossConservation:

    @given(snapshot=snapshots(), loss=amounts)
    @settings(max_examples=200, deadline=None)
    def test_loss_fully_accounted(self, snapshot, loss):
        result = distribute_loss(snapshot=snapshot, loss=loss, places=PLACES)

        assert result.total_cover_loss + result.junior_loss + result.senior_loss + result.shortfall == loss
        assert result.shortfall >= ZERO

    @given(snapshot=snapshots(), loss=amounts)
    @settings(max_examples=200, deadline=None)
    def test_no_balance_driven_negative(self, snapshot, loss):
        result = distribute_loss(snapshot=snapshot, loss=loss, places=PLACES)

        assets = {c.cover_id: c.cover_assets for c in snapshot.covers}
        for cover_id, absorbed in result.cover_losses:
            assert ZERO <= absorbed <= assets[cover_id]
        assert result.junior_loss <= snapshot.junior_assets
        assert result.senior_loss <= snapshot.senior_assets

    @given(snapshot=snapshots(), loss=amounts)
    @settings(max_examples=100, deadline=None)
    def test_senior_untouched_while_junior_has_assets(self, snapshot, loss):
        result = distribute_loss(snapshot=snapshot, loss=loss, places=PLACES)

        if result.senior_loss > ZERO:
            assert result.junior_loss == snapshot.junior_assets


class TestRecoveryBounds:

    @given(snapshot=snapshots(), recovery=amounts)
    @settings(max_examples=200, deadline=None)
    def test_recovery_fully_accounted(self, snapshot, recovery):
        result = distribute_loss_recovery(snapshot=snapshot, recovery=recovery)

        total = (
            result.senior_recovered + result.junior_recovered
            + result.total_cover_recovery + result.remaining
        )
        assert total == recovery
        assert result.remaining >= ZERO

    @given(snapshot=snapshots(), recovery=amounts)
    @settings(max_examples=200, deadline=None)
    def test_recovery_never_exceeds_booked_loss(self, snapshot, recovery):
        result = distribute_loss_recovery(snapshot=snapshot, recovery=recovery)

        covered = {c.cover_id: c.covered_loss for c in snapshot.covers}
        assert result.senior_recovered <= snapshot.senior_loss
        assert result.junior_recovered <= snapshot.junior_loss
        for cover_id, recovered in result.cover_recoveries:
            assert recovered <= covered[cover_id]


class TestProfitConservation:

    @given(
        snapshot=snapshots(),
        profit=amounts,
        protocol=st.integers(min_value=0, max_value=3000),
        owner=st.integers(min_value=0, max_value=3000),
        ea=st.integers(min_value=0, max_value=3000),
        fixed=amounts,
        kind=st.sampled_from(list(TranchesPolicyKind)),
        policy_bps=st.integers(min_value=0, max_value=5000),
        days=st.integers(min_value=0, max_value=400),
    )
    @settings(max_examples=200, deadline=None)
    def test_profit_fully_accounted(self, snapshot, profit, protocol, owner, ea, fixed, kind, policy_bps, days):
        fees = FeeStructure(
            protocol_fee_bps=protocol,
            pool_owner_reward_bps=owner,
            ea_reward_bps=ea,
            fixed_fee_per_distribution=fixed,
        )
        policy = build_tranches_policy(
            kind, fixed_senior_yield_bps=policy_bps, risk_adjustment_bps=policy_bps,
        )

        result = distribute_profit(
            snapshot=snapshot,
            profit=profit,
            fees=fees,
            policy=policy,
            as_of=date(2024, 1, 1) + timedelta(days=days),
            places=PLACES,
        )

        split = result.split
        cover_total = sum((amount for _, amount in split.cover_profits), ZERO)
        assert result.fees.total_fees + split.senior + split.junior + cover_total == profit
        assert min(split.senior, split.junior, cover_total) >= ZERO
        for cover in snapshot.covers:
            assert split.cover_profit(cover.cover_id) <= cover.available_cap


class TestPaymentBounds:

    @given(
        drawn=st.decimals(min_value=Decimal("1"), max_value=Decimal("1000000"), places=2),
        payment=st.decimals(min_value=Decimal("0.01"), max_value=Decimal("2000000"), places=2),
        periods=st.integers(min_value=1, max_value=12),
    )
    @settings(max_examples=200, deadline=None)
    def test_payment_never_exceeds_payoff(self, drawn, payment, periods):
        terms = CreditTerms(yield_bps=1200, num_of_periods=periods)
        bill = apply_drawdown(
            bill=CreditBill(remaining_periods=periods),
            amount=drawn,
            terms=terms,
            as_of=date(2024, 1, 15),
            places=PLACES,
        )
        payoff = payoff_amount(bill)

        allocation = apply_payment(bill=bill, amount=payment)

        assert allocation.amount_used == min(payment, payoff)
        assert allocation.amount_used + allocation.unused == payment
        assert allocation.paid_off == (payment >= payoff)
        assert payoff_amount(allocation.bill) == payoff - allocation.amount_used
