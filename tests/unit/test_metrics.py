"""Unit tests for the risk and yield metrics engine."""
from __future__ import annotations

import math
from dataclasses import replace

import pytest

from leverage_kit import metrics
from leverage_kit.models import (
    BorrowEntry,
    DepositEntry,
    ObligationSnapshot,
    ReserveSnapshot,
    RewardStream,
    UserReward,
)
from leverage_kit.units import WAD

from conftest import SUI, USDC, USDT

NOW = 1_700_000_000_000
YEAR_MS = metrics.MS_PER_YEAR


def _obligation(reserves, deposits=(), borrows=()) -> ObligationSnapshot:
    return ObligationSnapshot(
        protocol="stub",
        obligation_id="0x1",
        owner="0xowner",
        deposits=tuple(deposits),
        borrows=tuple(borrows),
        reserves={r.coin_type: r for r in reserves},
    )


def _deposit(coin_type: str, raw: int) -> DepositEntry:
    return DepositEntry(coin_type=coin_type, raw_amount=raw, exchange_rate=1, scale=1)


def _borrow(coin_type: str, raw: int) -> BorrowEntry:
    return BorrowEntry(coin_type=coin_type, raw_amount=raw, origin_rate=WAD, current_rate=WAD, scale=1)


class TestAccrual:
    def test_compound_five_percent(self) -> None:
        owed = metrics.compound_borrow(10**18, 10**18, 105 * 10**16)
        assert owed == 105 * 10**16

    def test_zero_origin_rate_returns_raw(self) -> None:
        assert metrics.compound_borrow(1234, 0, 5 * WAD) == 1234

    def test_borrow_amount_rounds_up(self) -> None:
        entry = BorrowEntry(USDC, raw_amount=WAD + 1, origin_rate=WAD, current_rate=WAD, scale=WAD)
        assert metrics.borrow_amount(entry) == 2

    def test_deposit_amount_rounds_down(self) -> None:
        entry = DepositEntry(SUI, raw_amount=3, exchange_rate=WAD + WAD // 2, scale=WAD)
        assert metrics.deposit_amount(entry) == 4


class TestInterestApr:
    def test_interpolates_between_points(self) -> None:
        assert metrics.interest_apr([0, 80, 100], [0, 10, 100], 40) == pytest.approx(5.0)

    def test_clamps_below_and_above(self) -> None:
        assert metrics.interest_apr([10, 80], [2, 10], 0) == 2.0
        assert metrics.interest_apr([10, 80], [2, 10], 95) == 10.0

    def test_kink(self) -> None:
        assert metrics.interest_apr([0, 80, 100], [0, 10, 100], 90) == pytest.approx(55.0)

    def test_mismatched_curve_is_zero(self) -> None:
        assert metrics.interest_apr([0, 100], [1], 50) == 0.0


class TestRewards:
    def _stream(self, **overrides) -> RewardStream:
        base = dict(
            id="0xreward",
            coin_type=SUI,
            symbol="SUI",
            decimals=9,
            total_rewards=1000 * 10**9,
            start_ms=NOW - YEAR_MS // 2,
            end_ms=NOW + YEAR_MS // 2,
        )
        base.update(overrides)
        return RewardStream(**base)

    def test_active_stream_apy(self) -> None:
        # 1000 SUI/year at $2 over $20,000 supplied = 10%
        apy = metrics.reward_apy([self._stream()], 20_000.0, {SUI: 2.0}, NOW)
        assert apy == pytest.approx(10.0)

    def test_inactive_stream_contributes_nothing(self) -> None:
        stream = self._stream(start_ms=NOW + 1, end_ms=NOW + YEAR_MS)
        assert metrics.reward_apy([stream], 20_000.0, {SUI: 2.0}, NOW) == 0.0

    def test_unpriced_reward_contributes_nothing(self) -> None:
        assert metrics.reward_apy([self._stream()], 20_000.0, {}, NOW) == 0.0

    def test_empty_side_is_zero(self) -> None:
        assert metrics.reward_apy([self._stream()], 0.0, {SUI: 2.0}, NOW) == 0.0

    def test_flat_reward_apr_added(self, usdc_reserve: ReserveSnapshot) -> None:
        reserve = replace(usdc_reserve, deposit_reward_apr_pct=1.5)
        assert metrics.deposit_reward_apy(reserve, {}, NOW) == pytest.approx(1.5)

    def test_rewards_earned_adds_pending(self) -> None:
        stream = self._stream(cumulative_rewards_per_share=3 * WAD)
        user = UserReward(
            pool_reward_id="0xreward",
            earned_rewards=5 * 10**9 * WAD,
            cumulative_rewards_per_share=1 * WAD,
        )
        earned = metrics.rewards_earned([user], [stream], share=10**9, prices={SUI: 2.0})
        assert len(earned) == 1
        # 5 SUI checkpointed + (3 − 1) × 1 SUI share pending
        assert earned[0].amount == pytest.approx(7.0)
        assert earned[0].value_usd == pytest.approx(14.0)

    def test_rewards_earned_clamps_negative_pending(self) -> None:
        stream = self._stream(cumulative_rewards_per_share=WAD)
        user = UserReward("0xreward", earned_rewards=0, cumulative_rewards_per_share=2 * WAD)
        assert metrics.rewards_earned([user], [stream], share=10**9) == ()


class TestPortfolioMetrics:
    def test_no_borrows_is_infinite_health(self, sui_reserve: ReserveSnapshot) -> None:
        obligation = _obligation([sui_reserve], deposits=[_deposit(SUI, 10 * 10**9)])
        m = metrics.calculate_portfolio_metrics(obligation, NOW)
        assert math.isinf(m.health_factor)
        assert m.total_borrowed_usd == 0

    def test_leveraged_position(self, leveraged_obligation: ObligationSnapshot) -> None:
        m = metrics.calculate_portfolio_metrics(leveraged_obligation, NOW)
        assert m.total_deposited_usd == pytest.approx(2000.0)
        assert m.total_borrowed_usd == pytest.approx(1000.0)
        assert m.borrow_limit_usd == pytest.approx(1400.0)
        assert m.liquidation_threshold_usd == pytest.approx(1500.0)
        assert m.health_factor == pytest.approx(1.5)
        assert m.net_value_usd == pytest.approx(1000.0)
        assert m.weighted_open_ltv == pytest.approx(0.7)
        assert m.max_leverage == pytest.approx(1 / 0.3)

    def test_net_apy(self, leveraged_obligation: ObligationSnapshot) -> None:
        # income 2000 × 3% = 60, cost 1000 × 8% = 80
        m = metrics.calculate_portfolio_metrics(leveraged_obligation, NOW)
        assert m.annual_net_earnings_usd == pytest.approx(-20.0)
        assert m.net_apy == pytest.approx(-2.0)

    def test_net_apy_zero_when_underwater(
        self, sui_reserve: ReserveSnapshot, usdc_reserve: ReserveSnapshot
    ) -> None:
        obligation = _obligation(
            [sui_reserve, usdc_reserve],
            deposits=[_deposit(SUI, 10**9)],
            borrows=[_borrow(USDC, 5 * 10**6)],
        )
        assert metrics.calculate_portfolio_metrics(obligation, NOW).net_apy == 0.0

    def test_borrow_weight_scales_weighted_borrows(
        self, sui_reserve: ReserveSnapshot, usdc_reserve: ReserveSnapshot
    ) -> None:
        heavy = replace(usdc_reserve, borrow_weight=1.5)
        obligation = _obligation(
            [sui_reserve, heavy],
            deposits=[_deposit(SUI, 1000 * 10**9)],
            borrows=[_borrow(USDC, 100 * 10**6)],
        )
        m = metrics.calculate_portfolio_metrics(obligation, NOW)
        assert m.weighted_borrows_usd == pytest.approx(150.0)
        assert m.health_factor == pytest.approx(10.0)

    def test_ltv_percent(self) -> None:
        assert metrics.calc_ltv(2000.0, 1000.0) == pytest.approx(50.0)
        assert metrics.calc_ltv(0.0, 10.0) == 0.0


class TestLiquidationPrice:
    def test_single_deposit(self, sui_reserve: ReserveSnapshot, usdc_reserve: ReserveSnapshot) -> None:
        # 500 SUI at $2 = $1000 deposited, close LTV 0.8, $500 weighted borrows
        reserve = replace(sui_reserve, close_ltv=0.8)
        obligation = _obligation(
            [reserve, usdc_reserve],
            deposits=[_deposit(SUI, 500 * 10**9)],
            borrows=[_borrow(USDC, 500 * 10**6)],
        )
        price = metrics.calculate_liquidation_price(obligation, SUI)
        assert price == pytest.approx(500 / (500 * 0.8))

    def test_other_collateral_covers_debt(
        self,
        sui_reserve: ReserveSnapshot,
        usdc_reserve: ReserveSnapshot,
        usdt_reserve: ReserveSnapshot,
    ) -> None:
        obligation = _obligation(
            [sui_reserve, usdc_reserve, usdt_reserve],
            deposits=[_deposit(SUI, 10 * 10**9), _deposit(USDT, 10_000 * 10**6)],
            borrows=[_borrow(USDC, 1000 * 10**6)],
        )
        assert metrics.calculate_liquidation_price(obligation, SUI) is None

    def test_no_debt_has_no_price(self, sui_reserve: ReserveSnapshot) -> None:
        obligation = _obligation([sui_reserve], deposits=[_deposit(SUI, 10**9)])
        assert metrics.calculate_liquidation_price(obligation, SUI) is None

    def test_never_zero_or_negative(self, leveraged_obligation: ObligationSnapshot) -> None:
        price = metrics.calculate_liquidation_price(leveraged_obligation, SUI)
        assert price is not None and price > 0
        assert price == pytest.approx(1000 / (1000 * 0.75))


class TestLeverageLimits:
    def test_limits(self) -> None:
        limits = metrics.calculate_leverage_limits(0.8)
        assert limits.target_ltv == pytest.approx(0.75)
        assert limits.max_leverage == pytest.approx(4.0)
        assert limits.safe_leverage == pytest.approx(3.8)

    def test_degenerate_ltv(self) -> None:
        limits = metrics.calculate_leverage_limits(0.04)
        assert limits.max_leverage == 1.0
        assert limits.target_ltv == 0.0
