"""Pure risk and yield calculations over canonical snapshots — no I/O.

Every function recomputes from the snapshot it is given; nothing here is
cached, because prices and accrual indices drift between fetches.
"""
from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Iterable, Mapping, Sequence

from .models import (
    BorrowEntry,
    DepositEntry,
    LeverageLimits,
    ObligationSnapshot,
    PortfolioMetrics,
    ReserveSnapshot,
    RewardEarned,
    RewardStream,
    UserReward,
)
from .units import WAD, ceil_div, to_float

MS_PER_YEAR = 1000 * 60 * 60 * 24 * 365


# ---------------------------------------------------------------------------
# Accrual
# ---------------------------------------------------------------------------


def compound_borrow(raw_amount: int, origin_rate: int, current_rate: int) -> int:
    """Debt owed now: ``raw_amount * current_rate / origin_rate``, rounded up.

    A zero origin rate means no accrual checkpoint exists; the raw amount is
    returned unchanged.
    """
    if origin_rate == 0:
        return raw_amount
    return ceil_div(raw_amount * current_rate, origin_rate)


def deposit_amount(entry: DepositEntry) -> int:
    """Underlying raw units of a deposit, rounded down."""
    return entry.raw_amount * entry.exchange_rate // entry.scale


def borrow_amount(entry: BorrowEntry) -> int:
    """Owed raw units of a borrow, rounded up."""
    owed = compound_borrow(entry.raw_amount, entry.origin_rate, entry.current_rate)
    return ceil_div(owed, entry.scale)


def interest_apr(
    utils_pct: Sequence[float], aprs_pct: Sequence[float], utilization_pct: float
) -> float:
    """Piecewise-linear interpolation of an interest-rate curve.

    ``utils_pct`` must be ascending; utilization outside the curve is clamped
    to the nearest end point.
    """
    if not utils_pct or len(utils_pct) != len(aprs_pct):
        return 0.0
    if utilization_pct <= utils_pct[0]:
        return float(aprs_pct[0])
    for i in range(1, len(utils_pct)):
        lo, hi = utils_pct[i - 1], utils_pct[i]
        if utilization_pct <= hi:
            if hi == lo:
                return float(aprs_pct[i])
            weight = (utilization_pct - lo) / (hi - lo)
            return aprs_pct[i - 1] + weight * (aprs_pct[i] - aprs_pct[i - 1])
    return float(aprs_pct[-1])


# ---------------------------------------------------------------------------
# Rewards
# ---------------------------------------------------------------------------


def _now_ms() -> int:
    return int(time.time() * 1000)


def reward_apy(
    streams: Iterable[RewardStream],
    side_total_usd: float,
    prices: Mapping[str, float],
    now_ms: int | None = None,
) -> float:
    """Reward APY (percent) paid to one side of a reserve.

    Streams outside ``[start, end]`` and streams whose reward coin has no
    price contribute nothing.
    """
    if side_total_usd <= 0:
        return 0.0
    now = _now_ms() if now_ms is None else now_ms

    total = 0.0
    for stream in streams:
        if not stream.is_active(now):
            continue
        duration_years = (stream.end_ms - stream.start_ms) / MS_PER_YEAR
        if duration_years <= 0:
            continue
        price = prices.get(stream.coin_type, 0.0)
        if price <= 0:
            continue
        per_year = to_float(stream.total_rewards, stream.decimals) / duration_years
        total += per_year * price / side_total_usd * 100
    return total


def deposit_reward_apy(
    reserve: ReserveSnapshot, prices: Mapping[str, float], now_ms: int | None = None
) -> float:
    """Flat plus streamed reward APY (percent) paid to depositors."""
    return reserve.deposit_reward_apr_pct + reward_apy(
        reserve.deposit_rewards, reserve.deposited_usd, prices, now_ms
    )


def borrow_reward_apy(
    reserve: ReserveSnapshot, prices: Mapping[str, float], now_ms: int | None = None
) -> float:
    """Flat plus streamed reward APY (percent) paid to borrowers."""
    return reserve.borrow_reward_apr_pct + reward_apy(
        reserve.borrow_rewards, reserve.borrowed_usd, prices, now_ms
    )


def rewards_earned(
    user_rewards: Iterable[UserReward],
    streams: Iterable[RewardStream],
    share: int,
    prices: Mapping[str, float] | None = None,
) -> tuple[RewardEarned, ...]:
    """Checkpointed plus pending rewards for one deposit or borrow.

    pending = (pool cumulative per share − user checkpoint) × share,
    clamped at zero.
    """
    by_id = {s.id: s for s in streams}
    earned: list[RewardEarned] = []

    for reward in user_rewards:
        stream = by_id.get(reward.pool_reward_id)
        if stream is None:
            continue

        delta = stream.cumulative_rewards_per_share - reward.cumulative_rewards_per_share
        pending_raw = max(0, delta * share // WAD)
        checkpointed_raw = reward.earned_rewards // WAD
        amount = to_float(checkpointed_raw + pending_raw, stream.decimals)
        if amount <= 0:
            continue

        value = None
        if prices and prices.get(stream.coin_type):
            value = amount * prices[stream.coin_type]
        earned.append(RewardEarned(symbol=stream.symbol, amount=amount, value_usd=value))

    return tuple(earned)


# ---------------------------------------------------------------------------
# Valuation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class _DepositValue:
    entry: DepositEntry
    amount: float
    value_usd: float
    open_ltv: float
    close_ltv: float


@dataclass(frozen=True)
class _BorrowValue:
    entry: BorrowEntry
    amount: float
    value_usd: float
    weighted_usd: float


def _value_deposits(obligation: ObligationSnapshot) -> list[_DepositValue]:
    values: list[_DepositValue] = []
    for entry in obligation.deposits:
        reserve = obligation.reserve(entry.coin_type)
        amount = to_float(deposit_amount(entry), reserve.decimals)
        values.append(
            _DepositValue(
                entry=entry,
                amount=amount,
                value_usd=amount * reserve.price,
                open_ltv=reserve.open_ltv,
                close_ltv=reserve.close_ltv,
            )
        )
    return values


def _value_borrows(obligation: ObligationSnapshot) -> list[_BorrowValue]:
    values: list[_BorrowValue] = []
    for entry in obligation.borrows:
        reserve = obligation.reserve(entry.coin_type)
        amount = to_float(borrow_amount(entry), reserve.decimals)
        value = amount * reserve.price
        values.append(
            _BorrowValue(
                entry=entry,
                amount=amount,
                value_usd=value,
                weighted_usd=value * reserve.borrow_weight,
            )
        )
    return values


def reserve_prices(obligation: ObligationSnapshot) -> dict[str, float]:
    return {coin_type: r.price for coin_type, r in obligation.reserves.items()}


def calc_ltv(total_deposited_usd: float, total_borrowed_usd: float) -> float:
    """Loan-to-value as a percentage."""
    if total_deposited_usd <= 0:
        return 0.0
    return total_borrowed_usd / total_deposited_usd * 100


def calc_health_factor(liquidation_threshold_usd: float, weighted_borrows_usd: float) -> float:
    """Risk-discounted collateral over weighted debt; +inf with no debt."""
    if weighted_borrows_usd <= 0:
        return float("inf")
    return liquidation_threshold_usd / weighted_borrows_usd


def max_leverage(weighted_open_ltv: float) -> float:
    """Theoretical leverage ceiling from looping at ``weighted_open_ltv``."""
    if weighted_open_ltv >= 1:
        return float("inf")
    return 1 / (1 - weighted_open_ltv)


def calculate_liquidation_price(
    obligation: ObligationSnapshot, coin_type: str
) -> float | None:
    """Price of ``coin_type`` at which health factor reaches 1.0.

    All other deposits and all borrows are held constant:

        P_liq = (weighted_borrows − Σ others value × close_ltv)
                / (amount × close_ltv)

    Returns None when the other collateral alone covers the debt (safe even
    at a price of zero) or when the collateral carries no liquidation weight.
    """
    deposits = _value_deposits(obligation)
    weighted_borrows = sum(b.weighted_usd for b in _value_borrows(obligation))

    target: _DepositValue | None = None
    other_weighted = 0.0
    for d in deposits:
        if d.entry.coin_type == coin_type:
            target = d
        else:
            other_weighted += d.value_usd * d.close_ltv

    numerator = weighted_borrows - other_weighted
    if numerator <= 0 or target is None:
        return None

    denominator = target.amount * target.close_ltv
    if denominator <= 0:
        return None
    return numerator / denominator


def calculate_portfolio_metrics(
    obligation: ObligationSnapshot, now_ms: int | None = None
) -> PortfolioMetrics:
    """Health, exposure and yield figures for one obligation."""
    deposits = _value_deposits(obligation)
    borrows = _value_borrows(obligation)
    prices = reserve_prices(obligation)

    total_deposited = sum(d.value_usd for d in deposits)
    total_borrowed = sum(b.value_usd for b in borrows)
    weighted_borrows = sum(b.weighted_usd for b in borrows)
    borrow_limit = sum(d.value_usd * d.open_ltv for d in deposits)
    liquidation_threshold = sum(d.value_usd * d.close_ltv for d in deposits)
    net_value = total_deposited - total_borrowed

    weighted_open_ltv = 0.0
    if total_deposited > 0:
        weighted_open_ltv = sum(
            d.value_usd / total_deposited * d.open_ltv for d in deposits
        )

    annual_income = 0.0
    for d in deposits:
        reserve = obligation.reserve(d.entry.coin_type)
        apy = reserve.deposit_apr_pct + deposit_reward_apy(reserve, prices, now_ms)
        annual_income += d.value_usd * apy / 100

    annual_cost = 0.0
    for b in borrows:
        reserve = obligation.reserve(b.entry.coin_type)
        net_apr = reserve.borrow_apr_pct - borrow_reward_apy(reserve, prices, now_ms)
        annual_cost += b.value_usd * net_apr / 100

    annual_net = annual_income - annual_cost
    net_apy = annual_net / net_value * 100 if net_value > 0 else 0.0

    return PortfolioMetrics(
        net_value_usd=net_value,
        total_deposited_usd=total_deposited,
        total_borrowed_usd=total_borrowed,
        weighted_borrows_usd=weighted_borrows,
        borrow_limit_usd=borrow_limit,
        liquidation_threshold_usd=liquidation_threshold,
        health_factor=calc_health_factor(liquidation_threshold, weighted_borrows),
        net_apy=net_apy,
        annual_net_earnings_usd=annual_net,
        weighted_open_ltv=weighted_open_ltv,
        max_leverage=max_leverage(weighted_open_ltv),
    )


def calculate_leverage_limits(
    close_ltv: float, safety_buffer: float = 0.05, execution_buffer: float = 0.95
) -> LeverageLimits:
    """Leverage ceilings for looping an asset up to ``close_ltv − safety_buffer``."""
    target_ltv = close_ltv - safety_buffer
    if target_ltv <= 0 or target_ltv >= 1:
        return LeverageLimits(max_leverage=1.0, safe_leverage=1.0, target_ltv=0.0)

    theoretical = 1 / (1 - target_ltv)
    return LeverageLimits(
        max_leverage=round(theoretical, 2),
        safe_leverage=round(theoretical * execution_buffer, 2),
        target_ltv=round(target_ltv, 4),
    )
