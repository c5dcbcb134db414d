"""Data models — all frozen (immutable).

Raw on-chain amounts are ``int``; USD values, prices and rates are ``float``.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Mapping

from .errors import UnknownReserve
from .units import WAD, to_float

PositionSide = Literal["supply", "borrow"]


# ---------------------------------------------------------------------------
# Market snapshots
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RewardStream:
    """One liquidity-mining reward attached to a reserve side."""

    id: str
    coin_type: str
    symbol: str
    decimals: int
    total_rewards: int
    start_ms: int
    end_ms: int
    cumulative_rewards_per_share: int = 0  # WAD-scaled raw units per share

    def is_active(self, now_ms: int) -> bool:
        return self.start_ms <= now_ms <= self.end_ms


@dataclass(frozen=True)
class ReserveSnapshot:
    """State of one market asset at fetch time."""

    coin_type: str
    symbol: str
    decimals: int
    price: float
    available_amount: int
    total_deposited: int
    total_borrowed: int
    open_ltv: float
    close_ltv: float
    deposit_apr_pct: float = 0.0
    borrow_apr_pct: float = 0.0
    deposit_reward_apr_pct: float = 0.0  # flat incentives reported by the market
    borrow_reward_apr_pct: float = 0.0
    borrow_weight: float = 1.0
    cumulative_borrow_rate: int = WAD
    exchange_rate: int = WAD
    rate_scale: int = WAD
    reserve_index: int = 0
    deposit_rewards: tuple[RewardStream, ...] = ()
    borrow_rewards: tuple[RewardStream, ...] = ()

    @property
    def deposited_usd(self) -> float:
        return to_float(self.total_deposited, self.decimals) * self.price

    @property
    def borrowed_usd(self) -> float:
        return to_float(self.total_borrowed, self.decimals) * self.price

    @property
    def utilization(self) -> float:
        if self.total_deposited <= 0:
            return 0.0
        return min(1.0, self.total_borrowed / self.total_deposited)


# ---------------------------------------------------------------------------
# Obligation snapshots
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class UserReward:
    """A user's checkpoint against one reward stream."""

    pool_reward_id: str
    earned_rewards: int  # WAD-scaled raw reward units
    cumulative_rewards_per_share: int  # WAD-scaled, at last checkpoint


@dataclass(frozen=True)
class DepositEntry:
    """Collateral held as accrual-scaled units.

    underlying raw amount = raw_amount * exchange_rate // scale
    """

    coin_type: str
    raw_amount: int
    exchange_rate: int
    scale: int
    share: int = 0
    rewards: tuple[UserReward, ...] = ()


@dataclass(frozen=True)
class BorrowEntry:
    """Debt recorded at ``origin_rate``; ``current_rate`` is the reserve's now.

    owed raw amount = raw_amount * current_rate / origin_rate / scale
    """

    coin_type: str
    raw_amount: int
    origin_rate: int
    current_rate: int
    scale: int
    share: int = 0
    rewards: tuple[UserReward, ...] = ()


@dataclass(frozen=True)
class ObligationSnapshot:
    """An account's deposits and borrows, with the reserves that price them."""

    protocol: str
    obligation_id: str
    owner: str
    deposits: tuple[DepositEntry, ...]
    borrows: tuple[BorrowEntry, ...]
    reserves: Mapping[str, ReserveSnapshot] = field(default_factory=dict)
    account_cap: str = ""  # owner capability object, where the market uses one

    def reserve(self, coin_type: str) -> ReserveSnapshot:
        reserve = self.reserves.get(coin_type)
        if reserve is None:
            raise UnknownReserve(f"No {self.protocol} reserve for {coin_type}")
        return reserve

    @property
    def is_empty(self) -> bool:
        return not self.deposits and not self.borrows


# ---------------------------------------------------------------------------
# Derived metrics
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PortfolioMetrics:
    net_value_usd: float
    total_deposited_usd: float
    total_borrowed_usd: float
    weighted_borrows_usd: float
    borrow_limit_usd: float
    liquidation_threshold_usd: float
    health_factor: float
    net_apy: float
    annual_net_earnings_usd: float
    weighted_open_ltv: float
    max_leverage: float


@dataclass(frozen=True)
class LeverageLimits:
    max_leverage: float
    safe_leverage: float
    target_ltv: float


# ---------------------------------------------------------------------------
# Read results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AssetPosition:
    coin_type: str
    symbol: str
    decimals: int
    amount: int
    value_usd: float


@dataclass(frozen=True)
class PositionInfo:
    """Primary collateral/debt pair of an account, as used by deleverage."""

    collateral: AssetPosition
    debt: AssetPosition
    net_value_usd: float
    health_factor: float | None = None
    ltv_percent: float | None = None
    liquidation_price: float | None = None
    total_deposited_usd: float | None = None
    weighted_borrows_usd: float | None = None
    borrow_limit_usd: float | None = None
    liquidation_threshold_usd: float | None = None


@dataclass(frozen=True)
class RewardEarned:
    symbol: str
    amount: float
    value_usd: float | None = None


@dataclass(frozen=True)
class PortfolioPosition:
    protocol: str
    coin_type: str
    symbol: str
    side: PositionSide
    amount: float
    amount_raw: int
    value_usd: float
    apy: float
    rewards_apy: float = 0.0
    rewards: tuple[RewardEarned, ...] = ()
    estimated_liquidation_price: float | None = None


@dataclass(frozen=True)
class AccountPortfolio:
    protocol: str
    address: str
    health_factor: float = float("inf")
    net_value_usd: float = 0.0
    total_collateral_usd: float = 0.0
    total_debt_usd: float = 0.0
    total_deposited_usd: float = 0.0
    weighted_borrows_usd: float = 0.0
    borrow_limit_usd: float = 0.0
    liquidation_threshold_usd: float = 0.0
    positions: tuple[PortfolioPosition, ...] = ()
    net_apy: float = 0.0
    total_annual_net_earnings_usd: float = 0.0
    warnings: tuple[str, ...] = ()


@dataclass(frozen=True)
class MarketAsset:
    symbol: str
    coin_type: str
    decimals: int
    price: float
    supply_apy: float  # percent
    borrow_apy: float  # percent
    max_ltv: float
    liquidation_threshold: float
    total_supply: float
    total_borrow: float
    available_liquidity: float


# ---------------------------------------------------------------------------
# Swap / strategy results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SwapQuote:
    coin_in: str
    coin_out: str
    amount_in: int
    amount_out: int
    provider: str = ""
    route: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class LeveragePreview:
    initial_equity_usd: float
    flash_loan_amount: int
    flash_loan_fee: int
    total_position_usd: float
    debt_usd: float
    effective_multiplier: float
    ltv_percent: float
    liquidation_price: float | None
    price_drop_buffer: float
    health_factor: float


@dataclass(frozen=True)
class DeleverageEstimate:
    flash_loan_amount: int
    flash_loan_fee: int
    total_repayment: int
    swap_amount: int
    keep_collateral: int
    estimated_surplus: int
    total_value_usd: float


@dataclass(frozen=True)
class ExecutionResult:
    """Outcome reported by the transport for a dry run or a submission."""

    success: bool
    digest: str | None = None
    gas_used: int | None = None
    error: str | None = None


@dataclass(frozen=True)
class StrategyResult:
    success: bool
    tx_digest: str | None = None
    gas_used: int | None = None
    error: str | None = None
    position: PositionInfo | None = None
