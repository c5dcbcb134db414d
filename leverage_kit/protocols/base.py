"""Shared lending-protocol adapter logic over canonical snapshots.

Concrete markets implement the reads (``load_market``, ``fetch_obligation``)
and the plan primitives; everything a caller asks of a position (portfolio,
primary position, borrow and withdraw limits) is computed here from the
snapshots so both markets report identical figures for identical state.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Mapping

from .. import metrics
from ..assets import AssetRegistry
from ..errors import NotInitialized, UnknownReserve
from ..models import (
    AccountPortfolio,
    AssetPosition,
    MarketAsset,
    ObligationSnapshot,
    PortfolioPosition,
    PositionInfo,
    ReserveSnapshot,
)
from ..plan import Argument, Handle, TransactionPlan
from ..units import normalize_asset_id, to_float, to_human

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MarketState:
    """All reserves of one market, fetched together."""

    protocol: str
    reserves: Mapping[str, ReserveSnapshot]
    warnings: tuple[str, ...] = ()

    def reserve(self, coin_type: str) -> ReserveSnapshot:
        reserve = self.reserves.get(normalize_asset_id(coin_type))
        if reserve is None:
            raise UnknownReserve(f"No {self.protocol} reserve for {coin_type}")
        return reserve


@dataclass(frozen=True)
class AccountRef:
    """How plan steps address the caller's position in a market.

    ``cap`` is the owner capability argument (an existing object or the
    handle of one created earlier in the same plan); markets keyed by the
    sender's address leave it None.
    """

    cap: Argument | None = None
    obligation_id: str = ""
    created: bool = False


class LendingProtocolBase(ABC):
    """Base class for money-market adapters."""

    name: str = ""
    consumes_repayment_coin: bool = False

    def __init__(
        self,
        registry: AssetRegistry,
        withdraw_safety_factor: float = 0.95,
        funding_symbol: str = "USDC",
    ) -> None:
        self._registry = registry
        self._withdraw_safety = withdraw_safety_factor
        self._funding_symbol = funding_symbol
        self._initialized = False

    async def initialize(self) -> None:
        self._initialized = True

    def _ensure_initialized(self) -> None:
        if not self._initialized:
            raise NotInitialized(f"{self.name} adapter not initialized")

    # -- reads implemented per market ----------------------------------------

    @abstractmethod
    async def load_market(self) -> MarketState:
        """Fetch every reserve of the market."""

    @abstractmethod
    async def fetch_obligation(
        self, address: str, market: MarketState
    ) -> ObligationSnapshot | None:
        """Fetch the account's obligation priced by ``market``; None if absent."""

    # -- plan primitives implemented per market ------------------------------

    @abstractmethod
    def open_account(
        self,
        plan: TransactionPlan,
        address: str,
        obligation: ObligationSnapshot | None,
        create: bool = False,
    ) -> AccountRef: ...

    def close_account(self, plan: TransactionPlan, account: AccountRef, address: str) -> None:
        """Hand a capability created in this plan to its owner."""
        if account.created and isinstance(account.cap, Handle):
            plan.transfer_objects([account.cap], address)

    @abstractmethod
    def refresh_oracles(
        self, plan: TransactionPlan, account: AccountRef, reserves: list[ReserveSnapshot]
    ) -> None: ...

    @abstractmethod
    def deposit(
        self, plan: TransactionPlan, account: AccountRef, reserve: ReserveSnapshot, coin: Handle
    ) -> None: ...

    @abstractmethod
    def withdraw(
        self,
        plan: TransactionPlan,
        account: AccountRef,
        reserve: ReserveSnapshot,
        amount: int | None = None,
    ) -> Handle:
        """Withdraw ``amount`` raw units, or everything when None."""

    @abstractmethod
    def borrow(
        self, plan: TransactionPlan, account: AccountRef, reserve: ReserveSnapshot, amount: int
    ) -> Handle: ...

    @abstractmethod
    def repay(
        self, plan: TransactionPlan, account: AccountRef, reserve: ReserveSnapshot, coin: Handle
    ) -> None: ...

    # -- shared reads --------------------------------------------------------

    async def get_obligation(self, address: str) -> ObligationSnapshot | None:
        self._ensure_initialized()
        market = await self.load_market()
        return await self.fetch_obligation(address, market)

    async def get_market_assets(self) -> list[MarketAsset]:
        self._ensure_initialized()
        market = await self.load_market()
        prices = {ct: r.price for ct, r in market.reserves.items()}

        assets: list[MarketAsset] = []
        for reserve in market.reserves.values():
            assets.append(
                MarketAsset(
                    symbol=reserve.symbol,
                    coin_type=reserve.coin_type,
                    decimals=reserve.decimals,
                    price=reserve.price,
                    supply_apy=reserve.deposit_apr_pct
                    + metrics.deposit_reward_apy(reserve, prices),
                    borrow_apy=reserve.borrow_apr_pct
                    - metrics.borrow_reward_apy(reserve, prices),
                    max_ltv=reserve.open_ltv,
                    liquidation_threshold=reserve.close_ltv,
                    total_supply=to_float(reserve.total_deposited, reserve.decimals),
                    total_borrow=to_float(reserve.total_borrowed, reserve.decimals),
                    available_liquidity=to_float(reserve.available_amount, reserve.decimals),
                )
            )
        return assets

    async def get_account_portfolio(self, address: str) -> AccountPortfolio:
        self._ensure_initialized()
        market = await self.load_market()
        obligation = await self.fetch_obligation(address, market)
        if obligation is None or obligation.is_empty:
            return AccountPortfolio(protocol=self.name, address=address, warnings=market.warnings)

        m = metrics.calculate_portfolio_metrics(obligation)
        return AccountPortfolio(
            protocol=self.name,
            address=address,
            health_factor=m.health_factor,
            net_value_usd=m.net_value_usd,
            total_collateral_usd=m.total_deposited_usd,
            total_debt_usd=m.total_borrowed_usd,
            total_deposited_usd=m.total_deposited_usd,
            weighted_borrows_usd=m.weighted_borrows_usd,
            borrow_limit_usd=m.borrow_limit_usd,
            liquidation_threshold_usd=m.liquidation_threshold_usd,
            positions=tuple(self._portfolio_positions(obligation)),
            net_apy=m.net_apy,
            total_annual_net_earnings_usd=m.annual_net_earnings_usd,
            warnings=market.warnings,
        )

    def _portfolio_positions(self, obligation: ObligationSnapshot) -> list[PortfolioPosition]:
        prices = metrics.reserve_prices(obligation)
        positions: list[PortfolioPosition] = []

        for entry in obligation.deposits:
            reserve = obligation.reserve(entry.coin_type)
            raw = metrics.deposit_amount(entry)
            amount = to_float(raw, reserve.decimals)
            rewards_apy = metrics.deposit_reward_apy(reserve, prices)
            positions.append(
                PortfolioPosition(
                    protocol=self.name,
                    coin_type=entry.coin_type,
                    symbol=reserve.symbol,
                    side="supply",
                    amount=amount,
                    amount_raw=raw,
                    value_usd=amount * reserve.price,
                    apy=reserve.deposit_apr_pct + rewards_apy,
                    rewards_apy=rewards_apy,
                    rewards=metrics.rewards_earned(
                        entry.rewards, reserve.deposit_rewards, entry.share, prices
                    ),
                    estimated_liquidation_price=metrics.calculate_liquidation_price(
                        obligation, entry.coin_type
                    ),
                )
            )

        for entry in obligation.borrows:
            reserve = obligation.reserve(entry.coin_type)
            raw = metrics.borrow_amount(entry)
            amount = to_float(raw, reserve.decimals)
            rewards_apy = metrics.borrow_reward_apy(reserve, prices)
            positions.append(
                PortfolioPosition(
                    protocol=self.name,
                    coin_type=entry.coin_type,
                    symbol=reserve.symbol,
                    side="borrow",
                    amount=amount,
                    amount_raw=raw,
                    value_usd=amount * reserve.price,
                    apy=reserve.borrow_apr_pct - rewards_apy,
                    rewards_apy=rewards_apy,
                    rewards=metrics.rewards_earned(
                        entry.rewards, reserve.borrow_rewards, entry.share, prices
                    ),
                )
            )

        return positions

    async def get_position(self, address: str) -> PositionInfo | None:
        """Largest deposit against largest borrow; None without collateral."""
        obligation = await self.get_obligation(address)
        if obligation is None:
            return None
        return position_from_obligation(obligation, self._registry, self._funding_symbol)

    async def has_position(self, address: str) -> bool:
        return await self.get_position(address) is not None

    async def get_reserve(self, coin_type: str) -> ReserveSnapshot:
        self._ensure_initialized()
        market = await self.load_market()
        return market.reserve(coin_type)

    async def get_max_borrowable(self, address: str, coin_type: str) -> str:
        """Free borrow capacity in ``coin_type``, as a human amount string."""
        self._ensure_initialized()
        market = await self.load_market()
        reserve = market.reserve(coin_type)
        obligation = await self.fetch_obligation(address, market)
        if obligation is None or reserve.price <= 0:
            return "0"

        m = metrics.calculate_portfolio_metrics(obligation)
        free_usd = max(0.0, m.borrow_limit_usd - m.weighted_borrows_usd)
        amount = free_usd / (reserve.price * reserve.borrow_weight)
        raw = _floor_raw(amount, reserve.decimals)
        return to_human(raw, reserve.decimals)

    async def get_max_withdrawable(self, address: str, coin_type: str) -> str:
        """Collateral in ``coin_type`` that can leave without breaching open LTV."""
        self._ensure_initialized()
        market = await self.load_market()
        reserve = market.reserve(coin_type)
        obligation = await self.fetch_obligation(address, market)
        if obligation is None:
            return "0"

        deposited = sum(
            metrics.deposit_amount(d)
            for d in obligation.deposits
            if d.coin_type == reserve.coin_type
        )
        if deposited <= 0:
            return "0"
        if not obligation.borrows or reserve.open_ltv == 0:
            return to_human(deposited, reserve.decimals)

        m = metrics.calculate_portfolio_metrics(obligation)
        excess_usd = m.borrow_limit_usd - m.weighted_borrows_usd
        if excess_usd <= 0 or reserve.price <= 0:
            return "0"

        safe_usd = excess_usd * self._withdraw_safety
        amount = safe_usd / (reserve.price * reserve.open_ltv)
        raw = min(_floor_raw(amount, reserve.decimals), deposited)
        return to_human(raw, reserve.decimals)


def _floor_raw(amount: float, decimals: int) -> int:
    return max(0, int(amount * 10**decimals))


def position_from_obligation(
    obligation: ObligationSnapshot, registry: AssetRegistry, funding_symbol: str = "USDC"
) -> PositionInfo | None:
    """Primary collateral/debt pair of an obligation.

    Without any borrow the debt is reported as zero of the funding asset.
    """
    if not obligation.deposits:
        return None

    m = metrics.calculate_portfolio_metrics(obligation)

    collaterals = [
        _asset_position(obligation.reserve(d.coin_type), metrics.deposit_amount(d))
        for d in obligation.deposits
    ]
    collateral = max(collaterals, key=lambda p: p.value_usd)

    debts = [
        _asset_position(obligation.reserve(b.coin_type), metrics.borrow_amount(b))
        for b in obligation.borrows
    ]
    if debts:
        debt = max(debts, key=lambda p: p.value_usd)
    else:
        funding = registry.resolve(funding_symbol)
        debt = AssetPosition(
            coin_type=funding.coin_type,
            symbol=funding.symbol,
            decimals=funding.decimals,
            amount=0,
            value_usd=0.0,
        )

    return PositionInfo(
        collateral=collateral,
        debt=debt,
        net_value_usd=m.net_value_usd,
        health_factor=m.health_factor,
        ltv_percent=metrics.calc_ltv(m.total_deposited_usd, m.total_borrowed_usd),
        liquidation_price=metrics.calculate_liquidation_price(obligation, collateral.coin_type),
        total_deposited_usd=m.total_deposited_usd,
        weighted_borrows_usd=m.weighted_borrows_usd,
        borrow_limit_usd=m.borrow_limit_usd,
        liquidation_threshold_usd=m.liquidation_threshold_usd,
    )


def _asset_position(reserve: ReserveSnapshot, raw: int) -> AssetPosition:
    return AssetPosition(
        coin_type=reserve.coin_type,
        symbol=reserve.symbol,
        decimals=reserve.decimals,
        amount=raw,
        value_usd=to_float(raw, reserve.decimals) * reserve.price,
    )


def reserves_to_refresh(
    obligation: ObligationSnapshot | None, extra: list[ReserveSnapshot]
) -> list[ReserveSnapshot]:
    """Every reserve the obligation touches plus ``extra``, in stable order."""
    ordered: dict[str, ReserveSnapshot] = {}
    if obligation is not None:
        for entry in (*obligation.deposits, *obligation.borrows):
            reserve = obligation.reserves.get(entry.coin_type)
            if reserve is not None:
                ordered.setdefault(reserve.coin_type, reserve)
    for reserve in extra:
        ordered.setdefault(reserve.coin_type, reserve)
    return list(ordered.values())
