"""Leverage composer — flash loan, swap, deposit and borrow in one plan."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal

from .. import metrics
from ..assets import AssetInfo, AssetRegistry
from ..config import StrategyConfig
from ..errors import InvalidParameters
from ..interfaces.flash_loan import FlashLoanProvider
from ..interfaces.lending_protocol import LendingProtocol
from ..interfaces.swap import SwapRouter
from ..models import (
    BorrowEntry,
    DepositEntry,
    LeveragePreview,
    ObligationSnapshot,
    ReserveSnapshot,
    SwapQuote,
)
from ..plan import GAS, Handle, TransactionPlan
from ..protocols.base import MarketState, reserves_to_refresh
from ..swap.sevenk import min_amount_out
from ..units import apply_bps, normalize_asset_id, to_float

logger = logging.getLogger(__name__)

SUI_COIN_TYPE = normalize_asset_id("0x2::sui::SUI")


@dataclass(frozen=True)
class LeverageSizing:
    """Every amount a leverage plan moves, in raw units.

    ``flash_amount`` and ``borrow_amount`` are in the funding asset; the
    rest are in the deposit asset.
    """

    asset: AssetInfo
    funding: AssetInfo
    deposit_amount: int
    exposure: int
    flash_amount: int
    flash_fee: int
    swap_quote: SwapQuote | None

    @property
    def swap_output(self) -> int:
        if self.flash_amount == 0:
            return 0
        if self.swap_quote is None:
            return self.flash_amount
        return self.swap_quote.amount_out

    @property
    def total_deposit(self) -> int:
        return self.deposit_amount + self.swap_output

    @property
    def borrow_amount(self) -> int:
        """Borrowed to close the flash loan: principal plus fee."""
        if self.flash_amount == 0:
            return 0
        return self.flash_amount + self.flash_fee


def additional_exposure(deposit_amount: int, multiplier: float) -> int:
    """deposit × (multiplier − 1), truncated to raw units."""
    if multiplier < 1:
        raise InvalidParameters(f"Leverage multiplier must be at least 1, got {multiplier}")
    return int(Decimal(deposit_amount) * (Decimal(str(multiplier)) - 1))


def project_obligation(
    obligation: ObligationSnapshot | None,
    protocol: str,
    address: str,
    deposit_reserve: ReserveSnapshot,
    deposit_amount: int,
    borrow_reserve: ReserveSnapshot,
    borrow_amount: int,
) -> ObligationSnapshot:
    """The obligation as it would stand after depositing and borrowing.

    Projected entries carry unit rates so their amounts are taken as-is.
    """
    deposits = list(obligation.deposits) if obligation else []
    borrows = list(obligation.borrows) if obligation else []
    reserves = dict(obligation.reserves) if obligation else {}
    reserves[deposit_reserve.coin_type] = deposit_reserve
    reserves[borrow_reserve.coin_type] = borrow_reserve

    if deposit_amount > 0:
        deposits.append(
            DepositEntry(
                coin_type=deposit_reserve.coin_type,
                raw_amount=deposit_amount,
                exchange_rate=1,
                scale=1,
            )
        )
    if borrow_amount > 0:
        borrows.append(
            BorrowEntry(
                coin_type=borrow_reserve.coin_type,
                raw_amount=borrow_amount,
                origin_rate=0,
                current_rate=0,
                scale=1,
            )
        )

    return ObligationSnapshot(
        protocol=protocol,
        obligation_id=obligation.obligation_id if obligation else "",
        owner=address,
        deposits=tuple(deposits),
        borrows=tuple(borrows),
        reserves=reserves,
    )


def borrow_capacity(obligation: ObligationSnapshot, reserve: ReserveSnapshot) -> int:
    """Raw units of ``reserve`` the obligation can still borrow."""
    if reserve.price <= 0:
        return 0
    m = metrics.calculate_portfolio_metrics(obligation)
    free_usd = max(0.0, m.borrow_limit_usd - m.weighted_borrows_usd)
    return int(free_usd / (reserve.price * reserve.borrow_weight) * 10**reserve.decimals)


class LeverageComposer:
    """Builds leverage plans and previews for any lending protocol.

    The funding asset is flash-borrowed, swapped into the deposit asset,
    deposited together with the caller's principal, and re-borrowed to
    close the flash loan:

        flash borrow → swap → merge → refresh oracles → deposit → borrow
        → flash repay → return remainder
    """

    def __init__(
        self,
        flash_loan: FlashLoanProvider,
        router: SwapRouter,
        registry: AssetRegistry,
        strategy: StrategyConfig,
    ) -> None:
        self._flash_loan = flash_loan
        self._router = router
        self._registry = registry
        self._strategy = strategy

    @property
    def funding(self) -> AssetInfo:
        return self._registry.resolve(self._strategy.funding_asset)

    async def size(self, asset: AssetInfo, deposit_amount: int, multiplier: float) -> LeverageSizing:
        """Size the flash loan for ``multiplier``× exposure on ``deposit_amount``.

        The exposure is quoted back into the funding asset to learn how much
        to flash-borrow, then padded by the flash buffer and quoted forward to
        learn what the swap will deliver.

        Raises:
            NoRoute: the router has no quote for either direction.
        """
        funding = self.funding
        exposure = additional_exposure(deposit_amount, multiplier)
        if exposure == 0:
            return LeverageSizing(asset, funding, deposit_amount, 0, 0, 0, None)

        if asset.coin_type == funding.coin_type:
            flash_amount = exposure
            swap_quote = None
        else:
            reverse = await self._router.best_quote(exposure, asset.coin_type, funding.coin_type)
            flash_amount = apply_bps(reverse.amount_out, self._strategy.leverage_flash_buffer_bps)
            swap_quote = await self._router.best_quote(
                flash_amount, funding.coin_type, asset.coin_type
            )

        flash_fee = self._flash_loan.fee_for(flash_amount)
        logger.debug(
            "Leverage sizing: exposure=%d flash=%d fee=%d swap_out=%s",
            exposure,
            flash_amount,
            flash_fee,
            swap_quote.amount_out if swap_quote else "-",
        )
        return LeverageSizing(
            asset, funding, deposit_amount, exposure, flash_amount, flash_fee, swap_quote
        )

    async def preview(
        self,
        protocol: LendingProtocol,
        asset: AssetInfo,
        deposit_amount: int,
        multiplier: float,
    ) -> LeveragePreview:
        """Risk figures of a fresh leveraged position, without building a plan."""
        market = await protocol.load_market()
        sizing = await self.size(asset, deposit_amount, multiplier)
        reserve = market.reserve(asset.coin_type)
        funding_reserve = market.reserve(sizing.funding.coin_type)

        projected = project_obligation(
            None,
            protocol.name,
            "",
            reserve,
            sizing.total_deposit,
            funding_reserve,
            sizing.borrow_amount,
        )
        m = metrics.calculate_portfolio_metrics(projected)
        equity_usd = to_float(deposit_amount, asset.decimals) * reserve.price
        liquidation_price = metrics.calculate_liquidation_price(projected, reserve.coin_type)

        if liquidation_price is None or reserve.price <= 0:
            price_drop_buffer = 100.0
        else:
            price_drop_buffer = (1 - liquidation_price / reserve.price) * 100

        return LeveragePreview(
            initial_equity_usd=equity_usd,
            flash_loan_amount=sizing.flash_amount,
            flash_loan_fee=sizing.flash_fee,
            total_position_usd=m.total_deposited_usd,
            debt_usd=m.total_borrowed_usd,
            effective_multiplier=m.total_deposited_usd / equity_usd if equity_usd > 0 else 0.0,
            ltv_percent=metrics.calc_ltv(m.total_deposited_usd, m.total_borrowed_usd),
            liquidation_price=liquidation_price,
            price_drop_buffer=price_drop_buffer,
            health_factor=m.health_factor,
        )

    async def build(
        self,
        protocol: LendingProtocol,
        address: str,
        asset: AssetInfo,
        deposit_amount: int,
        multiplier: float,
        gas_budget: int | None = None,
    ) -> TransactionPlan:
        """Build and validate the leverage plan for ``address``.

        Raises:
            NoRoute: no swap route for the funding pair.
            InsufficientCollateral: the position cannot borrow enough to
                repay the flash loan.
            PlanError: the assembled plan is inconsistent.
        """
        if deposit_amount <= 0:
            raise InvalidParameters("Deposit amount must be positive")

        market: MarketState = await protocol.load_market()
        obligation = await protocol.fetch_obligation(address, market)
        reserve = market.reserve(asset.coin_type)
        sizing = await self.size(asset, deposit_amount, multiplier)
        funding_reserve = market.reserve(sizing.funding.coin_type)

        plan = TransactionPlan(address, gas_budget)
        logger.info(
            "Building %s leverage: %d %s at %.2fx",
            protocol.name, deposit_amount, asset.symbol, multiplier,
        )

        swapped: Handle | None = None
        receipt: Handle | None = None
        tag = ""
        if sizing.flash_amount > 0:
            tag = self._flash_loan.tag_for(sizing.funding.symbol)
            loan, receipt = self._flash_loan.borrow(plan, sizing.flash_amount, tag)
            if sizing.swap_quote is not None:
                swapped = self._router.swap(plan, sizing.swap_quote, loan)
            else:
                swapped = loan

        if asset.coin_type == SUI_COIN_TYPE:
            principal = plan.split_coins(GAS, [deposit_amount])[0]
        else:
            principal = plan.coin_with_balance(asset.coin_type, deposit_amount)

        if swapped is not None:
            plan.merge_coins(principal, [swapped])

        account = protocol.open_account(plan, address, obligation, create=True)
        protocol.refresh_oracles(
            plan, account, reserves_to_refresh(obligation, [reserve, funding_reserve])
        )
        protocol.deposit(plan, account, reserve, principal)

        if receipt is not None:
            borrowed = protocol.borrow(plan, account, funding_reserve, sizing.borrow_amount)
            repayment = plan.split_coins(borrowed, [sizing.borrow_amount])[0]
            self._flash_loan.repay(plan, repayment, receipt, tag)
            plan.transfer_objects([borrowed], address)

            # Capacity is judged on the least the swap may deliver.
            guaranteed = sizing.deposit_amount + (
                min_amount_out(sizing.swap_quote, self._router.slippage_bps)
                if sizing.swap_quote is not None
                else sizing.swap_output
            )
            deposited = project_obligation(
                obligation, protocol.name, address, reserve, guaranteed, funding_reserve, 0
            )
            plan.require_funding(
                "borrow capacity", borrow_capacity(deposited, funding_reserve), sizing.borrow_amount
            )

        protocol.close_account(plan, account, address)
        plan.validate()
        logger.info("Leverage plan ready: %d steps", len(plan))
        return plan
