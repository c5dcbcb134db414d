"""Deleverage composer — close a leveraged position with a flash loan."""
from __future__ import annotations

import logging
from dataclasses import dataclass

from ..assets import AssetRegistry
from ..config import StrategyConfig
from ..errors import (
    InsufficientCollateral,
    NoObligation,
    NothingToDeleverage,
    UnsupportedPosition,
)
from ..interfaces.flash_loan import FlashLoanProvider
from ..interfaces.lending_protocol import LendingProtocol
from ..interfaces.swap import SwapRouter
from ..models import (
    DeleverageEstimate,
    ObligationSnapshot,
    PositionInfo,
    ReserveSnapshot,
    SwapQuote,
)
from ..plan import TransactionPlan
from ..protocols.base import position_from_obligation, reserves_to_refresh
from ..swap.sevenk import min_amount_out
from ..units import apply_bps, ceil_div, to_float

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeleverageSizing:
    obligation: ObligationSnapshot
    position: PositionInfo
    collateral_reserve: ReserveSnapshot
    debt_reserve: ReserveSnapshot
    flash_amount: int
    flash_fee: int
    swap_amount: int
    swap_quote: SwapQuote | None
    repay_amount: int

    @property
    def debt(self) -> int:
        return self.position.debt.amount

    @property
    def withdraw_amount(self) -> int:
        return self.position.collateral.amount

    @property
    def repayment(self) -> int:
        return self.flash_amount + self.flash_fee

    @property
    def flash_leftover(self) -> int:
        """Flash-loan coin still in the plan once the debt is repaid.

        A consuming repay takes the whole flash amount, so nothing is left.
        """
        return self.flash_amount - self.repay_amount

    @property
    def same_asset(self) -> bool:
        return self.collateral_reserve.coin_type == self.debt_reserve.coin_type


class DeleverageComposer:
    """Builds plans that repay all debt and withdraw all collateral at once.

        flash borrow (debt asset) → refresh oracles → repay debt → withdraw
        collateral → swap just enough collateral → flash repay → return rest

    Only the largest deposit is withdrawn, and the position must owe a
    single asset.
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

    async def size(self, protocol: LendingProtocol, address: str) -> DeleverageSizing:
        """Work out flash-loan and swap amounts from the live position.

        The swap input is the smallest share of the collateral whose output
        covers the repayment plus margin, scaled off a full-amount quote.

        Raises:
            NoObligation: the address holds no collateral in this market.
            NothingToDeleverage: the position has no debt.
            UnsupportedPosition: the position borrows more than one asset.
            NoRoute: no swap route from collateral to debt asset.
            InsufficientCollateral: selling all collateral cannot repay
                the flash loan.
        """
        market = await protocol.load_market()
        obligation = await protocol.fetch_obligation(address, market)
        if obligation is None:
            raise NoObligation(f"{address} has no {protocol.name} position")

        position = position_from_obligation(
            obligation, self._registry, self._strategy.funding_asset
        )
        if position is None:
            raise NoObligation(f"{address} has no {protocol.name} collateral")
        if position.debt.amount <= 0:
            raise NothingToDeleverage(f"{protocol.name} position has no debt")
        # Withdrawing everything needs every borrow repaid from one flash loan.
        debt_assets = {b.coin_type for b in obligation.borrows}
        if len(debt_assets) > 1:
            raise UnsupportedPosition(
                f"{protocol.name} position borrows {len(debt_assets)} assets; "
                "only single-debt positions can be closed"
            )

        collateral_reserve = market.reserve(position.collateral.coin_type)
        debt_reserve = market.reserve(position.debt.coin_type)
        debt = position.debt.amount
        withdraw_amount = position.collateral.amount

        flash_amount = apply_bps(debt, self._strategy.deleverage_flash_buffer_bps)
        flash_fee = self._flash_loan.fee_for(flash_amount)
        repayment = flash_amount + flash_fee
        # The flash buffer covers interest accrued before execution.
        repay_amount = flash_amount if protocol.consumes_repayment_coin else debt

        if collateral_reserve.coin_type == debt_reserve.coin_type:
            if withdraw_amount + flash_amount - repay_amount < repayment:
                raise InsufficientCollateral(
                    f"Collateral {withdraw_amount} cannot repay flash loan {repayment}"
                )
            return DeleverageSizing(
                obligation, position, collateral_reserve, debt_reserve,
                flash_amount, flash_fee, 0, None, repay_amount,
            )

        full_quote = await self._router.best_quote(
            withdraw_amount, collateral_reserve.coin_type, debt_reserve.coin_type
        )
        if full_quote.amount_out < repayment:
            raise InsufficientCollateral(
                f"Selling all collateral yields {full_quote.amount_out}, "
                f"flash loan repayment needs {repayment}"
            )

        target = apply_bps(repayment, self._strategy.deleverage_swap_margin_bps)
        swap_amount = min(
            ceil_div(target * full_quote.amount_in, full_quote.amount_out), withdraw_amount
        )
        if swap_amount == full_quote.amount_in:
            swap_quote = full_quote
        else:
            swap_quote = await self._router.best_quote(
                swap_amount, collateral_reserve.coin_type, debt_reserve.coin_type
            )

        logger.debug(
            "Deleverage sizing: debt=%d flash=%d fee=%d swap_in=%d of %d quoted_out=%d",
            debt, flash_amount, flash_fee, swap_amount, withdraw_amount, swap_quote.amount_out,
        )
        return DeleverageSizing(
            obligation, position, collateral_reserve, debt_reserve,
            flash_amount, flash_fee, swap_amount, swap_quote, repay_amount,
        )

    async def estimate(self, protocol: LendingProtocol, address: str) -> DeleverageEstimate:
        """What closing the position would return, without building a plan."""
        sizing = await self.size(protocol, address)
        return self._estimate(sizing)

    def _estimate(self, sizing: DeleverageSizing) -> DeleverageEstimate:
        if sizing.same_asset:
            keep = sizing.withdraw_amount + sizing.flash_leftover - sizing.repayment
            surplus = 0
        else:
            keep = sizing.withdraw_amount - sizing.swap_amount
            quoted_out = sizing.swap_quote.amount_out if sizing.swap_quote else 0
            surplus = max(0, quoted_out + sizing.flash_leftover - sizing.repayment)

        collateral = sizing.collateral_reserve
        debt = sizing.debt_reserve
        total_value_usd = (
            to_float(keep, collateral.decimals) * collateral.price
            + to_float(surplus, debt.decimals) * debt.price
        )
        return DeleverageEstimate(
            flash_loan_amount=sizing.flash_amount,
            flash_loan_fee=sizing.flash_fee,
            total_repayment=sizing.repayment,
            swap_amount=sizing.swap_amount,
            keep_collateral=keep,
            estimated_surplus=surplus,
            total_value_usd=total_value_usd,
        )

    async def build(
        self, protocol: LendingProtocol, address: str, gas_budget: int | None = None
    ) -> TransactionPlan:
        """Build and validate the deleverage plan for ``address``."""
        sizing = await self.size(protocol, address)
        debt_reserve = sizing.debt_reserve
        collateral_reserve = sizing.collateral_reserve

        plan = TransactionPlan(address, gas_budget)
        logger.info(
            "Building %s deleverage: repay %d %s, withdraw %d %s",
            protocol.name,
            sizing.debt,
            debt_reserve.symbol,
            sizing.withdraw_amount,
            collateral_reserve.symbol,
        )

        tag = self._flash_loan.tag_for(debt_reserve.symbol)
        loan, receipt = self._flash_loan.borrow(plan, sizing.flash_amount, tag)

        account = protocol.open_account(plan, address, sizing.obligation)
        protocol.refresh_oracles(plan, account, reserves_to_refresh(sizing.obligation, []))

        # A consuming repay must get its own coin so the loan coin stays usable.
        if protocol.consumes_repayment_coin:
            debt_coin = plan.split_coins(loan, [sizing.repay_amount])[0]
            protocol.repay(plan, account, debt_reserve, debt_coin)
        else:
            protocol.repay(plan, account, debt_reserve, loan)

        withdrawn = protocol.withdraw(plan, account, collateral_reserve, None)

        if sizing.same_asset:
            plan.merge_coins(loan, [withdrawn])
            available = sizing.flash_leftover + sizing.withdraw_amount
            leftovers = [loan]
        else:
            sell = plan.split_coins(withdrawn, [sizing.swap_amount])[0]
            proceeds = self._router.swap(plan, sizing.swap_quote, sell)
            plan.merge_coins(loan, [proceeds])
            available = sizing.flash_leftover + min_amount_out(
                sizing.swap_quote, self._router.slippage_bps
            )
            leftovers = [withdrawn, loan]

        repayment = plan.split_coins(loan, [sizing.repayment])[0]
        self._flash_loan.repay(plan, repayment, receipt, tag)
        plan.transfer_objects(leftovers, address)

        plan.require_funding("flash loan repayment", available, sizing.repayment)
        plan.validate()
        logger.info("Deleverage plan ready: %d steps", len(plan))
        return plan
