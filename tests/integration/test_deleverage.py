"""Integration tests for the deleverage composer over in-memory collaborators."""
from __future__ import annotations

from dataclasses import replace

import pytest

from conftest import SUI, USDC, USDT, WALLET, PriceRouter, StubProtocol
from leverage_kit.assets import AssetRegistry
from leverage_kit.config import StrategyConfig
from leverage_kit.errors import (
    InsufficientCollateral,
    NoObligation,
    NothingToDeleverage,
    UnsupportedPosition,
)
from leverage_kit.flashloan.scallop import ScallopFlashLoan
from leverage_kit.models import BorrowEntry, DepositEntry, ObligationSnapshot
from leverage_kit.plan import Handle, MergeCoins, MoveCall, SplitCoins, Swap, TransferObjects
from leverage_kit.protocols.base import MarketState
from leverage_kit.units import WAD
from leverage_kit.services.deleverage import DeleverageComposer


@pytest.fixture()
def composer(
    flash_loan: ScallopFlashLoan, router: PriceRouter, registry: AssetRegistry
) -> DeleverageComposer:
    return DeleverageComposer(flash_loan, router, registry, StrategyConfig())


def _with_deposit(obligation: ObligationSnapshot, coin_type: str, amount: int) -> ObligationSnapshot:
    return replace(
        obligation,
        deposits=(DepositEntry(coin_type=coin_type, raw_amount=amount, exchange_rate=1, scale=1),),
    )


class TestSizing:
    @pytest.mark.asyncio
    async def test_swaps_just_enough_collateral(
        self, composer: DeleverageComposer, market: MarketState, leveraged_obligation
    ) -> None:
        sizing = await composer.size(StubProtocol(market, leveraged_obligation), WALLET)

        assert sizing.debt == 1000 * 10**6
        assert sizing.flash_amount == 1005 * 10**6
        assert sizing.repayment == 1005 * 10**6
        # repayment + 2% margin at $2 per SUI
        assert sizing.swap_amount == 512_550_000_000
        assert sizing.swap_quote.amount_out == 1_025_100_000

    @pytest.mark.asyncio
    async def test_no_obligation(self, composer: DeleverageComposer, market: MarketState) -> None:
        with pytest.raises(NoObligation):
            await composer.size(StubProtocol(market), WALLET)

    @pytest.mark.asyncio
    async def test_no_debt(
        self, composer: DeleverageComposer, market: MarketState, leveraged_obligation
    ) -> None:
        obligation = replace(leveraged_obligation, borrows=())
        with pytest.raises(NothingToDeleverage):
            await composer.size(StubProtocol(market, obligation), WALLET)

    @pytest.mark.asyncio
    async def test_collateral_cannot_cover_debt(
        self, composer: DeleverageComposer, market: MarketState, leveraged_obligation
    ) -> None:
        # 100 SUI sells for $200 against $1005 owed to the flash loan
        obligation = _with_deposit(leveraged_obligation, SUI, 100 * 10**9)
        with pytest.raises(InsufficientCollateral):
            await composer.size(StubProtocol(market, obligation), WALLET)


    @pytest.mark.asyncio
    async def test_second_debt_asset_rejected(
        self, composer: DeleverageComposer, market: MarketState, leveraged_obligation
    ) -> None:
        obligation = replace(
            leveraged_obligation,
            borrows=leveraged_obligation.borrows
            + (
                BorrowEntry(
                    coin_type=USDT,
                    raw_amount=200 * 10**6,
                    origin_rate=WAD,
                    current_rate=WAD,
                    scale=1,
                ),
            ),
        )
        protocol = StubProtocol(market, obligation)
        with pytest.raises(UnsupportedPosition, match="2 assets"):
            await composer.size(protocol, WALLET)
        with pytest.raises(UnsupportedPosition):
            await composer.build(protocol, WALLET)

    @pytest.mark.asyncio
    async def test_consuming_repay_leaves_no_flash_coin(
        self, composer: DeleverageComposer, market: MarketState, leveraged_obligation
    ) -> None:
        protocol = StubProtocol(market, leveraged_obligation, consumes_repayment_coin=True)
        sizing = await composer.size(protocol, WALLET)

        assert sizing.repay_amount == 1005 * 10**6
        assert sizing.flash_leftover == 0


class TestEstimate:
    @pytest.mark.asyncio
    async def test_cross_asset(
        self, composer: DeleverageComposer, market: MarketState, leveraged_obligation
    ) -> None:
        estimate = await composer.estimate(StubProtocol(market, leveraged_obligation), WALLET)

        assert estimate.flash_loan_amount == 1005 * 10**6
        assert estimate.flash_loan_fee == 0
        assert estimate.total_repayment == 1005 * 10**6
        assert estimate.swap_amount == 512_550_000_000
        assert estimate.keep_collateral == 487_450_000_000
        assert estimate.estimated_surplus == 25_100_000
        assert estimate.total_value_usd == pytest.approx(1000.0)

    @pytest.mark.asyncio
    async def test_same_asset(
        self, composer: DeleverageComposer, market: MarketState, leveraged_obligation
    ) -> None:
        obligation = _with_deposit(leveraged_obligation, USDC, 2000 * 10**6)
        estimate = await composer.estimate(StubProtocol(market, obligation), WALLET)

        assert estimate.swap_amount == 0
        assert estimate.keep_collateral == 1000 * 10**6
        assert estimate.estimated_surplus == 0
        assert estimate.total_value_usd == pytest.approx(1000.0)


class TestBuild:
    @pytest.mark.asyncio
    async def test_cross_asset_plan(
        self, composer: DeleverageComposer, market: MarketState, leveraged_obligation
    ) -> None:
        plan = await composer.build(StubProtocol(market, leveraged_obligation), WALLET, 7_000)

        assert plan.gas_budget == 7_000
        kinds = [type(s).__name__ for s in plan.steps]
        assert kinds == [
            "MoveCall",  # flash borrow
            "MoveCall",  # refresh SUI
            "MoveCall",  # refresh USDC
            "MoveCall",  # repay
            "MoveCall",  # withdraw
            "SplitCoins",
            "Swap",
            "MergeCoins",
            "SplitCoins",
            "MoveCall",  # flash repay
            "TransferObjects",
        ]
        repay = plan.steps[3]
        assert isinstance(repay, MoveCall)
        assert repay.arguments[1] == Handle(0, 0)
        sell = plan.steps[5]
        assert isinstance(sell, SplitCoins)
        assert sell.amounts == (512_550_000_000,)
        assert plan.steps[8].amounts == (1005 * 10**6,)
        transfer = plan.steps[-1]
        assert isinstance(transfer, TransferObjects)
        assert [o.step for o in transfer.objects] == [4, 0]

        (check,) = plan.funding_checks
        assert check.label == "flash loan repayment"
        # 5 USDC left from the loan plus the swap minimum after 1% slippage
        assert check.available == 5_000_000 + 1_014_849_000
        assert check.required == 1005 * 10**6

    @pytest.mark.asyncio
    async def test_consuming_repay_gets_whole_flash_loan(
        self, composer: DeleverageComposer, market: MarketState, leveraged_obligation
    ) -> None:
        protocol = StubProtocol(market, leveraged_obligation, consumes_repayment_coin=True)
        plan = await composer.build(protocol, WALLET)

        split = plan.steps[3]
        assert isinstance(split, SplitCoins)
        # debt plus the flash buffer, so accrued interest is covered too
        assert split.amounts == (1005 * 10**6,)
        repay = plan.steps[4]
        assert repay.target == "0xstub::market::repay"
        assert repay.consumes == (repay.arguments[1],)
        assert len(plan) == 12
        (check,) = plan.funding_checks
        assert check.available == 1_014_849_000

    @pytest.mark.asyncio
    async def test_same_asset_plan_has_no_swap(
        self, composer: DeleverageComposer, market: MarketState, leveraged_obligation
    ) -> None:
        obligation = _with_deposit(leveraged_obligation, USDC, 2000 * 10**6)
        plan = await composer.build(StubProtocol(market, obligation), WALLET)

        assert not any(isinstance(s, Swap) for s in plan.steps)
        merge = next(s for s in plan.steps if isinstance(s, MergeCoins))
        assert merge.destination.step == 0
        assert plan.funding_checks[0].available == 2005 * 10**6
        assert len(plan.steps[-1].objects) == 1
