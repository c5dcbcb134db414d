"""Shared test fixtures and sample data."""
from __future__ import annotations

import textwrap
from fractions import Fraction
from pathlib import Path

import pytest

from leverage_kit.assets import AssetRegistry
from leverage_kit.config import (
    AppConfig,
    ChainConfig,
    FlashLoanConfig,
    NaviConfig,
    PriceOracleConfig,
    ProtocolsConfig,
    PythConfig,
    StrategyConfig,
    SuilendConfig,
    SwapConfig,
    WalletConfig,
)
from leverage_kit.errors import NoObligation, NoRoute
from leverage_kit.flashloan.scallop import ScallopFlashLoan
from leverage_kit.models import (
    BorrowEntry,
    DepositEntry,
    ObligationSnapshot,
    ReserveSnapshot,
    SwapQuote,
)
from leverage_kit.plan import Handle, ObjectRef, Pure, TransactionPlan
from leverage_kit.protocols.base import AccountRef, LendingProtocolBase, MarketState
from leverage_kit.units import WAD, normalize_asset_id

SUI = normalize_asset_id("0x2::sui::SUI")
USDC = normalize_asset_id(
    "0xdba34672e30cb065b1f93e3ab55318768fd6fef66c15942c9f7cb846e2f900e7::usdc::USDC"
)
USDT = normalize_asset_id(
    "0x375f70cf2ae4c00bf37117d0c85a2c71545e6ee05c4a5c7d282cd66a4504b068::usdt::USDT"
)
WALLET = "0x" + "ab" * 32


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def sample_chain_config() -> ChainConfig:
    return ChainConfig(
        rpc_endpoints=("https://rpc1.example.com", "https://rpc2.example.com"),
        rpc_timeout=10,
    )


@pytest.fixture()
def sample_pyth_config() -> PythConfig:
    return PythConfig(
        hermes_url="https://hermes.pyth.network/v2/updates/price/latest",
        feeds={"SUI": "abc123", "BTC": "def456", "USDC": "ghi789"},
    )


@pytest.fixture()
def sample_suilend_config() -> SuilendConfig:
    return SuilendConfig(
        package_id="0xsuilend",
        lending_market_id="0xmarket",
        lending_market_type="0xf95b::suilend::MAIN_POOL",
        price_info_objects={"SUI": "0xpyth_sui", "USDC": "0xpyth_usdc"},
    )


@pytest.fixture()
def sample_navi_config() -> NaviConfig:
    return NaviConfig(
        package_id="0xnavi",
        storage_id="0xstorage",
        incentive_v2_id="0xinc2",
        incentive_v3_id="0xinc3",
        oracle_package_id="0xoracle",
        price_oracle_id="0xprice_oracle",
        api_url="https://navi.example.com/api",
        price_feed_objects={"SUI": "0xfeed_sui", "USDC": "0xfeed_usdc"},
    )


@pytest.fixture()
def sample_flash_loan_config() -> FlashLoanConfig:
    return FlashLoanConfig(package_id="0xscallop", version_id="0xversion", market_id="0xscmarket")


@pytest.fixture()
def sample_app_config(
    sample_chain_config: ChainConfig,
    sample_pyth_config: PythConfig,
    sample_suilend_config: SuilendConfig,
    sample_navi_config: NaviConfig,
    sample_flash_loan_config: FlashLoanConfig,
) -> AppConfig:
    return AppConfig(
        chain=sample_chain_config,
        wallet=WalletConfig(address=WALLET),
        protocols=ProtocolsConfig(suilend=sample_suilend_config, navi=sample_navi_config),
        flash_loan=sample_flash_loan_config,
        swap=SwapConfig(api_url="https://swap.example.com", slippage_bps=100),
        price_oracle=PriceOracleConfig(provider="pyth", pyth=sample_pyth_config),
        strategy=StrategyConfig(),
    )


@pytest.fixture()
def registry() -> AssetRegistry:
    return AssetRegistry()


# ---------------------------------------------------------------------------
# Market fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def sui_reserve() -> ReserveSnapshot:
    return ReserveSnapshot(
        coin_type=SUI,
        symbol="SUI",
        decimals=9,
        price=2.0,
        available_amount=5_000_000 * 10**9,
        total_deposited=10_000_000 * 10**9,
        total_borrowed=5_000_000 * 10**9,
        open_ltv=0.7,
        close_ltv=0.75,
        deposit_apr_pct=3.0,
        borrow_apr_pct=6.0,
        reserve_index=0,
    )


@pytest.fixture()
def usdc_reserve() -> ReserveSnapshot:
    return ReserveSnapshot(
        coin_type=USDC,
        symbol="USDC",
        decimals=6,
        price=1.0,
        available_amount=20_000_000 * 10**6,
        total_deposited=50_000_000 * 10**6,
        total_borrowed=30_000_000 * 10**6,
        open_ltv=0.77,
        close_ltv=0.8,
        deposit_apr_pct=5.0,
        borrow_apr_pct=8.0,
        reserve_index=1,
    )


@pytest.fixture()
def usdt_reserve() -> ReserveSnapshot:
    return ReserveSnapshot(
        coin_type=USDT,
        symbol="USDT",
        decimals=6,
        price=1.0,
        available_amount=10_000_000 * 10**6,
        total_deposited=10_000_000 * 10**6,
        total_borrowed=0,
        open_ltv=0.77,
        close_ltv=0.8,
        reserve_index=2,
    )


@pytest.fixture()
def market(
    sui_reserve: ReserveSnapshot, usdc_reserve: ReserveSnapshot, usdt_reserve: ReserveSnapshot
) -> MarketState:
    return MarketState(
        protocol="stub",
        reserves={r.coin_type: r for r in (sui_reserve, usdc_reserve, usdt_reserve)},
    )


@pytest.fixture()
def leveraged_obligation(market: MarketState) -> ObligationSnapshot:
    """1000 SUI ($2000) deposited against 1000 USDC borrowed."""
    return ObligationSnapshot(
        protocol="stub",
        obligation_id="0xobligation",
        owner=WALLET,
        deposits=(DepositEntry(coin_type=SUI, raw_amount=1000 * 10**9, exchange_rate=1, scale=1),),
        borrows=(
            BorrowEntry(
                coin_type=USDC,
                raw_amount=1000 * 10**6,
                origin_rate=WAD,
                current_rate=WAD,
                scale=1,
            ),
        ),
        reserves=market.reserves,
        account_cap="0xcap",
    )


# ---------------------------------------------------------------------------
# Collaborator doubles
# ---------------------------------------------------------------------------


class StubProtocol(LendingProtocolBase):
    """In-memory lending market whose plan primitives are plain move calls."""

    name = "stub"

    def __init__(
        self,
        market: MarketState,
        obligation: ObligationSnapshot | None = None,
        consumes_repayment_coin: bool = False,
    ) -> None:
        super().__init__(AssetRegistry())
        self.market = market
        self.obligation = obligation
        self.consumes_repayment_coin = consumes_repayment_coin
        self._initialized = True

    async def load_market(self) -> MarketState:
        return self.market

    async def fetch_obligation(
        self, address: str, market: MarketState
    ) -> ObligationSnapshot | None:
        return self.obligation

    def open_account(self, plan, address, obligation, create=False) -> AccountRef:
        if obligation is None:
            if not create:
                raise NoObligation("no account")
            cap = plan.move_call("0xstub::market::create_account")
            return AccountRef(cap=cap, created=True)
        return AccountRef(cap=ObjectRef(obligation.account_cap), obligation_id=obligation.obligation_id)

    def refresh_oracles(self, plan, account, reserves) -> None:
        for reserve in reserves:
            plan.move_call("0xstub::market::refresh", [Pure(reserve.reserve_index)])

    def deposit(self, plan, account, reserve, coin) -> None:
        plan.move_call(
            "0xstub::market::deposit", [account.cap, coin], [reserve.coin_type], consumes=[coin]
        )

    def withdraw(self, plan, account, reserve, amount=None) -> Handle:
        return plan.move_call(
            "0xstub::market::withdraw", [account.cap, Pure(amount)], [reserve.coin_type]
        )

    def borrow(self, plan, account, reserve, amount) -> Handle:
        return plan.move_call(
            "0xstub::market::borrow", [account.cap, Pure(amount)], [reserve.coin_type]
        )

    def repay(self, plan, account, reserve, coin) -> None:
        plan.move_call(
            "0xstub::market::repay",
            [account.cap, coin],
            [reserve.coin_type],
            consumes=[coin] if self.consumes_repayment_coin else [],
        )


class PriceRouter:
    """Swap router quoting at fixed USD prices with no fee."""

    def __init__(
        self, prices: dict[str, tuple[float, int]], slippage_bps: int = 100
    ) -> None:
        self.prices = prices
        self.slippage_bps = slippage_bps
        self.requests: list[tuple[int, str, str]] = []

    async def quote(self, amount_in: int, coin_in: str, coin_out: str) -> list[SwapQuote]:
        self.requests.append((amount_in, coin_in, coin_out))
        if coin_in not in self.prices or coin_out not in self.prices:
            return []
        price_in, dec_in = self.prices[coin_in]
        price_out, dec_out = self.prices[coin_out]
        out = int(
            Fraction(amount_in)
            * Fraction(str(price_in))
            / Fraction(str(price_out))
            * Fraction(10) ** (dec_out - dec_in)
        )
        return [SwapQuote(coin_in, coin_out, amount_in, out, provider="test")]

    async def best_quote(self, amount_in: int, coin_in: str, coin_out: str) -> SwapQuote:
        quotes = await self.quote(amount_in, coin_in, coin_out)
        if not quotes:
            raise NoRoute(f"no route {coin_in} -> {coin_out}")
        return max(quotes, key=lambda q: q.amount_out)

    def swap(self, plan: TransactionPlan, quote: SwapQuote, coin_in: Handle, slippage_bps=None):
        return plan.swap(quote, coin_in, self.slippage_bps if slippage_bps is None else slippage_bps)


@pytest.fixture()
def router() -> PriceRouter:
    return PriceRouter({SUI: (2.0, 9), USDC: (1.0, 6), USDT: (1.0, 6)})


@pytest.fixture()
def flash_loan(
    sample_flash_loan_config: FlashLoanConfig, registry: AssetRegistry
) -> ScallopFlashLoan:
    return ScallopFlashLoan(sample_flash_loan_config, registry)


# ---------------------------------------------------------------------------
# Config YAML fixture
# ---------------------------------------------------------------------------

SAMPLE_YAML = textwrap.dedent("""\
    chain:
      rpc_endpoints: ["https://rpc.example.com"]
      rpc_timeout: 10
    wallet:
      address: "0xTEST"
    assets:
      HASUI:
        coin_type: "0xbde4ba4c2e274a60ce15c1cfff9e5c42e41654ac8b6d906a57efa4bd3c29f47d::hasui::HASUI"
        decimals: 9
    protocols:
      suilend:
        package_id: "0xsuilend"
        lending_market_id: "0xmarket"
        lending_market_type: "0xf95b::suilend::MAIN_POOL"
        price_info_objects: {SUI: "0xpyth_sui"}
      navi:
        package_id: "0xnavi"
        storage_id: "0xstorage"
        pools: {SUI: "0xpool_sui"}
    flash_loan:
      package_id: "0xscallop"
      version_id: "0xversion"
      market_id: "0xscmarket"
      fee_bps: 5
    swap:
      api_url: "https://swap.example.com"
      slippage_bps: 50
    price_oracle:
      provider: pyth
      pyth:
        hermes_url: "https://hermes.example.com"
        feeds: {SUI: "aaa", BTC: "bbb"}
    strategy:
      funding_asset: USDC
      leverage_flash_buffer_bps: 300
""")


@pytest.fixture()
def sample_yaml_path(tmp_path: Path) -> Path:
    cfg_file = tmp_path / "config.yaml"
    cfg_file.write_text(SAMPLE_YAML)
    return cfg_file
