"""Session facade — one identity, its protocol adapters, and the composers."""
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from ..assets import AssetInfo
from ..chains.sui.client import SuiClient
from ..config import AppConfig
from ..errors import (
    ExecutionFailed,
    InvalidParameters,
    LeverageKitError,
    NotInitialized,
    SimulationFailed,
)
from ..flashloan.scallop import ScallopFlashLoan
from ..interfaces.chain import ChainClient
from ..interfaces.flash_loan import FlashLoanProvider
from ..interfaces.lending_protocol import LendingProtocol
from ..interfaces.price_oracle import PriceOracle
from ..interfaces.swap import SwapRouter
from ..interfaces.transport import Signer, Transport
from ..metrics import calculate_leverage_limits
from ..models import (
    AccountPortfolio,
    DeleverageEstimate,
    ExecutionResult,
    LeverageLimits,
    LeveragePreview,
    MarketAsset,
    PositionInfo,
    StrategyResult,
)
from ..oracles.pyth import PythOracle
from ..plan import TransactionPlan
from ..protocols.navi.adapter import NaviAdapter
from ..protocols.suilend.adapter import SuilendAdapter
from ..swap.sevenk import SevenKRouter
from ..units import to_raw
from .deleverage import DeleverageComposer
from .leverage import LeverageComposer

logger = logging.getLogger(__name__)


def _parse_amount(amount: str, decimals: int) -> int:
    try:
        return to_raw(amount, decimals)
    except ValueError as e:
        raise InvalidParameters(str(e)) from e

# Registry of lending adapter factories keyed by protocol name.
_PROTOCOL_FACTORIES: dict[str, Callable[..., LendingProtocol]] = {
    "suilend": lambda client, config, registry: SuilendAdapter(
        client,
        config.protocols.suilend,
        registry,
        config.strategy.withdraw_safety_factor,
        config.strategy.funding_asset,
    ),
    "navi": lambda client, config, registry: NaviAdapter(
        config.protocols.navi,
        registry,
        config.strategy.withdraw_safety_factor,
        config.strategy.funding_asset,
        timeout=config.chain.rpc_timeout,
    ),
}


class LeverageSession:
    """Entry point for reads, previews, plan building and execution.

    A session owns its identity and adapters; it is not meant to be driven
    by two operations at once.
    """

    def __init__(
        self,
        config: AppConfig,
        chain_client: ChainClient | None = None,
        oracle: PriceOracle | None = None,
        router: SwapRouter | None = None,
        flash_loan: FlashLoanProvider | None = None,
        protocols: dict[str, LendingProtocol] | None = None,
    ) -> None:
        self._config = config
        self._registry = config.asset_registry()
        self._client: ChainClient = chain_client or SuiClient(config.chain)
        self._oracle: PriceOracle = oracle or PythOracle(config.price_oracle.pyth, self._registry)
        self._router: SwapRouter = router or SevenKRouter(config.swap, config.chain.rpc_timeout)
        self._flash_loan: FlashLoanProvider = flash_loan or ScallopFlashLoan(
            config.flash_loan, self._registry
        )

        if protocols is not None:
            self._protocols = dict(protocols)
        else:
            self._protocols = {}
            for name, factory in _PROTOCOL_FACTORIES.items():
                if getattr(config.protocols, name).package_id:
                    self._protocols[name] = factory(self._client, config, self._registry)
                else:
                    logger.debug("Protocol '%s' not configured, skipping", name)

        self._leverage = LeverageComposer(
            self._flash_loan, self._router, self._registry, config.strategy
        )
        self._deleverage = DeleverageComposer(
            self._flash_loan, self._router, self._registry, config.strategy
        )

        self._transport: Transport | None = None
        self._signer: Signer | None = None
        self._address = ""
        self._initialized = False

    # ------------------------------------------------------------------
    # Session state
    # ------------------------------------------------------------------

    async def initialize(self, transport: Transport | None, identity: str | Signer) -> None:
        """Bind the transport and identity, then initialize every adapter.

        ``identity`` is either a plain address (reads and unsigned plans
        only) or a Signer, which also enables ``leverage``/``deleverage``
        submission.
        """
        if isinstance(identity, str):
            self._address = identity
            self._signer = None
        else:
            self._address = identity.address
            self._signer = identity
        self._transport = transport

        await asyncio.gather(*(p.initialize() for p in self._protocols.values()))
        self._initialized = True
        logger.info(
            "Session initialized for %s with protocols: %s",
            self._address,
            ", ".join(self._protocols) or "none",
        )

    @property
    def address(self) -> str:
        return self._address

    @property
    def protocol_names(self) -> list[str]:
        return list(self._protocols)

    def _ensure_initialized(self) -> None:
        if not self._initialized:
            raise NotInitialized("Call initialize() before using the session")

    def protocol(self, name: str | None = None) -> LendingProtocol:
        """The named adapter, or the first configured one."""
        self._ensure_initialized()
        if name is None:
            if not self._protocols:
                raise NotInitialized("No lending protocol configured")
            return next(iter(self._protocols.values()))
        adapter = self._protocols.get(name)
        if adapter is None:
            raise InvalidParameters(f"Protocol '{name}' is not configured")
        return adapter

    def resolve_asset(self, asset: str) -> AssetInfo:
        return self._registry.resolve(asset)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_position(self, protocol: str | None = None) -> PositionInfo | None:
        return await self.protocol(protocol).get_position(self._address)

    async def has_position(self, protocol: str | None = None) -> bool:
        return await self.protocol(protocol).has_position(self._address)

    async def get_account_portfolio(self, protocol: str | None = None) -> AccountPortfolio:
        return await self.protocol(protocol).get_account_portfolio(self._address)

    async def get_market_assets(self, protocol: str | None = None) -> list[MarketAsset]:
        return await self.protocol(protocol).get_market_assets()

    async def get_aggregated_markets(self) -> dict[str, list[MarketAsset]]:
        """Market assets of every protocol; a failing protocol maps to []."""
        self._ensure_initialized()
        names = list(self._protocols)
        results = await asyncio.gather(
            *(self._protocols[n].get_market_assets() for n in names),
            return_exceptions=True,
        )
        markets: dict[str, list[MarketAsset]] = {}
        for name, result in zip(names, results):
            if isinstance(result, Exception):
                logger.warning("Markets unavailable for %s: %s", name, result)
                markets[name] = []
            else:
                markets[name] = result
        return markets

    async def get_aggregated_portfolio(self) -> list[AccountPortfolio]:
        """Portfolio on every protocol; failures become empty portfolios with a warning."""
        self._ensure_initialized()
        names = list(self._protocols)
        results = await asyncio.gather(
            *(self._protocols[n].get_account_portfolio(self._address) for n in names),
            return_exceptions=True,
        )
        portfolios: list[AccountPortfolio] = []
        for name, result in zip(names, results):
            if isinstance(result, Exception):
                logger.warning("Portfolio unavailable for %s: %s", name, result)
                portfolios.append(
                    AccountPortfolio(
                        protocol=name,
                        address=self._address,
                        warnings=(f"Failed to load {name} portfolio: {result}",),
                    )
                )
            else:
                portfolios.append(result)
        return portfolios

    async def get_max_borrowable(self, asset: str, protocol: str | None = None) -> str:
        info = self.resolve_asset(asset)
        return await self.protocol(protocol).get_max_borrowable(self._address, info.coin_type)

    async def get_max_withdrawable(self, asset: str, protocol: str | None = None) -> str:
        info = self.resolve_asset(asset)
        return await self.protocol(protocol).get_max_withdrawable(self._address, info.coin_type)

    async def get_leverage_limits(self, asset: str, protocol: str | None = None) -> LeverageLimits:
        info = self.resolve_asset(asset)
        reserve = await self.protocol(protocol).get_reserve(info.coin_type)
        return calculate_leverage_limits(reserve.close_ltv)

    async def get_token_price(self, asset: str) -> float:
        return await self._oracle.price_of(asset)

    # ------------------------------------------------------------------
    # Plans
    # ------------------------------------------------------------------

    async def preview_leverage(
        self, asset: str, amount: str, multiplier: float, protocol: str | None = None
    ) -> LeveragePreview:
        """Preview ``multiplier``× leverage on ``amount`` (human units) of ``asset``."""
        adapter = self.protocol(protocol)
        info = self.resolve_asset(asset)
        return await self._leverage.preview(
            adapter, info, _parse_amount(amount, info.decimals), multiplier
        )

    async def build_leverage_transaction(
        self, asset: str, amount: str, multiplier: float, protocol: str | None = None
    ) -> TransactionPlan:
        """Unsubmitted leverage plan, for signing elsewhere."""
        adapter = self.protocol(protocol)
        info = self.resolve_asset(asset)
        return await self._leverage.build(
            adapter,
            self._address,
            info,
            _parse_amount(amount, info.decimals),
            multiplier,
            self._config.strategy.gas_budget,
        )

    async def build_deleverage_transaction(self, protocol: str | None = None) -> TransactionPlan:
        """Unsubmitted deleverage plan, for signing elsewhere."""
        adapter = self.protocol(protocol)
        return await self._deleverage.build(
            adapter, self._address, self._config.strategy.gas_budget
        )

    async def calculate_deleverage_estimate(
        self, protocol: str | None = None
    ) -> DeleverageEstimate:
        return await self._deleverage.estimate(self.protocol(protocol), self._address)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def _submit(self, plan: TransactionPlan, dry_run: bool) -> ExecutionResult:
        if self._transport is None:
            raise NotInitialized("No transport bound to this session")

        if dry_run:
            result = await self._transport.simulate(plan)
            if not result.success:
                raise SimulationFailed(result.error or "Dry run failed")
            logger.info("Dry run succeeded (gas %s)", result.gas_used)
            return result

        if self._signer is None:
            raise NotInitialized("Execution needs a signer; initialize with a Signer")
        result = await self._transport.execute(plan, self._signer)
        if not result.success:
            raise ExecutionFailed(result.error or "Transaction failed", result.digest)
        logger.info("Transaction %s executed", result.digest)
        return result

    async def _run_strategy(
        self,
        label: str,
        build: Callable[[], Awaitable[TransactionPlan]],
        adapter: LendingProtocol,
        dry_run: bool,
    ) -> StrategyResult:
        try:
            plan = await build()
            result = await self._submit(plan, dry_run)
        except LeverageKitError as e:
            logger.error("%s on %s failed: %s", label, adapter.name, e)
            return StrategyResult(
                success=False, tx_digest=getattr(e, "digest", None), error=str(e)
            )

        position = None
        if not dry_run:
            try:
                position = await adapter.get_position(self._address)
            except (LeverageKitError, RuntimeError) as e:
                logger.warning("Could not refresh position after %s: %s", label, e)

        return StrategyResult(
            success=True,
            tx_digest=result.digest,
            gas_used=result.gas_used,
            position=position,
        )

    async def leverage(
        self,
        asset: str,
        amount: str,
        multiplier: float,
        protocol: str | None = None,
        dry_run: bool = False,
    ) -> StrategyResult:
        """Build the leverage plan, then dry-run or execute it."""
        adapter = self.protocol(protocol)
        return await self._run_strategy(
            "Leverage",
            lambda: self.build_leverage_transaction(asset, amount, multiplier, protocol),
            adapter,
            dry_run,
        )

    async def deleverage(
        self, protocol: str | None = None, dry_run: bool = False
    ) -> StrategyResult:
        """Build the deleverage plan, then dry-run or execute it."""
        adapter = self.protocol(protocol)
        return await self._run_strategy(
            "Deleverage",
            lambda: self.build_deleverage_transaction(protocol),
            adapter,
            dry_run,
        )
