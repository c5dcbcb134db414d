"""Navi protocol adapter — HTTP API reads and incentive_v3 plan primitives."""
from __future__ import annotations

import logging
import ssl
from typing import Any

import aiohttp
import certifi

from ...assets import AssetRegistry
from ...config import NaviConfig
from ...errors import NoObligation, UnknownReserve
from ...models import ObligationSnapshot, ReserveSnapshot
from ...plan import CLOCK, Handle, ObjectRef, Pure, TransactionPlan
from ...units import U64_MAX
from ..base import AccountRef, LendingProtocolBase, MarketState
from . import parser

logger = logging.getLogger(__name__)

SUI_SYSTEM_STATE = ObjectRef("0x5")

_POOLS_PATH = "/pools"
_LENDING_STATE_PATH = "/user/lendingState"


class NaviAdapter(LendingProtocolBase):
    """Navi lending pools.

    Positions are keyed by the sender's address. ``repay`` consumes the
    whole coin it is given, so callers must hand it a coin sized to the debt.
    """

    name = "navi"
    consumes_repayment_coin = True

    def __init__(
        self,
        config: NaviConfig,
        registry: AssetRegistry,
        withdraw_safety_factor: float = 0.95,
        funding_symbol: str = "USDC",
        timeout: int = 30,
    ) -> None:
        super().__init__(registry, withdraw_safety_factor, funding_symbol)
        self._config = config
        self._timeout = timeout
        self._pool_ids: dict[str, str] = {}
        self._feeds = {k.upper(): v for k, v in config.price_feed_objects.items()}

    async def initialize(self) -> None:
        """Load the pool list once; pool object ids are needed to build plans."""
        pools = await self._fetch_pools()
        self._pool_ids = self._index_pools(pools)
        logger.info("Navi initialized with %d pools", len(self._pool_ids))
        await super().initialize()

    def _index_pools(self, pools: list[dict[str, Any]]) -> dict[str, str]:
        ids: dict[str, str] = {}
        for pool in pools:
            coin_type = parser.pool_coin_type(pool)
            pool_id = parser.pool_object_id(pool)
            if coin_type and pool_id:
                ids[coin_type] = pool_id
        for symbol, pool_id in self._config.pools.items():
            asset = self._registry.by_symbol(symbol)
            if asset is not None:
                ids[asset.coin_type] = pool_id
        return ids

    async def _get_json(self, path: str, params: dict[str, str] | None = None) -> Any:
        url = f"{self._config.api_url.rstrip('/')}{path}"
        ssl_context = ssl.create_default_context(cafile=certifi.where())
        connector = aiohttp.TCPConnector(ssl=ssl_context)

        async with aiohttp.ClientSession(connector=connector) as session:
            async with session.get(
                url, params=params, timeout=aiohttp.ClientTimeout(total=self._timeout)
            ) as response:
                if response.status != 200:
                    raise RuntimeError(f"Navi API {path} returned HTTP {response.status}")
                body = await response.json()

        if isinstance(body, dict) and "data" in body:
            return body["data"]
        return body

    async def _fetch_pools(self) -> list[dict[str, Any]]:
        data = await self._get_json(_POOLS_PATH, {"env": "prod"})
        if isinstance(data, dict):
            return list(data.values())
        return list(data or [])

    # -- reads ---------------------------------------------------------------

    async def load_market(self) -> MarketState:
        self._ensure_initialized()
        pools = await self._fetch_pools()
        self._pool_ids.update(self._index_pools(pools))

        reserves: dict[str, ReserveSnapshot] = {}
        warnings: list[str] = []
        for pool in pools:
            reserve = parser.parse_pool(pool)
            if reserve is None:
                continue
            if reserve.price <= 0:
                warnings.append(f"No price for Navi pool {reserve.symbol}")
            reserves[reserve.coin_type] = reserve

        logger.debug("Loaded %d Navi pools", len(reserves))
        return MarketState(protocol=self.name, reserves=reserves, warnings=tuple(warnings))

    async def fetch_obligation(
        self, address: str, market: MarketState
    ) -> ObligationSnapshot | None:
        entries = await self._get_json(_LENDING_STATE_PATH, {"address": address, "env": "prod"})
        return parser.parse_lending_state(entries or [], market.reserves, address)

    # -- plan primitives -----------------------------------------------------

    def _pool(self, reserve: ReserveSnapshot) -> ObjectRef:
        pool_id = self._pool_ids.get(reserve.coin_type)
        if not pool_id:
            raise UnknownReserve(f"Navi pool not found for {reserve.coin_type}")
        return ObjectRef(pool_id)

    def _target(self, function: str) -> str:
        return f"{self._config.package_id}::incentive_v3::{function}"

    def open_account(
        self,
        plan: TransactionPlan,
        address: str,
        obligation: ObligationSnapshot | None,
        create: bool = False,
    ) -> AccountRef:
        if obligation is None and not create:
            raise NoObligation(f"{address} has no Navi position")
        return AccountRef(obligation_id=address)

    def refresh_oracles(
        self, plan: TransactionPlan, account: AccountRef, reserves: list[ReserveSnapshot]
    ) -> None:
        for reserve in reserves:
            feed = self._feeds.get(reserve.symbol.upper())
            if not feed:
                logger.debug("No Navi price feed configured for %s", reserve.symbol)
                continue
            plan.move_call(
                f"{self._config.oracle_package_id}::oracle_pro::update_single_price",
                [CLOCK, ObjectRef(self._config.price_oracle_id), ObjectRef(feed)],
            )

    def _coin_value(self, plan: TransactionPlan, coin: Handle, coin_type: str) -> Handle:
        return plan.move_call("0x2::coin::value", [coin], [coin_type])

    def deposit(
        self, plan: TransactionPlan, account: AccountRef, reserve: ReserveSnapshot, coin: Handle
    ) -> None:
        amount = self._coin_value(plan, coin, reserve.coin_type)
        plan.move_call(
            self._target("entry_deposit"),
            [
                CLOCK,
                ObjectRef(self._config.storage_id),
                self._pool(reserve),
                Pure(reserve.reserve_index),
                coin,
                amount,
                ObjectRef(self._config.incentive_v2_id),
                ObjectRef(self._config.incentive_v3_id),
            ],
            [reserve.coin_type],
            consumes=[coin],
        )

    def _balance_call(
        self, plan: TransactionPlan, function: str, reserve: ReserveSnapshot, amount: int
    ) -> Handle:
        balance = plan.move_call(
            self._target(function),
            [
                CLOCK,
                ObjectRef(self._config.price_oracle_id),
                ObjectRef(self._config.storage_id),
                self._pool(reserve),
                Pure(reserve.reserve_index),
                Pure(amount),
                ObjectRef(self._config.incentive_v2_id),
                ObjectRef(self._config.incentive_v3_id),
                SUI_SYSTEM_STATE,
            ],
            [reserve.coin_type],
        )
        return plan.move_call(
            "0x2::coin::from_balance", [balance], [reserve.coin_type], consumes=[balance]
        )

    def withdraw(
        self,
        plan: TransactionPlan,
        account: AccountRef,
        reserve: ReserveSnapshot,
        amount: int | None = None,
    ) -> Handle:
        return self._balance_call(
            plan, "withdraw_v2", reserve, U64_MAX if amount is None else amount
        )

    def borrow(
        self, plan: TransactionPlan, account: AccountRef, reserve: ReserveSnapshot, amount: int
    ) -> Handle:
        return self._balance_call(plan, "borrow_v2", reserve, amount)

    def repay(
        self, plan: TransactionPlan, account: AccountRef, reserve: ReserveSnapshot, coin: Handle
    ) -> None:
        amount = self._coin_value(plan, coin, reserve.coin_type)
        plan.move_call(
            self._target("entry_repay"),
            [
                CLOCK,
                ObjectRef(self._config.price_oracle_id),
                ObjectRef(self._config.storage_id),
                self._pool(reserve),
                Pure(reserve.reserve_index),
                coin,
                amount,
                ObjectRef(self._config.incentive_v2_id),
                ObjectRef(self._config.incentive_v3_id),
            ],
            [reserve.coin_type],
            consumes=[coin],
        )
