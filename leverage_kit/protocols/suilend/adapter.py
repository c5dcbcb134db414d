"""Suilend protocol adapter — on-chain reads and Move-call plan primitives."""
from __future__ import annotations

import asyncio
import logging

from ...assets import AssetRegistry
from ...config import SuilendConfig
from ...errors import NoObligation, UnknownReserve
from ...interfaces.chain import ChainClient
from ...models import ObligationSnapshot, ReserveSnapshot
from ...plan import CLOCK, Handle, ObjectRef, Pure, TransactionPlan
from ...units import U64_MAX, WAD, asset_symbol
from ..base import AccountRef, LendingProtocolBase, MarketState
from . import parser

logger = logging.getLogger(__name__)


class SuilendAdapter(LendingProtocolBase):
    """Suilend main lending market.

    Debt accrues on a WAD-scaled cumulative borrow rate and deposits are
    held as cTokens. ``repay`` takes only what is owed from the coin it is
    given and leaves the remainder in place.
    """

    name = "suilend"
    consumes_repayment_coin = False

    def __init__(
        self,
        chain_client: ChainClient,
        config: SuilendConfig,
        registry: AssetRegistry,
        withdraw_safety_factor: float = 0.95,
        funding_symbol: str = "USDC",
    ) -> None:
        super().__init__(registry, withdraw_safety_factor, funding_symbol)
        self._client = chain_client
        self._config = config
        self._price_info = {k.upper(): v for k, v in config.price_info_objects.items()}

    @property
    def _market_type_args(self) -> list[str]:
        return [self._config.lending_market_type]

    def _target(self, function: str) -> str:
        return f"{self._config.package_id}::lending_market::{function}"

    # -- reads ---------------------------------------------------------------

    async def _reward_metadata(
        self, coin_types: set[str]
    ) -> tuple[dict[str, tuple[str, int]], list[str]]:
        """(symbol, decimals) per reward coin; unknown coins hit the chain."""
        metadata: dict[str, tuple[str, int]] = {}
        missing: list[str] = []
        for coin_type in coin_types:
            known = self._registry.by_coin_type(coin_type)
            if known is not None:
                metadata[coin_type] = (known.symbol, known.decimals)
            else:
                missing.append(coin_type)

        warnings: list[str] = []
        if not missing:
            return metadata, warnings

        results = await asyncio.gather(
            *(self._client.get_coin_metadata(ct) for ct in missing),
            return_exceptions=True,
        )
        for coin_type, result in zip(missing, results):
            if isinstance(result, Exception) or not result or "decimals" not in result:
                logger.warning("No coin metadata for reward %s; assuming 9 decimals", coin_type)
                warnings.append(f"Missing metadata for reward coin {coin_type}")
                metadata[coin_type] = (asset_symbol(coin_type), 9)
                continue
            metadata[coin_type] = (
                result.get("symbol") or asset_symbol(coin_type),
                int(result["decimals"]),
            )
        return metadata, warnings

    async def load_market(self) -> MarketState:
        self._ensure_initialized()
        market = await self._client.get_object(self._config.lending_market_id)
        content = market.get("data", {}).get("content", {}).get("fields", {})
        raw_reserves = [parser.fields(r) for r in content.get("reserves", [])]
        if not raw_reserves:
            raise UnknownReserve(
                f"Suilend lending market {self._config.lending_market_id} has no reserves"
            )

        metadata, warnings = await self._reward_metadata(parser.reward_coin_types(raw_reserves))

        reserves: dict[str, ReserveSnapshot] = {}
        for raw in raw_reserves:
            coin_type = parser.type_name(raw.get("coin_type", ""))
            reserve = parser.parse_reserve(raw, self._registry.symbol(coin_type), metadata)
            reserves[reserve.coin_type] = reserve

        logger.debug("Loaded %d Suilend reserves", len(reserves))
        return MarketState(protocol=self.name, reserves=reserves, warnings=tuple(warnings))

    async def fetch_obligation(
        self, address: str, market: MarketState
    ) -> ObligationSnapshot | None:
        owned = await self._client.get_owned_objects(address)
        found = parser.find_obligation_cap(owned, self._config.lending_market_type)
        if found is None:
            logger.debug("No Suilend obligation for %s", address)
            return None

        cap_id, obligation_id = found
        details = await self._client.get_object(obligation_id)
        content = details.get("data", {}).get("content", {}).get("fields", {})
        if not content:
            logger.warning("Obligation %s could not be read", obligation_id)
            return None

        return parser.parse_obligation(content, market.reserves, address, cap_id)

    # -- plan primitives -----------------------------------------------------

    def open_account(
        self,
        plan: TransactionPlan,
        address: str,
        obligation: ObligationSnapshot | None,
        create: bool = False,
    ) -> AccountRef:
        if obligation is not None and obligation.account_cap:
            return AccountRef(
                cap=ObjectRef(obligation.account_cap),
                obligation_id=obligation.obligation_id,
            )
        if not create:
            raise NoObligation(f"{address} has no Suilend obligation")

        logger.info("Creating Suilend obligation for %s", address)
        cap = plan.move_call(
            self._target("create_obligation"),
            [ObjectRef(self._config.lending_market_id)],
            self._market_type_args,
        )
        return AccountRef(cap=cap, created=True)

    def _price_info_object(self, reserve: ReserveSnapshot) -> str:
        object_id = self._price_info.get(reserve.symbol.upper())
        if not object_id:
            raise UnknownReserve(f"No Pyth price object configured for {reserve.symbol}")
        return object_id

    def refresh_oracles(
        self, plan: TransactionPlan, account: AccountRef, reserves: list[ReserveSnapshot]
    ) -> None:
        seen: set[str] = set()
        for reserve in reserves:
            if reserve.coin_type in seen:
                continue
            seen.add(reserve.coin_type)
            plan.move_call(
                self._target("refresh_reserve_price"),
                [
                    ObjectRef(self._config.lending_market_id),
                    Pure(reserve.reserve_index),
                    CLOCK,
                    ObjectRef(self._price_info_object(reserve)),
                ],
                self._market_type_args,
            )

    def deposit(
        self, plan: TransactionPlan, account: AccountRef, reserve: ReserveSnapshot, coin: Handle
    ) -> None:
        type_args = [self._config.lending_market_type, reserve.coin_type]
        ctokens = plan.move_call(
            self._target("deposit_liquidity_and_mint_ctokens"),
            [ObjectRef(self._config.lending_market_id), Pure(reserve.reserve_index), CLOCK, coin],
            type_args,
            consumes=[coin],
        )
        plan.move_call(
            self._target("deposit_ctokens_into_obligation"),
            [
                ObjectRef(self._config.lending_market_id),
                Pure(reserve.reserve_index),
                account.cap,
                CLOCK,
                ctokens,
            ],
            type_args,
            consumes=[ctokens],
        )

    def withdraw(
        self,
        plan: TransactionPlan,
        account: AccountRef,
        reserve: ReserveSnapshot,
        amount: int | None = None,
    ) -> Handle:
        # u64::MAX asks the market for every cToken held.
        ctoken_amount = U64_MAX if amount is None else amount * WAD // reserve.exchange_rate
        type_args = [self._config.lending_market_type, reserve.coin_type]
        ctokens = plan.move_call(
            self._target("withdraw_ctokens"),
            [
                ObjectRef(self._config.lending_market_id),
                Pure(reserve.reserve_index),
                account.cap,
                CLOCK,
                Pure(ctoken_amount),
            ],
            type_args,
        )
        return plan.move_call(
            self._target("redeem_ctokens_and_withdraw_liquidity"),
            [
                ObjectRef(self._config.lending_market_id),
                Pure(reserve.reserve_index),
                CLOCK,
                ctokens,
                Pure(None),
            ],
            type_args,
            consumes=[ctokens],
        )

    def borrow(
        self, plan: TransactionPlan, account: AccountRef, reserve: ReserveSnapshot, amount: int
    ) -> Handle:
        return plan.move_call(
            self._target("borrow"),
            [
                ObjectRef(self._config.lending_market_id),
                Pure(reserve.reserve_index),
                account.cap,
                CLOCK,
                Pure(amount),
            ],
            [self._config.lending_market_type, reserve.coin_type],
        )

    def repay(
        self, plan: TransactionPlan, account: AccountRef, reserve: ReserveSnapshot, coin: Handle
    ) -> None:
        if not account.obligation_id:
            raise NoObligation("Cannot repay into an obligation created in the same plan")
        plan.move_call(
            self._target("repay"),
            [
                ObjectRef(self._config.lending_market_id),
                Pure(reserve.reserve_index),
                Pure(account.obligation_id),
                CLOCK,
                coin,
            ],
            [self._config.lending_market_type, reserve.coin_type],
        )

