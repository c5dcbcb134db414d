"""Lending protocol — per-market reads and plan primitives."""
from typing import Protocol

from ..models import (
    AccountPortfolio,
    MarketAsset,
    ObligationSnapshot,
    PositionInfo,
    ReserveSnapshot,
)
from ..plan import Handle, TransactionPlan
from ..protocols.base import AccountRef, MarketState


class LendingProtocol(Protocol):
    """Uniform capability set over one money market.

    ``consumes_repayment_coin`` tells composers whether ``repay`` swallows
    the whole coin it is given (True) or leaves the unused remainder in it.
    """

    name: str
    consumes_repayment_coin: bool

    async def initialize(self) -> None: ...

    async def load_market(self) -> MarketState: ...

    async def fetch_obligation(
        self, address: str, market: MarketState
    ) -> ObligationSnapshot | None: ...

    async def get_obligation(self, address: str) -> ObligationSnapshot | None: ...

    async def get_market_assets(self) -> list[MarketAsset]: ...

    async def get_account_portfolio(self, address: str) -> AccountPortfolio: ...

    async def get_position(self, address: str) -> PositionInfo | None: ...

    async def has_position(self, address: str) -> bool: ...

    async def get_reserve(self, coin_type: str) -> ReserveSnapshot: ...

    async def get_max_borrowable(self, address: str, coin_type: str) -> str: ...

    async def get_max_withdrawable(self, address: str, coin_type: str) -> str: ...

    def open_account(
        self,
        plan: TransactionPlan,
        address: str,
        obligation: ObligationSnapshot | None,
        create: bool = False,
    ) -> AccountRef: ...

    def close_account(self, plan: TransactionPlan, account: AccountRef, address: str) -> None: ...

    def refresh_oracles(
        self, plan: TransactionPlan, account: AccountRef, reserves: list[ReserveSnapshot]
    ) -> None: ...

    def deposit(
        self, plan: TransactionPlan, account: AccountRef, reserve: ReserveSnapshot, coin: Handle
    ) -> None: ...

    def withdraw(
        self,
        plan: TransactionPlan,
        account: AccountRef,
        reserve: ReserveSnapshot,
        amount: int | None = None,
    ) -> Handle: ...

    def borrow(
        self, plan: TransactionPlan, account: AccountRef, reserve: ReserveSnapshot, amount: int
    ) -> Handle: ...

    def repay(
        self, plan: TransactionPlan, account: AccountRef, reserve: ReserveSnapshot, coin: Handle
    ) -> None: ...
