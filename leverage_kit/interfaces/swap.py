"""Swap router protocol."""
from typing import Protocol

from ..models import SwapQuote
from ..plan import Handle, TransactionPlan


class SwapRouter(Protocol):
    """Quotes over the network, swaps as a plan step."""

    slippage_bps: int

    async def quote(self, amount_in: int, coin_in: str, coin_out: str) -> list[SwapQuote]: ...

    async def best_quote(self, amount_in: int, coin_in: str, coin_out: str) -> SwapQuote: ...

    def swap(
        self,
        plan: TransactionPlan,
        quote: SwapQuote,
        coin_in: Handle,
        slippage_bps: int | None = None,
    ) -> Handle: ...
