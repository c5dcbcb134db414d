"""7k aggregator: quotes over HTTP, swaps as plan steps."""
from __future__ import annotations

import logging
import ssl
from typing import Any

import aiohttp
import certifi

from ..config import SwapConfig
from ..errors import NoRoute
from ..models import SwapQuote
from ..plan import Handle, TransactionPlan

logger = logging.getLogger(__name__)

PROVIDER = "7k"


def parse_quote(data: dict[str, Any], coin_in: str, coin_out: str, amount_in: int) -> SwapQuote | None:
    """Map a 7k quote response onto a SwapQuote; None when it has no output."""
    out_raw = data.get("returnAmountWithDecimal")
    if out_raw in (None, "", "0"):
        return None
    return SwapQuote(
        coin_in=coin_in,
        coin_out=coin_out,
        amount_in=int(data.get("swapAmountWithDecimal") or amount_in),
        amount_out=int(out_raw),
        provider=PROVIDER,
        route={"routes": data.get("routes") or [], "priceImpact": data.get("priceImpact")},
    )


def best_quote(quotes: list[SwapQuote]) -> SwapQuote:
    """The quote with the highest output.

    Raises:
        NoRoute: no quotes at all.
    """
    if not quotes:
        raise NoRoute("Swap router returned no quote")
    return max(quotes, key=lambda q: q.amount_out)


def min_amount_out(quote: SwapQuote, slippage_bps: int) -> int:
    return quote.amount_out * (10_000 - slippage_bps) // 10_000


class SevenKRouter:
    """Swap router backed by the 7k aggregator API."""

    def __init__(self, config: SwapConfig, timeout: int = 30) -> None:
        self._config = config
        self._timeout = timeout

    @property
    def slippage_bps(self) -> int:
        return self._config.slippage_bps

    async def quote(self, amount_in: int, coin_in: str, coin_out: str) -> list[SwapQuote]:
        """Quotes for swapping ``amount_in`` raw units; [] when unroutable."""
        if amount_in <= 0:
            return []
        params = {"amount": str(amount_in), "from": coin_in, "to": coin_out}
        url = f"{self._config.api_url.rstrip('/')}/quote"

        ssl_context = ssl.create_default_context(cafile=certifi.where())
        connector = aiohttp.TCPConnector(ssl=ssl_context)

        async with aiohttp.ClientSession(connector=connector) as session:
            async with session.get(
                url, params=params, timeout=aiohttp.ClientTimeout(total=self._timeout)
            ) as response:
                if response.status != 200:
                    logger.warning(
                        "7k quote %s -> %s failed: HTTP %s", coin_in, coin_out, response.status
                    )
                    return []
                data = await response.json()

        quote = parse_quote(data, coin_in, coin_out, amount_in)
        if quote is None:
            return []
        logger.debug(
            "7k quote: %d %s -> %d %s", quote.amount_in, coin_in, quote.amount_out, coin_out
        )
        return [quote]

    async def best_quote(self, amount_in: int, coin_in: str, coin_out: str) -> SwapQuote:
        quotes = await self.quote(amount_in, coin_in, coin_out)
        if not quotes:
            raise NoRoute(f"No swap route {coin_in} -> {coin_out} for {amount_in}")
        return best_quote(quotes)

    def swap(
        self,
        plan: TransactionPlan,
        quote: SwapQuote,
        coin_in: Handle,
        slippage_bps: int | None = None,
    ) -> Handle:
        """Add the swap; ``coin_in`` is consumed, the output coin returned."""
        slippage = self._config.slippage_bps if slippage_bps is None else slippage_bps
        logger.info(
            "Swap: %d %s -> >=%d %s",
            quote.amount_in, quote.coin_in, min_amount_out(quote, slippage), quote.coin_out,
        )
        return plan.swap(quote, coin_in, slippage)
