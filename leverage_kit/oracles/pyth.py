"""Pyth Network price oracle service."""
import logging
import ssl

import aiohttp
import certifi

from ..assets import AssetRegistry
from ..config import PythConfig
from ..errors import PriceUnavailable

logger = logging.getLogger(__name__)


class PythOracle:
    """Fetch USD prices from the Pyth Hermes endpoint.

    Feeds are configured per symbol; ``price_of`` also accepts a full coin
    type, which is mapped back to its symbol through the asset registry.
    """

    def __init__(self, config: PythConfig, registry: AssetRegistry | None = None) -> None:
        self.hermes_url = config.hermes_url
        self.price_feeds = {k.upper(): v for k, v in config.feeds.items()}
        self._registry = registry or AssetRegistry()

    async def fetch_prices(self, symbols: list[str] | None = None) -> dict[str, float]:
        """Fetch current prices from Pyth Network.

        Args:
            symbols: Optional list of symbols to fetch. If None, fetches all
                     configured feeds.
        """
        prices: dict[str, float] = {}

        feeds = self.price_feeds
        if symbols is not None:
            wanted = {s.upper() for s in symbols}
            feeds = {k: v for k, v in self.price_feeds.items() if k in wanted}

        feed_ids = sorted(set(feeds.values()))
        if not feed_ids:
            return prices

        params = [("ids[]", fid) for fid in feed_ids]

        ssl_context = ssl.create_default_context(cafile=certifi.where())
        connector = aiohttp.TCPConnector(ssl=ssl_context)

        try:
            async with aiohttp.ClientSession(connector=connector) as session:
                async with session.get(self.hermes_url, params=params) as response:
                    if response.status != 200:
                        logger.error(
                            "Error fetching prices from Pyth: HTTP %s", response.status
                        )
                        return prices

                    data = await response.json()
        except Exception as e:
            logger.error("Error fetching prices from Pyth: %s", e)
            return prices

        id_to_assets: dict[str, list[str]] = {}
        for asset, feed_id in feeds.items():
            id_to_assets.setdefault(_strip_0x(feed_id), []).append(asset)

        for item in data.get("parsed", []):
            price_data = item.get("price", {})
            price = int(price_data.get("price", 0)) * 10 ** int(price_data.get("expo", 0))
            for asset in id_to_assets.get(_strip_0x(item.get("id", "")), []):
                prices[asset] = price

        for asset, price in sorted(prices.items()):
            logger.debug("Pyth %s: $%.4f", asset, price)

        return prices

    async def price_of(self, asset: str) -> float:
        """USD price of one asset, by symbol or coin type.

        Raises:
            PriceUnavailable: no feed is configured or Hermes returned none.
        """
        symbol = self._registry.symbol(asset) if "::" in asset else asset
        prices = await self.fetch_prices([symbol])
        price = prices.get(symbol.upper())
        if not price:
            raise PriceUnavailable(f"No Pyth price for {asset}")
        return price


def _strip_0x(feed_id: str) -> str:
    return feed_id[2:] if feed_id.startswith("0x") else feed_id
