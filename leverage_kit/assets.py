"""Known Sui assets and symbol → coin type resolution."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from .errors import UnknownAsset
from .units import normalize_asset_id


@dataclass(frozen=True)
class AssetInfo:
    symbol: str
    coin_type: str
    decimals: int


_KNOWN_ASSETS: tuple[AssetInfo, ...] = (
    AssetInfo("SUI", "0x2::sui::SUI", 9),
    AssetInfo(
        "USDC",
        "0xdba34672e30cb065b1f93e3ab55318768fd6fef66c15942c9f7cb846e2f900e7::usdc::USDC",
        6,
    ),
    AssetInfo(
        "USDT",
        "0x375f70cf2ae4c00bf37117d0c85a2c71545e6ee05c4a5c7d282cd66a4504b068::usdt::USDT",
        6,
    ),
    AssetInfo(
        "ETH",
        "0xd0e89b2af5e4910726fbcd8b8dd37bb79b29e5f83f7491bca830e94f7f226d29::eth::ETH",
        8,
    ),
    AssetInfo(
        "BTC",
        "0xaafb102dd0902f5055cadecd687fb5b71ca82ef0e0285d90afde828ec58ca96b::btc::BTC",
        8,
    ),
    AssetInfo(
        "LBTC",
        "0x3e8e9423d80e1774a7ca128fccd8bf5f1f7753be658c5e645929037f7c819040::lbtc::LBTC",
        8,
    ),
    AssetInfo(
        "xBTC",
        "0x876a4b7bce8aeaef60464c11f4026903e9afacab79b9b142686158aa86560b50::xbtc::XBTC",
        8,
    ),
    AssetInfo(
        "WAL",
        "0x356a26eb9e012a68958082340d4c4116e7f55615cf27affcff209cf0ae544f59::wal::WAL",
        9,
    ),
    AssetInfo(
        "DEEP",
        "0xdeeb7a4662eec9f2f3def03fb937a663dddaa2e215b8078a284d026b7946c270::deep::DEEP",
        6,
    ),
    AssetInfo(
        "wUSDC",
        "0x5d4b302506645c37ff133b98c4b50a5ae14841659738d6d733d59d0d217a93bf::coin::COIN",
        6,
    ),
    AssetInfo(
        "wUSDT",
        "0xc060006111016b8a020ad5b33834984a437aaa7d3c74c18e09a95d48aceab08c::coin::COIN",
        6,
    ),
    AssetInfo(
        "wETH",
        "0xaf8cd5edc19c4512f4259f0bee101a40d41ebed738ade5874359610ef8eeced5::coin::COIN",
        8,
    ),
)


class AssetRegistry:
    """Lookup table keyed by canonical coin type and by symbol."""

    def __init__(self, assets: Iterable[AssetInfo] = _KNOWN_ASSETS) -> None:
        self._by_type: dict[str, AssetInfo] = {}
        self._by_symbol: dict[str, AssetInfo] = {}
        for asset in assets:
            self.add(asset)

    def add(self, asset: AssetInfo) -> None:
        canonical = AssetInfo(
            symbol=asset.symbol,
            coin_type=normalize_asset_id(asset.coin_type),
            decimals=asset.decimals,
        )
        self._by_type[canonical.coin_type] = canonical
        self._by_symbol[canonical.symbol.upper()] = canonical

    def by_symbol(self, symbol: str) -> AssetInfo | None:
        return self._by_symbol.get(symbol.upper())

    def by_coin_type(self, coin_type: str) -> AssetInfo | None:
        return self._by_type.get(normalize_asset_id(coin_type))

    def resolve(self, asset: str) -> AssetInfo:
        """Resolve a symbol ("LBTC") or full coin type to a known asset.

        A coin type that is well formed but not in the registry is still
        accepted (decimals then default to 9, the SUI standard) so callers
        can address reserves this table does not list.
        """
        if "::" in asset:
            coin_type = normalize_asset_id(asset)
            known = self._by_type.get(coin_type)
            if known:
                return known
            if len(coin_type.split("::")[0]) != 66:
                raise UnknownAsset(f"Malformed coin type: {asset}")
            return AssetInfo(symbol=coin_type.split("::")[-1], coin_type=coin_type, decimals=9)

        known = self.by_symbol(asset)
        if known is None:
            raise UnknownAsset(f"Unknown asset symbol: {asset}")
        return known

    def decimals(self, coin_type: str, default: int = 9) -> int:
        known = self.by_coin_type(coin_type)
        return known.decimals if known else default

    def symbol(self, coin_type: str) -> str:
        known = self.by_coin_type(coin_type)
        return known.symbol if known else coin_type.split("::")[-1]

    def __iter__(self):
        return iter(self._by_type.values())

    def __len__(self) -> int:
        return len(self._by_type)
