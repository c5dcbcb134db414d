"""Scallop flash loans as plan steps."""
from __future__ import annotations

import logging

from ..assets import AssetRegistry
from ..config import FlashLoanConfig
from ..errors import UnknownAsset
from ..plan import Handle, ObjectRef, TransactionPlan
from ..units import ceil_div

logger = logging.getLogger(__name__)


class ScallopFlashLoan:
    """Borrow and repay a Scallop flash loan inside one plan.

    Assets are addressed by Scallop's pool tag ("usdc", "sui", ...), mapped
    from symbols through ``flash_loan.asset_tags``.
    """

    def __init__(self, config: FlashLoanConfig, registry: AssetRegistry) -> None:
        self._config = config
        self._registry = registry
        self._tags = {symbol.upper(): tag for symbol, tag in config.asset_tags.items()}
        self._coin_types: dict[str, str] = {}
        for symbol, tag in config.asset_tags.items():
            asset = registry.by_symbol(symbol)
            if asset is not None:
                self._coin_types[tag] = asset.coin_type

    def tag_for(self, symbol: str) -> str:
        tag = self._tags.get(symbol.upper())
        if tag is None:
            raise UnknownAsset(f"No flash-loan pool for {symbol}")
        return tag

    def fee_for(self, amount: int) -> int:
        """Fee charged on ``amount``, rounded up."""
        return ceil_div(amount * self._config.fee_bps, 10_000)

    def _coin_type(self, asset_tag: str) -> str:
        coin_type = self._coin_types.get(asset_tag)
        if coin_type is None:
            raise UnknownAsset(f"Unknown flash-loan asset tag: {asset_tag}")
        return coin_type

    def borrow(
        self, plan: TransactionPlan, amount: int, asset_tag: str
    ) -> tuple[Handle, Handle]:
        """Returns (loan coin, receipt); the receipt must be repaid in-plan."""
        coin_type = self._coin_type(asset_tag)
        logger.info("Flash loan: borrow %d %s", amount, asset_tag)
        result = plan.move_call(
            f"{self._config.package_id}::flash_loan::borrow_flash_loan",
            [
                ObjectRef(self._config.version_id),
                ObjectRef(self._config.market_id),
                amount,
            ],
            [coin_type],
        )
        return result[0], result[1]

    def repay(
        self, plan: TransactionPlan, coin: Handle, receipt: Handle, asset_tag: str
    ) -> None:
        coin_type = self._coin_type(asset_tag)
        logger.info("Flash loan: repay %s", asset_tag)
        plan.move_call(
            f"{self._config.package_id}::flash_loan::repay_flash_loan",
            [
                ObjectRef(self._config.version_id),
                ObjectRef(self._config.market_id),
                coin,
                receipt,
            ],
            [coin_type],
            consumes=[coin, receipt],
        )
