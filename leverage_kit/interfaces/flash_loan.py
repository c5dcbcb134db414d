"""Flash-loan provider protocol."""
from typing import Protocol

from ..plan import Handle, TransactionPlan


class FlashLoanProvider(Protocol):
    """Uncollateralized loans borrowed and repaid inside one plan."""

    def tag_for(self, symbol: str) -> str: ...

    def fee_for(self, amount: int) -> int: ...

    def borrow(
        self, plan: TransactionPlan, amount: int, asset_tag: str
    ) -> tuple[Handle, Handle]: ...

    def repay(
        self, plan: TransactionPlan, coin: Handle, receipt: Handle, asset_tag: str
    ) -> None: ...
