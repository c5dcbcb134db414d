"""Transport protocols — simulating, signing and submitting plans."""
from typing import Protocol

from ..models import ExecutionResult
from ..plan import TransactionPlan


class TransactionEncoder(Protocol):
    """Turns a plan into base64 transaction bytes ready for signing."""

    def encode(self, plan: TransactionPlan) -> str: ...


class Signer(Protocol):
    """Holds the keys of one address. Keys never enter this package."""

    @property
    def address(self) -> str: ...

    def sign(self, tx_bytes: str) -> str: ...


class Transport(Protocol):
    """Dry-runs or submits a complete plan and reports the final status."""

    async def simulate(self, plan: TransactionPlan) -> ExecutionResult: ...

    async def execute(self, plan: TransactionPlan, signer: Signer) -> ExecutionResult: ...
