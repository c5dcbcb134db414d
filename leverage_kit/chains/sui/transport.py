"""Transport over the SUI JSON-RPC client: dry run and execution."""
from __future__ import annotations

import logging
from typing import Any

from ...interfaces.transport import Signer, TransactionEncoder
from ...models import ExecutionResult
from ...plan import TransactionPlan
from .client import SuiClient

logger = logging.getLogger(__name__)


def gas_used(effects: dict[str, Any]) -> int | None:
    """Net gas: computation + storage − storage rebate."""
    summary = effects.get("gasUsed")
    if not summary:
        return None
    return (
        int(summary.get("computationCost", 0))
        + int(summary.get("storageCost", 0))
        - int(summary.get("storageRebate", 0))
    )


def _status(effects: dict[str, Any]) -> tuple[bool, str | None]:
    status = effects.get("status", {})
    if status.get("status") == "success":
        return True, None
    return False, status.get("error") or "unknown failure"


class SuiTransport:
    """Serializes plans with an external encoder and sends them over RPC."""

    def __init__(self, client: SuiClient, encoder: TransactionEncoder) -> None:
        self._client = client
        self._encoder = encoder

    async def simulate(self, plan: TransactionPlan) -> ExecutionResult:
        tx_bytes = self._encoder.encode(plan)
        try:
            result = await self._client.dry_run_transaction(tx_bytes)
        except RuntimeError as e:
            logger.error("Dry run failed: %s", e)
            return ExecutionResult(success=False, error=str(e))

        effects = result.get("effects", {})
        ok, error = _status(effects)
        logger.info("Dry run %s (gas=%s)", "succeeded" if ok else "failed", gas_used(effects))
        return ExecutionResult(success=ok, gas_used=gas_used(effects), error=error)

    async def execute(self, plan: TransactionPlan, signer: Signer) -> ExecutionResult:
        tx_bytes = self._encoder.encode(plan)
        signature = signer.sign(tx_bytes)
        try:
            result = await self._client.execute_transaction(tx_bytes, [signature])
        except RuntimeError as e:
            logger.error("Execution failed: %s", e)
            return ExecutionResult(success=False, error=str(e))

        digest = result.get("digest")
        effects = result.get("effects", {})
        ok, error = _status(effects)
        logger.info("Transaction %s: %s", digest, "success" if ok else error)
        return ExecutionResult(
            success=ok, digest=digest, gas_used=gas_used(effects), error=error
        )
