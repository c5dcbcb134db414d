"""SUI RPC client with fallback support."""
import logging
import ssl
from typing import Any

import aiohttp
import certifi

from ...config import ChainConfig

logger = logging.getLogger(__name__)


class SuiClient:
    """SUI blockchain RPC client with automatic endpoint fallback."""

    def __init__(self, config: ChainConfig) -> None:
        self.endpoints = list(config.rpc_endpoints)
        self.timeout = config.rpc_timeout
        self.current_rpc_index = 0

    async def rpc_call(self, method: str, params: list[Any]) -> Any:
        """Make RPC call with fallback to alternative endpoints."""
        payload = {"jsonrpc": "2.0", "id": 1, "method": method, "params": params}

        ssl_context = ssl.create_default_context(cafile=certifi.where())

        last_error: Exception | None = None
        for attempt in range(len(self.endpoints)):
            rpc_index = (self.current_rpc_index + attempt) % len(self.endpoints)
            rpc_url = self.endpoints[rpc_index]

            try:
                connector = aiohttp.TCPConnector(ssl=ssl_context)
                async with aiohttp.ClientSession(connector=connector) as session:
                    async with session.post(
                        rpc_url,
                        json=payload,
                        timeout=aiohttp.ClientTimeout(total=self.timeout),
                    ) as response:
                        result = await response.json()
                        if "error" in result:
                            raise RuntimeError(f"RPC Error: {result['error']}")

                        if rpc_index != self.current_rpc_index:
                            logger.info("Switched to RPC endpoint: %s", rpc_url)
                            self.current_rpc_index = rpc_index

                        return result.get("result", {})
            except Exception as e:
                last_error = e
                logger.warning("RPC endpoint %s failed: %s", rpc_url, e)
                if attempt < len(self.endpoints) - 1:
                    logger.info("Trying next endpoint...")
                continue

        raise RuntimeError(f"All RPC endpoints failed. Last error: {last_error}")

    # -- reads ---------------------------------------------------------------

    async def get_owned_objects(self, wallet_address: str) -> list[dict[str, Any]]:
        """Get all objects owned by the wallet (paginated)."""
        all_objects: list[dict[str, Any]] = []
        cursor = None

        while True:
            result = await self.rpc_call(
                "suix_getOwnedObjects",
                [
                    wallet_address,
                    {
                        "filter": None,
                        "options": {"showType": True, "showContent": True},
                    },
                    cursor,
                    50,
                ],
            )

            all_objects.extend(result.get("data", []))

            cursor = result.get("nextCursor")
            if not result.get("hasNextPage", False) or not cursor:
                break

        return all_objects

    async def get_object(self, object_id: str) -> dict[str, Any]:
        """Get an object with its type and Move content."""
        return await self.rpc_call(
            "sui_getObject",
            [object_id, {"showType": True, "showContent": True, "showOwner": True}],
        )

    async def get_dynamic_field_object(
        self, parent_id: str, key_type: str, key_value: str
    ) -> dict[str, Any]:
        """Get a specific dynamic field object."""
        result = await self.rpc_call(
            "suix_getDynamicFieldObject",
            [parent_id, {"type": key_type, "value": key_value}],
        )
        return result.get("data", {})

    async def get_coin_metadata(self, coin_type: str) -> dict[str, Any]:
        """Decimals, symbol and name of a coin type; {} when unavailable."""
        try:
            return await self.rpc_call("suix_getCoinMetadata", [coin_type]) or {}
        except RuntimeError as e:
            logger.warning("Error fetching coin metadata for %s: %s", coin_type, e)
            return {}

    # -- transactions --------------------------------------------------------

    async def dry_run_transaction(self, tx_bytes: str) -> dict[str, Any]:
        return await self.rpc_call("sui_dryRunTransactionBlock", [tx_bytes])

    async def execute_transaction(
        self, tx_bytes: str, signatures: list[str]
    ) -> dict[str, Any]:
        return await self.rpc_call(
            "sui_executeTransactionBlock",
            [
                tx_bytes,
                signatures,
                {"showEffects": True},
                "WaitForLocalExecution",
            ],
        )
