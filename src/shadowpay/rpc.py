"""Minimal Solana JSON-RPC client.

Only the read-only calls the gateway needs: the relayer balance for the
health endpoint and signature status for job status checks.
"""

import logging
from typing import Any, Optional

import httpx

logger = logging.getLogger(__name__)


class RpcError(Exception):
    """Raised when the RPC endpoint is unreachable or returns an error."""

    pass


class SolanaRpcClient:
    """Stateless JSON-RPC client; a fresh HTTP client is opened per call."""

    def __init__(
        self,
        rpc_url: str,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.rpc_url = rpc_url
        self.timeout = timeout
        self._transport = transport

    async def _call(self, method: str, params: list) -> Any:
        payload = {"jsonrpc": "2.0", "id": 1, "method": method, "params": params}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self.rpc_url, json=payload)
        except httpx.HTTPError as e:
            raise RpcError(f"{method} failed: {e}") from e

        if response.status_code != 200:
            raise RpcError(f"{method} returned HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            raise RpcError(f"{method} returned invalid JSON") from e

        if not isinstance(data, dict):
            raise RpcError(f"{method} returned a non-object response")

        if "error" in data:
            error = data["error"]
            if isinstance(error, dict):
                error = error.get("message", str(error))
            raise RpcError(f"{method}: {error}")

        return data.get("result")

    async def get_balance(self, address: str) -> int:
        """Get account balance in lamports."""
        result = await self._call("getBalance", [address])
        value = result.get("value") if isinstance(result, dict) else None
        if isinstance(value, bool) or not isinstance(value, int):
            raise RpcError("getBalance: unexpected response shape")
        return value

    async def get_signature_status(self, signature: str) -> Optional[dict]:
        """Get confirmation status of a transaction signature.

        Returns:
            Status dict (``confirmationStatus``, ``err``, ``slot``) or None
            if the cluster does not know the signature.
        """
        result = await self._call(
            "getSignatureStatuses",
            [[signature], {"searchTransactionHistory": True}],
        )
        if result is None:
            return None
        if not isinstance(result, dict) or not isinstance(result.get("value"), list):
            raise RpcError("getSignatureStatuses: unexpected response shape")
        values = result["value"] or [None]
        status = values[0]
        if status is not None and not isinstance(status, dict):
            raise RpcError("getSignatureStatuses: unexpected status entry")
        return status
