"""HTTP privacy-pool backend.

Delegates proof generation and submission to an external privacy-pool API.
Each request body is signed with the relayer key so the API can attribute
the submission to this relayer without ever seeing the secret.
"""

import json
import logging
from typing import Any, Optional

import base58
import httpx

from shadowpay.backends.base import BackendError, OperationResult, PrivacyBackend
from shadowpay.identity import RelayerIdentity

logger = logging.getLogger(__name__)

# The supervisor owns the real deadline; this only bounds a dead socket.
REQUEST_TIMEOUT = 600.0


class HttpPrivacyBackend(PrivacyBackend):
    """Backend calling ``{api_url}/deposit`` and ``{api_url}/withdraw``."""

    def __init__(
        self,
        identity: RelayerIdentity,
        rpc_url: str,
        api_url: str,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(identity, rpc_url)
        if not api_url:
            raise ValueError("api_url is required for the http backend")
        self.api_url = api_url.rstrip("/")
        self._client = httpx.AsyncClient(timeout=REQUEST_TIMEOUT, transport=transport)

    @property
    def name(self) -> str:
        return "http"

    def _signed_headers(self, body: bytes) -> dict:
        return {
            "Content-Type": "application/json",
            "X-Relayer-Address": self.identity.address,
            "X-Relayer-Signature": base58.b58encode(self.identity.sign(body)).decode(),
        }

    async def _submit(self, operation: str, payload: dict[str, Any]) -> dict[str, Any]:
        payload = {k: v for k, v in payload.items() if v is not None}
        payload["rpcUrl"] = self.rpc_url
        body = json.dumps(payload, separators=(",", ":")).encode()

        try:
            response = await self._client.post(
                f"{self.api_url}/{operation}",
                content=body,
                headers=self._signed_headers(body),
            )
        except httpx.HTTPError as e:
            raise BackendError(f"Privacy API unreachable: {e}", reason="backend_unreachable") from e

        try:
            data = response.json()
        except ValueError:
            raise BackendError(
                f"Privacy API returned non-JSON response (HTTP {response.status_code})",
                reason="invalid_response",
            )

        if response.status_code >= 400:
            message = data.get("error") if isinstance(data, dict) else None
            raise BackendError(
                message or f"Privacy API {operation} failed (HTTP {response.status_code})",
                reason="backend_rejected",
            )

        if not isinstance(data, dict) or not data.get("tx"):
            raise BackendError(
                f"{operation.capitalize()} failed: no transaction signature",
                reason="invalid_result",
            )

        return data

    async def deposit(self, amount: int, referrer: Optional[str] = None) -> OperationResult:
        data = await self._submit("deposit", {"lamports": amount, "referrer": referrer})
        return OperationResult(
            reference=data["tx"],
            amount=amount,
            # The signature doubles as the commitment reference when none is returned
            commitment=data.get("commitment") or data["tx"],
        )

    async def withdraw(
        self,
        amount: int,
        recipient: str,
        referrer: Optional[str] = None,
    ) -> OperationResult:
        data = await self._submit(
            "withdraw",
            {"lamports": amount, "recipientAddress": recipient, "referrer": referrer},
        )
        return OperationResult(
            reference=data["tx"],
            amount=amount,
            recipient=recipient,
            partial=bool(data.get("isPartial", False)),
            fee=int(data.get("fee_in_lamports") or 0),
        )

    async def close(self) -> None:
        await self._client.aclose()
