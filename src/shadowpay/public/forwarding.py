"""Forwarding client used by the lightweight public tier.

Delegates deposit/withdraw to the relay gateway instead of doing the heavy
work in-process. No retries and no read timeout; the gateway's supervisor
bounds every job.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional, Union

import httpx

from shadowpay.config import AUTH_HEADER, Settings
from shadowpay.errors import TransportError
from shadowpay.jobs.models import OperationKind

logger = logging.getLogger(__name__)

CONNECT_TIMEOUT = 10.0


@dataclass
class ForwardedResponse:
    """Gateway response relayed verbatim."""

    status_code: int
    body: dict[str, Any]

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


class ForwardingClient:
    """Proxy operation requests to the relay gateway."""

    def __init__(
        self,
        base_url: str,
        secret: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize client.

        Args:
            base_url: Relay gateway base URL
            secret: Shared credential sent as the x-auth header (if set)
            transport: Optional httpx transport (tests use ASGITransport)
        """
        self.base_url = base_url.rstrip("/")
        self.secret = secret
        self._transport = transport

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "ForwardingClient":
        return cls(settings.relayer_url, secret=settings.relayer_secret, transport=transport)

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.secret:
            headers[AUTH_HEADER] = self.secret
        return headers

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(None, connect=CONNECT_TIMEOUT),
            transport=self._transport,
        )

    async def _send(self, method: str, path: str, payload: Optional[dict] = None) -> ForwardedResponse:
        try:
            async with self._client() as client:
                response = await client.request(method, path, json=payload, headers=self._headers())
        except httpx.ConnectError as e:
            raise TransportError(
                f"Relayer unreachable at {self.base_url}: {e}",
                details={"reason": "connection_refused"},
            ) from e
        except httpx.HTTPError as e:
            raise TransportError(
                f"Relayer request failed: {e}",
                details={"reason": "request_failed"},
            ) from e

        try:
            body = response.json()
        except ValueError:
            body = None

        if not isinstance(body, dict):
            raise TransportError(
                f"Relayer returned a malformed body (HTTP {response.status_code})",
                details={"reason": "malformed_body", "upstream_status": response.status_code},
            )

        if response.is_success or "error" in body:
            # Gateway outcome or gateway-classified error: relay unchanged
            return ForwardedResponse(status_code=response.status_code, body=body)

        raise TransportError(
            f"Relayer returned HTTP {response.status_code}",
            details={"reason": "bad_status", "upstream_status": response.status_code},
        )

    async def forward(
        self,
        operation: Union[OperationKind, str],
        params: dict[str, Any],
    ) -> ForwardedResponse:
        """Send an operation to the relay gateway.

        Args:
            operation: deposit or withdraw
            params: Request body, passed through as-is

        Returns:
            The gateway's status and body, unmodified

        Raises:
            TransportError: If the gateway could not be reached or parsed
        """
        kind = OperationKind(operation)
        logger.info(f"Forwarding {kind.value} request to relayer {self.base_url}")
        forwarded = await self._send("POST", f"/{kind.value}", params)

        if forwarded.ok:
            logger.info(f"Relayer {kind.value} succeeded: {forwarded.body.get('reference')}")
        else:
            logger.warning(
                f"Relayer {kind.value} failed ({forwarded.status_code}): "
                f"{forwarded.body.get('code')} {forwarded.body.get('error')}"
            )
        return forwarded

    async def relayer_health(self) -> ForwardedResponse:
        """Fetch the gateway's health report."""
        return await self._send("GET", "/health")
