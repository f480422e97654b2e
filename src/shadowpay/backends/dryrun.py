"""Dry-run backend for development and testing (no real transactions)."""

import asyncio
import hashlib
import logging
import os
import secrets
from typing import Optional

import base58

from shadowpay.backends.base import BackendError, OperationResult, PrivacyBackend
from shadowpay.identity import RelayerIdentity

logger = logging.getLogger(__name__)

# Simulated pool fees
WITHDRAW_FEE_BPS = 35
NETWORK_FEE_LAMPORTS = 5000

# Exit status used by the "crash" fault
CRASH_EXIT_CODE = 70

FAULTS = ("error", "crash", "hang")


class DryRunBackend(PrivacyBackend):
    """Simulated backend producing random signatures.

    ``fault`` makes every operation misbehave in a chosen way, to exercise
    the supervisor's failure paths:
    - error: raise a BackendError (reported failure)
    - crash: kill the process without reporting (abnormal termination)
    - hang: never return (timeout)
    """

    def __init__(
        self,
        identity: RelayerIdentity,
        rpc_url: str,
        latency_ms: int = 0,
        fault: Optional[str] = None,
    ):
        super().__init__(identity, rpc_url)
        if fault and fault not in FAULTS:
            raise ValueError(f"Unknown dryrun fault: {fault}")
        self.latency_ms = latency_ms
        self.fault = fault

    @property
    def name(self) -> str:
        return "dryrun"

    async def _simulate(self, operation: str) -> None:
        if self.latency_ms:
            await asyncio.sleep(self.latency_ms / 1000)

        if self.fault == "error":
            raise BackendError(f"Simulated {operation} failure", reason="simulated_error")
        if self.fault == "crash":
            logger.error(f"Simulated crash during {operation}")
            os._exit(CRASH_EXIT_CODE)
        if self.fault == "hang":
            await asyncio.Event().wait()

    def _fake_signature(self) -> str:
        return base58.b58encode(secrets.token_bytes(64)).decode()

    async def deposit(self, amount: int, referrer: Optional[str] = None) -> OperationResult:
        await self._simulate("deposit")
        signature = self._fake_signature()
        commitment = hashlib.sha256(
            f"{self.identity.address}:{amount}:{signature}".encode()
        ).hexdigest()
        logger.info(f"[dryrun] deposit {amount} lamports -> {signature[:16]}...")
        return OperationResult(reference=signature, amount=amount, commitment=commitment)

    async def withdraw(
        self,
        amount: int,
        recipient: str,
        referrer: Optional[str] = None,
    ) -> OperationResult:
        await self._simulate("withdraw")
        signature = self._fake_signature()
        fee = amount * WITHDRAW_FEE_BPS // 10_000 + NETWORK_FEE_LAMPORTS
        logger.info(f"[dryrun] withdraw {amount} lamports to {recipient} -> {signature[:16]}...")
        return OperationResult(
            reference=signature,
            amount=amount,
            recipient=recipient,
            fee=fee,
        )
