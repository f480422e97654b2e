"""Privacy backend base interface.

A backend performs the expensive, irreversible privacy-pool operation
(proof generation + transaction submission). It only ever runs inside an
execution context process and is built fresh for every job, so backend
instances are never shared between concurrent jobs.
"""

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from typing import Any, Optional

from shadowpay.identity import RelayerIdentity


class BackendError(Exception):
    """Raised by a backend when the privacy operation fails.

    ``reason`` is a short classification carried back to the gateway
    alongside the human-readable message.
    """

    def __init__(self, message: str, reason: str = "backend_error"):
        super().__init__(message)
        self.reason = reason


@dataclass
class OperationResult:
    """Result of a submitted privacy-pool transaction."""

    reference: str                  # Transaction signature
    amount: int                     # Lamports
    commitment: Optional[str] = None
    recipient: Optional[str] = None
    partial: bool = False           # Withdrawal filled only partially
    fee: int = 0                    # Lamports charged by the pool
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class PrivacyBackend(ABC):
    """Abstract base class for privacy-pool backends."""

    def __init__(self, identity: RelayerIdentity, rpc_url: str):
        """Initialize backend.

        Args:
            identity: Relayer signing identity owned by this backend
            rpc_url: Solana RPC endpoint
        """
        self.identity = identity
        self.rpc_url = rpc_url

    @property
    @abstractmethod
    def name(self) -> str:
        """Backend name."""
        raise NotImplementedError()

    @abstractmethod
    async def deposit(self, amount: int, referrer: Optional[str] = None) -> OperationResult:
        """Deposit lamports from the relayer into the privacy pool.

        Args:
            amount: Lamports to deposit
            referrer: Optional referral address

        Returns:
            OperationResult with the transaction signature
        """
        raise NotImplementedError()

    @abstractmethod
    async def withdraw(
        self,
        amount: int,
        recipient: str,
        referrer: Optional[str] = None,
    ) -> OperationResult:
        """Withdraw lamports from the privacy pool to ``recipient``.

        Args:
            amount: Lamports to withdraw
            recipient: Destination Solana address
            referrer: Optional referral address

        Returns:
            OperationResult with the transaction signature and fee
        """
        raise NotImplementedError()

    async def close(self) -> None:
        """Release any network clients held by the backend."""
        return None
