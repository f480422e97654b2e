"""Backend factory used inside execution contexts."""

from shadowpay.backends.base import PrivacyBackend
from shadowpay.backends.dryrun import DryRunBackend
from shadowpay.backends.http import HttpPrivacyBackend
from shadowpay.identity import RelayerIdentity

BACKENDS = {
    "dryrun": DryRunBackend,
    "http": HttpPrivacyBackend,
}


def create_backend(
    name: str,
    identity: RelayerIdentity,
    rpc_url: str,
    **options,
) -> PrivacyBackend:
    """Create a new backend instance.

    Backends are never cached: every execution context builds its own so
    no client or session object is shared between jobs.

    Args:
        name: Backend name (dryrun, http)
        identity: Signing identity for this context
        rpc_url: Solana RPC endpoint
        **options: Backend-specific options

    Raises:
        ValueError: If the backend name is unknown
    """
    backend_cls = BACKENDS.get(name.lower())
    if backend_cls is None:
        raise ValueError(f"Unknown privacy backend: {name}")
    return backend_cls(identity, rpc_url, **options)