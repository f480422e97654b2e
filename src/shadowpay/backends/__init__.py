"""Privacy-pool backends (the opaque heavy operation)."""

from shadowpay.backends.base import BackendError, OperationResult, PrivacyBackend
from shadowpay.backends.dryrun import DryRunBackend
from shadowpay.backends.factory import create_backend
from shadowpay.backends.http import HttpPrivacyBackend

__all__ = [
    "BackendError",
    "DryRunBackend",
    "HttpPrivacyBackend",
    "OperationResult",
    "PrivacyBackend",
    "create_backend",
]
