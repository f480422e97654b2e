"""Error taxonomy shared by the relay gateway and the public tier.

Every caller-visible failure carries a stable ``code`` and a human-readable
message. A timeout is never reported with the same code as a definitive
failure: after a timeout the external transaction may still have landed.
"""

from enum import Enum
from typing import Any, Optional


class ErrorCode(str, Enum):
    """Stable error classifications returned to callers."""

    VALIDATION = "validation_error"
    AUTHENTICATION = "authentication_error"
    TIMEOUT = "timeout"
    EXECUTION_FAILED = "execution_failed"
    ABNORMAL_TERMINATION = "abnormal_termination"
    TRANSPORT = "transport_error"


class ConfigurationError(RuntimeError):
    """Raised when the service cannot start with the given configuration."""

    pass


class RelayError(Exception):
    """Base class for classified, caller-visible errors."""

    code: ErrorCode = ErrorCode.EXECUTION_FAILED
    status_code: int = 500

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Render as the JSON error body."""
        body = {"error": self.message, "code": self.code.value}
        body.update(self.details)
        return body


class InvalidRequestError(RelayError):
    """Malformed, missing or out-of-range input. Safe to retry after fixing input."""

    code = ErrorCode.VALIDATION
    status_code = 400


class AuthenticationError(RelayError):
    """Credential missing or not matching the configured secret."""

    code = ErrorCode.AUTHENTICATION
    status_code = 401


class JobTimeoutError(RelayError):
    """Job exceeded its deadline; the external operation's final state is unknown."""

    code = ErrorCode.TIMEOUT
    status_code = 504


class ExecutionFailedError(RelayError):
    """The privacy operation itself reported an error."""

    code = ErrorCode.EXECUTION_FAILED
    status_code = 502


class AbnormalTerminationError(RelayError):
    """The execution context died without reporting an outcome."""

    code = ErrorCode.ABNORMAL_TERMINATION
    status_code = 500


class TransportError(RelayError):
    """The forwarding client could not reach or parse the relay gateway."""

    code = ErrorCode.TRANSPORT
    status_code = 502
