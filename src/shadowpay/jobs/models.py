"""Job and outcome models.

A Job is one deposit or withdraw request. It is owned by the supervisor for
its whole life and ends in exactly one terminal state.
"""

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from shadowpay.errors import (
    AbnormalTerminationError,
    ErrorCode,
    ExecutionFailedError,
    InvalidRequestError,
    JobTimeoutError,
    RelayError,
)
from shadowpay.identity import is_valid_address


class OperationKind(str, Enum):
    """Privacy-pool operation performed by a job."""

    DEPOSIT = "deposit"
    WITHDRAW = "withdraw"


class JobState(str, Enum):
    """Job lifecycle.

    IDLE -> SPAWNING -> RUNNING -> {SUCCEEDED, FAILED, TIMED_OUT, CRASHED} -> TERMINATED
    """

    IDLE = "idle"
    SPAWNING = "spawning"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CRASHED = "crashed"
    TERMINATED = "terminated"

    @property
    def is_outcome(self) -> bool:
        return self in OUTCOME_STATES


OUTCOME_STATES = frozenset(
    {JobState.SUCCEEDED, JobState.FAILED, JobState.TIMED_OUT, JobState.CRASHED}
)

ALLOWED_TRANSITIONS = {
    JobState.IDLE: {JobState.SPAWNING},
    # A spawn failure is reported as a crash without ever running
    JobState.SPAWNING: {JobState.RUNNING, JobState.CRASHED, JobState.TIMED_OUT},
    JobState.RUNNING: set(OUTCOME_STATES),
    JobState.SUCCEEDED: {JobState.TERMINATED},
    JobState.FAILED: {JobState.TERMINATED},
    JobState.TIMED_OUT: {JobState.TERMINATED},
    JobState.CRASHED: {JobState.TERMINATED},
    JobState.TERMINATED: set(),
}


@dataclass(frozen=True)
class Job:
    """One isolated unit of work.

    Fields are plain values so the job can be pickled across the process
    boundary without sharing any mutable object with the gateway.
    """

    kind: OperationKind
    amount: int
    recipient: Optional[str] = None
    referrer: Optional[str] = None
    deadline: Optional[float] = None    # Seconds; None = kind default
    metadata: dict[str, Any] = field(default_factory=dict)
    job_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def __post_init__(self):
        object.__setattr__(self, "kind", OperationKind(self.kind))
        object.__setattr__(self, "metadata", dict(self.metadata))

        if isinstance(self.amount, bool) or not isinstance(self.amount, int) or self.amount <= 0:
            raise InvalidRequestError("Invalid amount: must be a positive integer (lamports)")

        if self.kind == OperationKind.WITHDRAW and not self.recipient:
            raise InvalidRequestError("recipient required")

        if self.recipient is not None and not is_valid_address(self.recipient):
            raise InvalidRequestError("Invalid recipient address")

        if self.referrer is not None and not is_valid_address(self.referrer):
            raise InvalidRequestError("Invalid referrer address")

        if self.deadline is not None and self.deadline <= 0:
            raise InvalidRequestError("Deadline must be positive")

    def describe(self) -> str:
        if self.kind == OperationKind.WITHDRAW:
            return f"withdraw {self.amount} lamports to {self.recipient}"
        return f"deposit {self.amount} lamports"


@dataclass(frozen=True)
class Outcome:
    """Terminal result of a job, delivered to the caller exactly once."""

    job_id: str
    kind: OperationKind
    state: JobState
    result: Optional[dict[str, Any]] = None
    error: Optional[str] = None
    reason: Optional[str] = None          # Fine-grained failure reason from the context
    duration: float = 0.0                 # Seconds, measured by the supervisor
    context_duration: Optional[float] = None  # Seconds, measured inside the context
    exit_code: Optional[int] = None

    @property
    def ok(self) -> bool:
        return self.state == JobState.SUCCEEDED

    @property
    def error_code(self) -> Optional[ErrorCode]:
        return ERROR_CODES.get(self.state)

    def to_error(self) -> RelayError:
        """Build the classified error for a non-successful outcome."""
        details: dict[str, Any] = {"job_id": self.job_id}
        if self.reason:
            details["reason"] = self.reason

        if self.state == JobState.TIMED_OUT:
            # The transaction may have been submitted before the deadline hit
            details["settlement"] = "unknown"
            return JobTimeoutError(self.error or "Job timed out", details=details)
        if self.state == JobState.CRASHED:
            if self.exit_code is not None:
                details["exit_code"] = self.exit_code
            return AbnormalTerminationError(
                self.error or "Execution context terminated abnormally", details=details
            )
        if self.state == JobState.FAILED:
            return ExecutionFailedError(self.error or "Execution failed", details=details)
        raise ValueError(f"Outcome {self.state.value} is not an error")


ERROR_CODES = {
    JobState.FAILED: ErrorCode.EXECUTION_FAILED,
    JobState.TIMED_OUT: ErrorCode.TIMEOUT,
    JobState.CRASHED: ErrorCode.ABNORMAL_TERMINATION,
}
