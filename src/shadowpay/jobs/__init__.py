"""Isolated job execution: models, execution contexts and the supervisor."""

from shadowpay.jobs.context import ContextSpec, ExecutionContext
from shadowpay.jobs.models import Job, JobState, OperationKind, Outcome
from shadowpay.jobs.registry import JobRegistry
from shadowpay.jobs.supervisor import JobSupervisor

__all__ = [
    "ContextSpec",
    "ExecutionContext",
    "Job",
    "JobRegistry",
    "JobState",
    "JobSupervisor",
    "OperationKind",
    "Outcome",
]
