"""Deposit and withdraw endpoints.

Authenticated, validated requests become jobs on the supervisor; the
outcome is mapped back to a response or a classified error.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends

from shadowpay.api.dependencies import get_app_settings, get_supervisor, require_relayer_auth
from shadowpay.api.schemas import DepositRequest, DepositResponse, WithdrawRequest, WithdrawResponse
from shadowpay.config import Settings
from shadowpay.errors import InvalidRequestError
from shadowpay.identity import LAMPORTS_PER_SOL
from shadowpay.jobs.models import Job, OperationKind, Outcome
from shadowpay.jobs.supervisor import JobSupervisor

logger = logging.getLogger(__name__)

router = APIRouter()


def _check_amount(amount: int, settings: Settings) -> None:
    if settings.max_job_amount and amount > settings.max_job_amount:
        raise InvalidRequestError(
            f"Amount {amount} exceeds maximum of {settings.max_job_amount} lamports"
        )


def _deadline_seconds(deadline_ms: Optional[int]) -> Optional[float]:
    return deadline_ms / 1000 if deadline_ms else None


async def _run_job(supervisor: JobSupervisor, job: Job) -> Outcome:
    logger.info(f"Job {job.job_id}: accepted {job.describe()} ({job.amount / LAMPORTS_PER_SOL} SOL)")
    outcome = await supervisor.run(job)
    if not outcome.ok:
        raise outcome.to_error()
    return outcome


@router.post("/deposit", response_model=DepositResponse)
async def deposit(
    request: DepositRequest,
    _: bool = Depends(require_relayer_auth),
    settings: Settings = Depends(get_app_settings),
    supervisor: JobSupervisor = Depends(get_supervisor),
) -> DepositResponse:
    """Deposit into the privacy pool from the relayer."""
    _check_amount(request.amount, settings)

    job = Job(
        kind=OperationKind.DEPOSIT,
        amount=request.amount,
        recipient=request.recipient,
        referrer=request.referrer,
        deadline=_deadline_seconds(request.deadline_ms),
    )
    outcome = await _run_job(supervisor, job)
    result = outcome.result

    return DepositResponse(
        reference=result["reference"],
        commitment=result.get("commitment"),
        amount=result["amount"],
        job_id=job.job_id,
        duration_ms=round(outcome.duration * 1000),
    )


@router.post("/withdraw", response_model=WithdrawResponse)
async def withdraw(
    request: WithdrawRequest,
    _: bool = Depends(require_relayer_auth),
    settings: Settings = Depends(get_app_settings),
    supervisor: JobSupervisor = Depends(get_supervisor),
) -> WithdrawResponse:
    """Withdraw from the privacy pool to the recipient (ZK proof in the context)."""
    _check_amount(request.amount, settings)

    job = Job(
        kind=OperationKind.WITHDRAW,
        amount=request.amount,
        recipient=request.recipient,
        referrer=request.referrer,
        deadline=_deadline_seconds(request.deadline_ms),
    )
    outcome = await _run_job(supervisor, job)
    result = outcome.result

    return WithdrawResponse(
        reference=result["reference"],
        recipient=result.get("recipient") or job.recipient,
        amount=result["amount"],
        partial=bool(result.get("partial")),
        fee=int(result.get("fee") or 0),
        job_id=job.job_id,
        duration_ms=round(outcome.duration * 1000),
    )
