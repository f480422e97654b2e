"""Job status lookup.

Lets a caller that received a timeout (or lost the response) check what
the relayer knows about a job, and optionally whether its transaction
signature is confirmed on chain.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from shadowpay.api.dependencies import get_supervisor, require_relayer_auth
from shadowpay.jobs.supervisor import JobSupervisor
from shadowpay.rpc import RpcError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/jobs")


@router.get("/{job_id}")
async def get_job(
    job_id: str,
    request: Request,
    confirm: bool = False,
    _: bool = Depends(require_relayer_auth),
    supervisor: JobSupervisor = Depends(get_supervisor),
) -> dict:
    """Get a recent job's status."""
    record = supervisor.registry.get(job_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Job not found")

    reference = record.get("reference")
    if confirm and reference:
        try:
            status = await request.app.state.rpc.get_signature_status(reference)
        except RpcError as e:
            record["chain_status_error"] = str(e)
        else:
            record["chain_status"] = status or "not_found"

    return record
