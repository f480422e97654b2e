"""Health check endpoints (unauthenticated, read-only)."""

import logging

from fastapi import APIRouter, Request

from shadowpay.identity import LAMPORTS_PER_SOL
from shadowpay.rpc import RpcError

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health")
async def health_check(request: Request):
    """Liveness plus the relayer's SOL balance (pays gas for every job)."""
    state = request.app.state
    identity = state.identity

    try:
        lamports = await state.rpc.get_balance(identity.address)
    except RpcError as e:
        logger.warning(f"Health check balance lookup failed: {e}")
        return {
            "ok": False,
            "error": str(e),
            "identity": identity.address,
            "endpoint": state.settings.solana_rpc_url,
            "active_jobs": state.supervisor.active_jobs,
        }

    return {
        "ok": True,
        "identity": identity.address,
        "balance": lamports / LAMPORTS_PER_SOL,
        "endpoint": state.settings.solana_rpc_url,
        "active_jobs": state.supervisor.active_jobs,
    }


@router.get("/health/detailed")
async def detailed_health(request: Request):
    """Redacted configuration and job counters."""
    state = request.app.state
    return {
        "ok": True,
        "service": "shadowpay-relayer",
        "identity": state.identity.address,
        "config": state.settings.get_safe_dict(),
        "jobs": {
            "active": state.supervisor.active_jobs,
            **state.supervisor.get_stats(),
        },
    }
