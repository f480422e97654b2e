"""Public tier endpoints.

Each operation is forwarded to the relay gateway; the gateway's status
code and body are returned unchanged.
"""

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from shadowpay.errors import InvalidRequestError
from shadowpay.jobs.models import OperationKind
from shadowpay.public.forwarding import ForwardingClient

logger = logging.getLogger(__name__)

router = APIRouter()


async def _json_body(request: Request) -> dict:
    try:
        body = await request.json()
    except ValueError:
        raise InvalidRequestError("Request body must be JSON")
    if not isinstance(body, dict):
        raise InvalidRequestError("Request body must be a JSON object")
    return body


async def _forward(request: Request, operation: OperationKind) -> JSONResponse:
    forwarder: ForwardingClient = request.app.state.forwarder
    forwarded = await forwarder.forward(operation, await _json_body(request))
    return JSONResponse(status_code=forwarded.status_code, content=forwarded.body)


@router.post("/api/privacy/deposit")
async def deposit(request: Request) -> JSONResponse:
    """Deposit to the privacy pool via the relayer."""
    return await _forward(request, OperationKind.DEPOSIT)


@router.post("/api/privacy/withdraw")
async def withdraw(request: Request) -> JSONResponse:
    """Withdraw from the privacy pool via the relayer."""
    return await _forward(request, OperationKind.WITHDRAW)


@router.get("/health")
async def health_check():
    """Basic health check endpoint."""
    return {"status": "healthy", "service": "shadowpay-public"}


@router.get("/health/relayer")
async def relayer_health(request: Request) -> JSONResponse:
    """Relayer health as seen from this tier."""
    forwarded = await request.app.state.forwarder.relayer_health()
    return JSONResponse(status_code=forwarded.status_code, content=forwarded.body)
