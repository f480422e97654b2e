"""Shared FastAPI dependencies for the relay gateway."""

import hmac
import logging
from typing import Optional

from fastapi import Header, Request

from shadowpay.config import AUTH_HEADER, Settings
from shadowpay.errors import AuthenticationError
from shadowpay.jobs.supervisor import JobSupervisor

logger = logging.getLogger(__name__)


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_supervisor(request: Request) -> JobSupervisor:
    return request.app.state.supervisor


def credentials_match(supplied: Optional[str], expected: str) -> bool:
    """Constant-time comparison of the supplied credential."""
    if not supplied:
        return False
    return hmac.compare_digest(supplied.encode(), expected.encode())


async def require_relayer_auth(
    request: Request,
    x_auth: Optional[str] = Header(None, alias=AUTH_HEADER),
) -> bool:
    """Verify the shared secret before any job is created.

    If RELAYER_SECRET is not set, allows access (dev mode) and warns on
    every request.
    """
    settings = get_app_settings(request)

    if not settings.auth_enabled:
        logger.warning(
            f"UNAUTHENTICATED {request.method} {request.url.path} accepted "
            f"(RELAYER_SECRET not set, dev mode)"
        )
        return True

    if not credentials_match(x_auth, settings.relayer_secret):
        client = request.client.host if request.client else "unknown"
        logger.warning(f"Rejected {request.method} {request.url.path} from {client}: bad credential")
        raise AuthenticationError("Unauthorized")

    return True
