"""Relay gateway application factory.

The relayer signs and submits privacy-pool transactions with its OWN
keypair and pays gas on behalf of users. It never stores user data.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from shadowpay.api.handlers import register_error_handlers
from shadowpay.config import Settings, get_settings
from shadowpay.identity import RelayerIdentity
from shadowpay.jobs.supervisor import JobSupervisor
from shadowpay.rpc import SolanaRpcClient

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    settings = app.state.settings
    logger.info(f"Relayer {app.state.identity.address} listening on port {settings.effective_port}")
    logger.info(f"Auth required: {'yes' if settings.auth_enabled else 'NO (dev mode)'}")
    yield
    active = app.state.supervisor.active_jobs
    if active:
        logger.warning(f"Shutting down with {active} job(s) still running")


def create_app(
    settings: Optional[Settings] = None,
    identity: Optional[RelayerIdentity] = None,
    supervisor: Optional[JobSupervisor] = None,
    rpc: Optional[SolanaRpcClient] = None,
) -> FastAPI:
    """Create and configure the relay gateway.

    Args:
        settings: Configuration (defaults to environment settings)
        identity: Relayer keypair (defaults to RELAYER_KEYPAIR_PATH)
        supervisor: Job supervisor (built from settings and identity)
        rpc: Solana RPC client used for health and status checks

    Raises:
        ConfigurationError: If the relayer keypair cannot be loaded
    """
    settings = settings or get_settings()
    identity = identity or RelayerIdentity.from_keypair_file(settings.relayer_keypair_path)

    if not settings.auth_enabled:
        logger.warning("RELAYER_SECRET not set - endpoints are UNPROTECTED")
        logger.warning("Anyone who can reach this relayer can submit transactions")
        if settings.is_production:
            logger.error("Running a production relayer without RELAYER_SECRET")

    app = FastAPI(
        title="ShadowPay Relayer",
        description="Isolated privacy-pool deposit/withdraw relayer",
        version="0.1.0",
        lifespan=lifespan,
        debug=settings.debug,
    )

    app.state.settings = settings
    app.state.identity = identity
    app.state.supervisor = supervisor or JobSupervisor(settings, identity)
    app.state.rpc = rpc or SolanaRpcClient(settings.solana_rpc_url)

    register_error_handlers(app)

    # Register routes
    from shadowpay.api.routes import health, jobs, operations

    app.include_router(health.router, tags=["Health"])
    app.include_router(operations.router, tags=["Operations"])
    app.include_router(jobs.router, tags=["Jobs"])

    return app
