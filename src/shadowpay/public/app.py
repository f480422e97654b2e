"""Public tier application factory.

Lightweight process that faces browsers. It never runs privacy-pool
operations itself; everything heavy is forwarded to the relayer.
"""

import logging
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from shadowpay.api.handlers import register_error_handlers
from shadowpay.config import Settings, get_settings
from shadowpay.public.forwarding import ForwardingClient

logger = logging.getLogger(__name__)


def create_public_app(
    settings: Optional[Settings] = None,
    forwarder: Optional[ForwardingClient] = None,
) -> FastAPI:
    """Create and configure the public tier."""
    settings = settings or get_settings()

    if not settings.relayer_secret:
        logger.warning("RELAYER_SECRET not set - requests to the relayer are sent without x-auth")

    app = FastAPI(
        title="ShadowPay API",
        description="Public API forwarding privacy-pool operations to the relayer",
        version="0.1.0",
        debug=settings.debug,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.debug else settings.cors_origin_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )

    app.state.settings = settings
    app.state.forwarder = forwarder or ForwardingClient.from_settings(settings)

    register_error_handlers(app)

    from shadowpay.public.routes import router

    app.include_router(router, tags=["Privacy"])

    logger.info(f"Public tier forwarding to relayer at {app.state.forwarder.base_url}")
    return app
