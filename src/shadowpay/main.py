"""Main entry point - runs the relayer gateway or the public tier.

The role is chosen explicitly (CLI argument or SERVICE_ROLE), never by
runtime introspection: the two tiers are separate deployables that talk
over HTTP.
"""

import argparse
import asyncio
import logging
import signal
import sys
from typing import Optional

import uvicorn

from shadowpay.config import LOG_FORMAT, ServiceRole, Settings, get_settings
from shadowpay.errors import ConfigurationError

logger = logging.getLogger(__name__)


class Application:
    """Runs one service role until a shutdown signal arrives."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self._shutdown_event = asyncio.Event()

    def _build_app(self):
        if self.settings.service_role == ServiceRole.PUBLIC:
            from shadowpay.public.app import create_public_app

            return create_public_app(self.settings)

        from shadowpay.api.app import create_app

        return create_app(self.settings)

    async def start(self):
        """Start the configured service."""
        role = self.settings.service_role.value
        logger.info(f"Starting ShadowPay {role}...")
        logger.info(f"Environment: {self.settings.environment}")

        # Builds eagerly so configuration errors surface before serving
        app = self._build_app()
        server_task = asyncio.create_task(self._run_api(app))

        # Wait for shutdown signal or the server exiting on its own
        shutdown_task = asyncio.create_task(self._shutdown_event.wait())
        await asyncio.wait({server_task, shutdown_task}, return_when=asyncio.FIRST_COMPLETED)

        for task in (server_task, shutdown_task):
            task.cancel()
        await asyncio.gather(server_task, shutdown_task, return_exceptions=True)
        logger.info("Shutdown complete")

    async def _run_api(self, app):
        """Run the FastAPI server."""
        try:
            config = uvicorn.Config(
                app,
                host=self.settings.host,
                port=self.settings.effective_port,
                log_level="debug" if self.settings.debug else "info",
            )
            server = uvicorn.Server(config)
            logger.info(f"Listening on {self.settings.host}:{self.settings.effective_port}")
            await server.serve()
        except asyncio.CancelledError:
            logger.info("API server cancelled")
        except Exception as e:
            logger.error(f"API error: {e}")
            raise

    def shutdown(self):
        """Signal shutdown."""
        logger.info("Shutdown requested")
        self._shutdown_event.set()


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="shadowpay",
        description="Run the ShadowPay relayer gateway or public tier",
    )
    parser.add_argument(
        "role",
        nargs="?",
        choices=[role.value for role in ServiceRole],
        help="Service to run (default: SERVICE_ROLE)",
    )
    parser.add_argument("--port", type=int, help="Listen port (overrides PORT)")
    parser.add_argument("--host", help="Listen host (overrides HOST)")
    return parser.parse_args(argv)


def load_settings(args: argparse.Namespace) -> Settings:
    """Apply CLI overrides on top of the environment settings."""
    overrides = {}
    if args.role:
        overrides["service_role"] = ServiceRole(args.role)
    if args.port:
        overrides["port"] = args.port
    if args.host:
        overrides["host"] = args.host
    settings = get_settings()
    return settings.model_copy(update=overrides) if overrides else settings


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point."""
    settings = load_settings(parse_args(argv))

    logging.basicConfig(
        level=logging.DEBUG if settings.debug else settings.log_level.upper(),
        format=LOG_FORMAT,
    )

    try:
        settings.validate_for_startup()
    except ConfigurationError as e:
        logger.error(f"FATAL: {e}")
        return 1

    app = Application(settings)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, app.shutdown)

    try:
        loop.run_until_complete(app.start())
    except ConfigurationError as e:
        logger.error(f"FATAL: {e}")
        return 1
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received")
    finally:
        loop.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
