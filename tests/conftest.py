"""Pytest configuration and fixtures."""

import os
from typing import AsyncGenerator
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Set test environment
os.environ["ENVIRONMENT"] = "test"
os.environ["RELAYER_SECRET"] = ""
os.environ["PRIVACY_BACKEND"] = "dryrun"
os.environ["DEBUG"] = "false"

from shadowpay.api.app import create_app
from shadowpay.config import Settings
from shadowpay.identity import RelayerIdentity
from shadowpay.jobs.context import ContextSpec, ExecutionContext
from shadowpay.jobs.models import Job
from shadowpay.jobs.supervisor import JobSupervisor
from shadowpay.rpc import SolanaRpcClient

SECRET = "test-relayer-secret"
RELAYER_BALANCE = 2_500_000_000


class ContextRecorder:
    """Context factory building dry-run contexts and keeping every one it made.

    Per-job backend options (``latency_ms``, ``fault``) come from
    ``job.metadata`` on top of the recorder defaults.
    """

    def __init__(self, settings: Settings, identity: RelayerIdentity, **defaults):
        self.settings = settings
        self.identity = identity
        self.defaults = defaults
        self.contexts: list[ExecutionContext] = []

    def __call__(self, job: Job) -> ExecutionContext:
        spec = ContextSpec(
            job=job,
            backend="dryrun",
            rpc_url=self.settings.solana_rpc_url,
            secret_key=self.identity.secret_key,
            backend_options={**self.defaults, **job.metadata},
        )
        context = ExecutionContext(spec, start_method=self.settings.job_start_method)
        self.contexts.append(context)
        return context


@pytest.fixture
def identity() -> RelayerIdentity:
    """Fresh relayer keypair."""
    return RelayerIdentity.generate()


@pytest.fixture
def keypair_file(tmp_path, identity):
    """Relayer keypair written in Solana CLI format."""
    path = tmp_path / "relayer.json"
    path.write_text(identity.to_keypair_json())
    return path


@pytest.fixture
def settings(keypair_file) -> Settings:
    """Relayer settings with auth enabled and the dry-run backend."""
    return Settings(
        _env_file=None,
        environment="test",
        relayer_secret=SECRET,
        relayer_keypair_path=str(keypair_file),
        solana_rpc_url="http://rpc.test",
        privacy_backend="dryrun",
        job_kill_grace_seconds=1.0,
    )


@pytest.fixture
def recipient() -> str:
    """A syntactically valid Solana address."""
    return RelayerIdentity.generate().address


@pytest.fixture
def make_recorder(settings, identity):
    def factory(**defaults) -> ContextRecorder:
        return ContextRecorder(settings, identity, **defaults)

    return factory


@pytest.fixture
def rpc() -> AsyncMock:
    """RPC client stub reporting a fixed relayer balance."""
    client = AsyncMock(spec=SolanaRpcClient)
    client.get_balance.return_value = RELAYER_BALANCE
    client.get_signature_status.return_value = {"confirmationStatus": "finalized", "err": None}
    return client


@pytest.fixture
def supervisor(settings, identity) -> JobSupervisor:
    return JobSupervisor(settings, identity)


@pytest.fixture
def gateway_app(settings, identity, supervisor, rpc):
    """Relay gateway wired to the test identity and RPC stub."""
    return create_app(settings, identity=identity, supervisor=supervisor, rpc=rpc)


@pytest_asyncio.fixture
async def client(gateway_app) -> AsyncGenerator[AsyncClient, None]:
    """Async test client for the relay gateway."""
    transport = ASGITransport(app=gateway_app)
    async with AsyncClient(transport=transport, base_url="http://relayer.test") as ac:
        yield ac


@pytest.fixture
def auth_headers() -> dict:
    return {"x-auth": SECRET}
