"""Application configuration using pydantic-settings.

Both deployable roles (relayer gateway and public tier) read the same
settings object; each only uses the fields relevant to its role.
"""

from enum import Enum
from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from shadowpay.errors import ConfigurationError

AUTH_HEADER = "x-auth"

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

DEFAULT_PORTS = {
    "relayer": 4444,
    "public": 3333,
}


class ServiceRole(str, Enum):
    """Which deployable component this process runs."""

    RELAYER = "relayer"
    PUBLIC = "public"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ======================
    # Environment
    # ======================
    environment: str = Field(default="development", description="Runtime environment")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")
    service_role: ServiceRole = Field(
        default=ServiceRole.RELAYER, description="Component to run: relayer or public"
    )

    # ======================
    # Server
    # ======================
    host: str = Field(default="0.0.0.0", description="Listen host")
    port: Optional[int] = Field(default=None, description="Listen port (required in production)")

    # ======================
    # Inter-tier auth
    # ======================
    relayer_secret: Optional[str] = Field(
        default=None, description="Shared secret sent in the x-auth header between tiers"
    )
    relayer_url: str = Field(
        default="http://localhost:4444", description="Relay gateway base URL (public tier)"
    )

    # ======================
    # Chain / identity
    # ======================
    solana_rpc_url: str = Field(
        default="https://api.mainnet-beta.solana.com", description="Solana RPC URL"
    )
    relayer_keypair_path: str = Field(
        default="./relayer.json", description="Relayer keypair file (JSON array of 64 ints)"
    )

    # ======================
    # Privacy backend
    # ======================
    privacy_backend: str = Field(default="dryrun", description="Privacy backend: dryrun or http")
    privacy_api_url: str = Field(default="", description="Privacy pool API URL (http backend)")
    dryrun_latency_ms: int = Field(default=0, description="Simulated latency for dryrun backend")

    # ======================
    # Jobs
    # ======================
    job_timeout_seconds: Optional[float] = Field(
        default=None, description="Override deadline for every job kind"
    )
    deposit_timeout_seconds: float = Field(default=60.0, description="Default deposit deadline")
    withdraw_timeout_seconds: float = Field(default=120.0, description="Default withdraw deadline")
    max_job_timeout_seconds: float = Field(
        default=300.0, description="Upper bound for any requested deadline"
    )
    job_kill_grace_seconds: float = Field(
        default=2.0, description="Time between SIGTERM and SIGKILL on context teardown"
    )
    job_start_method: str = Field(
        default="spawn", description="multiprocessing start method for execution contexts"
    )
    job_history_size: int = Field(default=1000, description="Finished jobs kept for status lookup")
    max_job_amount: int = Field(
        default=0, description="Maximum lamports per job (0 = disabled)"
    )

    # ======================
    # Public tier
    # ======================
    cors_origins: str = Field(
        default="http://localhost:5173", description="Comma-separated allowed CORS origins"
    )

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"

    @property
    def auth_enabled(self) -> bool:
        """Whether inter-tier requests must carry the shared secret."""
        return bool(self.relayer_secret)

    @property
    def effective_port(self) -> int:
        """Configured port, or the role default."""
        if self.port:
            return self.port
        return DEFAULT_PORTS[self.service_role.value]

    @property
    def cors_origin_list(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    def backend_options(self) -> dict:
        """Options handed to the privacy backend inside each execution context."""
        if self.privacy_backend == "http":
            return {"api_url": self.privacy_api_url}
        return {"latency_ms": self.dryrun_latency_ms}

    def validate_for_startup(self) -> None:
        """Fail fast on configuration that must not reach a running service.

        Raises:
            ConfigurationError: If a required production setting is missing
        """
        if self.is_production and not self.port:
            raise ConfigurationError("PORT environment variable must be set in production")

        if self.is_production and self.service_role == ServiceRole.PUBLIC:
            if "localhost" in self.relayer_url or "127.0.0.1" in self.relayer_url:
                raise ConfigurationError("RELAYER_URL must point at the deployed relayer in production")

        if self.max_job_timeout_seconds <= 0:
            raise ConfigurationError("MAX_JOB_TIMEOUT_SECONDS must be positive")

        if self.privacy_backend == "http" and not self.privacy_api_url:
            raise ConfigurationError("PRIVACY_API_URL is required for the http privacy backend")

    def get_safe_dict(self) -> dict:
        """Return settings dict with secrets redacted."""
        return {
            "environment": self.environment,
            "debug": self.debug,
            "service_role": self.service_role.value,
            "port": self.effective_port,
            "auth": "enabled" if self.auth_enabled else "disabled (dev mode)",
            "relayer_url": self.relayer_url,
            "rpc": self.solana_rpc_url,
            "backend": {
                "name": self.privacy_backend,
                "api_url": self.privacy_api_url or "(not set)",
            },
            "jobs": {
                "deposit_timeout": self.job_timeout_seconds or self.deposit_timeout_seconds,
                "withdraw_timeout": self.job_timeout_seconds or self.withdraw_timeout_seconds,
                "max_timeout": self.max_job_timeout_seconds,
                "start_method": self.job_start_method,
                "max_amount": self.max_job_amount or "(unlimited)",
            },
        }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
