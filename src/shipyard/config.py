"""Configuration management for the Shipyard orchestration core."""

from typing import Literal

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_DEV_AUTH_SECRET = "shipyard-dev-auth-secret"  # noqa: S105
_DEV_CALLBACK_TOKEN = "shipyard-dev-callback-token"  # noqa: S105
_DEV_GENERATOR_TOKEN = "shipyard-dev-generator-token"  # noqa: S105


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="SHIPYARD_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Server configuration
    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Runtime environment (development, staging, production)",
    )
    server_host: str = Field(default="localhost", description="Server bind host")
    server_port: int = Field(default=5173, description="Server bind port")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level",
    )
    platform_version: str = Field(
        default="0.1.0",
        description="Platform/core-schema version stamped on every build record",
    )

    # Public URL - single source of truth for external URLs
    public_url: str = Field(
        default="http://localhost:5173",
        description="Public base URL of the platform API",
    )
    callback_base_url: str = Field(
        default="",
        description="Base URL build jobs use for status callbacks (defaults to public_url)",
    )

    @model_validator(mode="after")
    def derive_urls_from_public(self) -> "Settings":
        """Derive callback_base_url from public_url if not explicitly set."""
        if not self.callback_base_url:
            object.__setattr__(self, "callback_base_url", self.public_url.rstrip("/"))
        return self

    # Secrets
    auth_secret: SecretStr = Field(
        default=SecretStr(_DEV_AUTH_SECRET),
        description="Secret used to encrypt signing keys and environment variables at rest",
    )
    callback_token: SecretStr = Field(
        default=SecretStr(_DEV_CALLBACK_TOKEN),
        description="Static bearer token build jobs present on status callbacks",
    )
    generator_token: SecretStr = Field(
        default=SecretStr(_DEV_GENERATOR_TOKEN),
        description="Static bearer token the infrastructure generator presents",
    )
    generator_internal_host: str = Field(
        default="argocd-applicationset-controller.argocd.svc.cluster.local",
        description="Hostname generator requests must originate from in production",
    )
    trusted_proxies: list[str] = Field(
        default_factory=list,
        description="Peer addresses allowed to report the client address via X-Forwarded-For",
    )

    @model_validator(mode="after")
    def validate_security_settings(self) -> "Settings":
        """Prevent insecure settings in production."""
        if self.environment == "production":
            if self.auth_secret.get_secret_value() == _DEV_AUTH_SECRET:
                raise ValueError(
                    "CRITICAL: Default auth secret is forbidden in production. "
                    "Set SHIPYARD_AUTH_SECRET to a secure value."
                )
            if self.callback_token.get_secret_value() == _DEV_CALLBACK_TOKEN:
                raise ValueError(
                    "CRITICAL: Default callback token is forbidden in production. "
                    "Set SHIPYARD_CALLBACK_TOKEN to a secure value."
                )
            if self.generator_token.get_secret_value() == _DEV_GENERATOR_TOKEN:
                raise ValueError(
                    "CRITICAL: Default generator token is forbidden in production. "
                    "Set SHIPYARD_GENERATOR_TOKEN to a secure value."
                )
        return self

    # Token configuration
    jwt_algorithm: Literal["RS256", "RS384", "RS512"] = Field(
        default="RS256", description="Asymmetric JWT signing algorithm"
    )
    jwks_url: str = Field(
        default="",
        description="Remote key set URL for verification (empty = local published set)",
    )
    jwks_cache_seconds: int = Field(
        default=300,
        ge=0,
        description="How long verifiers trust a fetched key set before refetching it",
    )
    provisioning_token_ttl_days: int = Field(
        default=3650,
        ge=1,
        le=3650,
        description="TTL for anon/service_role/runner tokens handed to provisioned environments",
    )
    push_token_ttl_seconds: int = Field(
        default=300,
        ge=30,
        le=3600,
        description="TTL for runner tokens minted for a single activation push",
    )

    # Routing
    base_domain: str = Field(
        default="127.0.0.1.nip.io",
        description="Base domain for per-tenant routable hostnames",
    )
    runner_port: int = Field(default=3000, description="Runner service port inside the cluster")
    environment_chart_version: str = Field(
        default="0.1.5",
        description="Helm chart version reported to the provisioning generator",
    )
    push_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        le=120,
        description="Timeout for activation pushes to tenant runtimes",
    )

    # Object storage
    s3_bucket: str = Field(default="builds", description="Bucket for source bundles and artifacts")
    s3_region: str = Field(default="ap-southeast-1", description="Object store region")
    s3_endpoint_url: str = Field(
        default="",
        description="Custom S3 endpoint (e.g. MinIO); empty uses AWS",
    )
    s3_access_key_id: SecretStr = Field(default=SecretStr(""), description="S3 access key id")
    s3_secret_access_key: SecretStr = Field(
        default=SecretStr(""), description="S3 secret access key"
    )
    s3_presign_expiry_seconds: int = Field(
        default=3600,
        ge=60,
        le=43200,
        description="Lifetime of presigned upload/download URLs",
    )
    s3_presign_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        le=60,
        description="Timeout for presigning operations",
    )

    # Build jobs
    k8s_namespace: str = Field(default="platform", description="Namespace for build jobs")
    k8s_submit_timeout_seconds: float = Field(
        default=15.0,
        gt=0,
        le=300,
        description="Timeout for build job submission (never retried automatically)",
    )
    build_image: str = Field(
        default="oven/bun:1.2.9-alpine",
        description="Container image used for build jobs",
    )
    build_cpu_request: str = Field(default="500m", description="Default CPU request for builds")
    build_cpu_limit: str = Field(default="2", description="Default CPU limit for builds")
    build_memory_request: str = Field(default="1Gi", description="Default memory request")
    build_memory_limit: str = Field(default="4Gi", description="Default memory limit")
    build_job_ttl_seconds: int = Field(
        default=86400,
        ge=60,
        le=2_592_000,
        description="ttlSecondsAfterFinished for finished build jobs",
    )
    build_active_deadline_seconds: int = Field(
        default=3600,
        ge=60,
        le=86400,
        description="Hard wall-clock limit for a single build job",
    )
    callback_secret_name: str = Field(
        default="shared-secrets",
        description="Kubernetes secret holding the callback token",
    )
    callback_secret_key: str = Field(
        default="runnerSecretToken",
        description="Key inside callback_secret_name holding the callback token",
    )
    serialize_app_builds: bool = Field(
        default=False,
        description="Reject new builds for an app while another is pending/building",
    )

    # Stale build reconciliation
    build_sweep_enabled: bool = Field(
        default=True,
        description="Run the periodic stale build sweeper inside the API process",
    )
    build_sweep_interval_seconds: int = Field(
        default=60,
        ge=5,
        le=3600,
        description="Stale build sweeper interval",
    )
    build_stale_after_seconds: int = Field(
        default=1800,
        ge=60,
        le=86400,
        description="A building record with no update for this long is a sweep candidate",
    )

    # PostgreSQL configuration
    database_url: str = Field(
        default="",
        description="Full SQLAlchemy async URL override (e.g. sqlite+aiosqlite:///:memory:)",
    )
    postgres_host: str = Field(default="localhost", description="PostgreSQL host")
    postgres_port: int = Field(default=5432, description="PostgreSQL port")
    postgres_user: str = Field(default="shipyard", description="PostgreSQL user")
    postgres_password: SecretStr = Field(
        default=SecretStr("shipyard_dev"), description="PostgreSQL password"
    )
    postgres_db: str = Field(default="shipyard", description="PostgreSQL database name")
    postgres_pool_size: int = Field(default=10, description="Connection pool size")
    postgres_max_overflow: int = Field(default=20, description="Max overflow connections")

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def postgres_url(self) -> str:
        """Construct the async connection URL."""
        if self.database_url:
            return self.database_url
        password = self.postgres_password.get_secret_value()
        return f"postgresql+asyncpg://{self.postgres_user}:{password}@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"

    @property
    def postgres_url_sync(self) -> str:
        """Construct PostgreSQL connection URL for sync operations (Alembic)."""
        password = self.postgres_password.get_secret_value()
        return f"postgresql://{self.postgres_user}:{password}@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"


# Global settings instance
settings = Settings()
