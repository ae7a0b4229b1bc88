"""SQLModel schemas for Shipyard PostgreSQL storage.

This module defines the tables for:
- Tenancy primitives (organizations, environments)
- Buildable units and their build history (apps, app builds)
- Bindings of builds to environments (app installations)
- Encrypted environment variables served to runners
- The platform signing keypair(s)

Every tenant-owned row carries ``organization_id`` and every lookup in this
package filters on it.
"""

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKeyConstraint,
    Index,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.engine import Dialect
from sqlalchemy.types import TypeDecorator
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    """Get current UTC time as an aware datetime (for TIMESTAMP WITH TIME ZONE)."""
    return datetime.now(UTC)


class UTCDateTime(TypeDecorator[datetime]):
    """Timezone-aware UTC timestamp column.

    PostgreSQL stores ``timestamptz``. SQLite has no timezone type, so values
    are written as naive UTC there and get their UTC tzinfo back on load.
    """

    impl = DateTime
    cache_ok = True

    def load_dialect_impl(self, dialect: Dialect) -> Any:
        if dialect.name == "sqlite":
            return dialect.type_descriptor(DateTime())
        return dialect.type_descriptor(DateTime(timezone=True))

    def process_bind_param(self, value: datetime | None, dialect: Dialect) -> Any:
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError("Datetime values must have timezone information")
        value = value.astimezone(UTC)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value: Any, dialect: Dialect) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value


# =============================================================================
# Enums
# =============================================================================


class BuildStatus(StrEnum):
    """Lifecycle status of an app build."""

    PENDING = "pending"
    BUILDING = "building"
    READY = "ready"
    ERROR = "error"


class BuildSource(StrEnum):
    """Where a build job acquires its source from."""

    GIT = "git"
    UPLOAD = "upload"


class ActivationStatus(StrEnum):
    """Whether the tenant runtime has acknowledged an installation's build."""

    PENDING = "pending"
    ACTIVE = "active"
    FAILED = "failed"


# =============================================================================
# Base Model
# =============================================================================


class TimestampMixin(SQLModel):
    """Mixin for created/updated timestamps."""

    created_at: datetime = Field(
        default_factory=utcnow,
        sa_type=UTCDateTime,
        description="When this record was created",
    )
    updated_at: datetime = Field(
        default_factory=utcnow,
        sa_type=UTCDateTime,
        description="When this record was last updated",
        sa_column_kwargs={"onupdate": utcnow},
    )


# =============================================================================
# Organization / Environment - Tenant boundary
# =============================================================================


class Organization(TimestampMixin, table=True):
    """An organization/tenant."""

    __tablename__ = "organizations"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    name: str = Field(max_length=255, description="Organization display name")
    slug: str = Field(max_length=64, unique=True, index=True, description="URL-safe unique slug")

    def __repr__(self) -> str:
        return f"<Organization slug={self.slug!r}>"


class Environment(TimestampMixin, table=True):
    """A tenant-scoped execution context served by one runner deployment."""

    __tablename__ = "environments"
    __table_args__ = (
        UniqueConstraint("organization_id", "slug", name="uq_environments_org_slug"),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    organization_id: UUID = Field(foreign_key="organizations.id", index=True)
    slug: str = Field(max_length=31, description="Slug unique within the organization")
    name: str | None = Field(default=None, max_length=255)
    description: str | None = Field(default=None, sa_type=Text)

    is_production: bool = Field(default=False, description="Production environment flag")
    runner_count: int = Field(default=1, ge=0, le=32, description="Nominal runner replicas")
    database_instance_count: int = Field(
        default=1, ge=0, le=16, description="Nominal database replicas"
    )
    core_schema_version: str = Field(
        default="0.1.0", max_length=32, description="Core schema version deployed here"
    )

    def __repr__(self) -> str:
        return f"<Environment slug={self.slug!r} production={self.is_production}>"


# =============================================================================
# App / AppBuild - Buildable units and build history
# =============================================================================


class App(TimestampMixin, table=True):
    """A buildable unit registered by a tenant developer."""

    __tablename__ = "apps"
    __table_args__ = (UniqueConstraint("organization_id", "slug", name="uq_apps_org_slug"),)

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    organization_id: UUID = Field(foreign_key="organizations.id", index=True)

    slug: str = Field(max_length=64, description="Slug unique within the organization")
    name: str | None = Field(default=None, max_length=255)
    description: str | None = Field(default=None, sa_type=Text)
    is_public: bool = Field(default=False)

    # Build settings
    build_command: str = Field(default="bun run build", sa_type=Text)
    output_path: str = Field(default="dist", max_length=512)
    entrypoint: str = Field(default="dist/index.js", max_length=512)

    # Git repository settings
    git_repo_url: str = Field(max_length=1024)
    git_repo_branch: str = Field(default="main", max_length=255)
    git_repo_path: str = Field(default="", max_length=512)

    def __repr__(self) -> str:
        return f"<App slug={self.slug!r}>"


class AppBuild(TimestampMixin, table=True):
    """One attempt to materialize an App into an artifact. Never deleted."""

    __tablename__ = "app_builds"
    __table_args__ = (Index("ix_app_builds_status_updated", "status", "updated_at"),)

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    app_id: UUID = Field(foreign_key="apps.id", index=True)
    organization_id: UUID = Field(foreign_key="organizations.id", index=True)

    status: str = Field(
        default=BuildStatus.PENDING.value,
        sa_column=Column(String(16), nullable=False, server_default=text("'pending'")),
        description="Current build lifecycle status",
    )
    source: str = Field(
        default=BuildSource.GIT.value,
        sa_column=Column(String(16), nullable=False, server_default=text("'git'")),
        description="Source acquisition mode for the build job",
    )
    platform_version: str = Field(
        default="0.1.0", max_length=32, description="Platform version that produced this build"
    )
    error_message: str | None = Field(default=None, sa_type=Text)

    def __repr__(self) -> str:
        return f"<AppBuild {self.id} status={self.status}>"


# =============================================================================
# AppInstallation - Binding of a build to an environment
# =============================================================================


class AppInstallation(TimestampMixin, table=True):
    """Binds one App to one Environment, pointing at the active build."""

    __tablename__ = "app_installations"
    __table_args__ = (
        ForeignKeyConstraint(["app_build_id"], ["app_builds.id"], name="fk_installation_build"),
        Index("ix_app_installations_org_env", "organization_id", "environment_id"),
    )

    app_id: UUID = Field(foreign_key="apps.id", primary_key=True)
    environment_id: UUID = Field(foreign_key="environments.id", primary_key=True)
    organization_id: UUID = Field(foreign_key="organizations.id", primary_key=True)
    app_build_id: UUID

    activation_status: str = Field(
        default=ActivationStatus.PENDING.value,
        sa_column=Column(String(16), nullable=False, server_default=text("'pending'")),
        description="Whether the runtime has acknowledged app_build_id",
    )
    activated_at: datetime | None = Field(default=None, sa_type=UTCDateTime)
    last_error: str | None = Field(default=None, sa_type=Text)

    def __repr__(self) -> str:
        return f"<AppInstallation app={self.app_id} env={self.environment_id}>"


# =============================================================================
# EnvironmentVariable - Encrypted runtime configuration
# =============================================================================


class EnvironmentVariable(TimestampMixin, table=True):
    """A named secret served to the runner of one (organization, environment)."""

    __tablename__ = "environment_variables"
    __table_args__ = (
        UniqueConstraint(
            "organization_id", "environment_id", "name", name="uq_environment_variables_name"
        ),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    organization_id: UUID = Field(foreign_key="organizations.id", index=True)
    environment_id: UUID = Field(foreign_key="environments.id", index=True)
    name: str = Field(max_length=255)
    description: str | None = Field(default=None, sa_type=Text)
    encrypted_value: str = Field(sa_type=Text, description="Fernet ciphertext of the value")


# =============================================================================
# SigningKey - Platform-wide asymmetric keypair
# =============================================================================


class SigningKey(SQLModel, table=True):
    """An asymmetric signing keypair (private half encrypted at rest).

    ``slot`` is unique: the active key occupies ``"primary"`` so racing
    first-boot inserts converge on a single row. Retired keys move to a
    slot derived from their id and stay published for verification.
    """

    __tablename__ = "signing_keys"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    slot: str = Field(max_length=64, unique=True, index=True)
    algorithm: str = Field(default="RS256", max_length=16)
    public_jwk: str = Field(sa_type=Text, description="Public JWK as JSON")
    encrypted_private_key: str = Field(sa_type=Text, description="Fernet-encrypted PKCS8 PEM")
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)
    retired_at: datetime | None = Field(default=None, sa_type=UTCDateTime)

    def __repr__(self) -> str:
        return f"<SigningKey {self.id} slot={self.slot!r}>"
