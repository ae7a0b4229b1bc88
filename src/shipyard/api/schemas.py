"""Request/response models shared by the route modules."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from shipyard.db.models import BuildStatus


class CamelModel(BaseModel):
    """Accepts camelCase aliases on the wire and snake_case in Python."""

    model_config = ConfigDict(populate_by_name=True)


# =============================================================================
# Apps
# =============================================================================


class AppCreateRequest(BaseModel):
    organization_id: UUID
    slug: str = Field(pattern=r"^[a-z0-9](?:[a-z0-9-]{0,62}[a-z0-9])?$")
    name: str | None = None
    description: str | None = None
    is_public: bool = False
    git_repo_url: str = Field(min_length=1, max_length=1024)
    git_repo_branch: str = "main"
    git_repo_path: str = ""
    build_command: str = "bun run build"
    output_path: str = "dist"
    entrypoint: str = "dist/index.js"


class AppUpdateRequest(BaseModel):
    organization_id: UUID
    name: str | None = None
    description: str | None = None
    is_public: bool | None = None
    git_repo_url: str | None = Field(default=None, min_length=1, max_length=1024)
    git_repo_branch: str | None = None
    git_repo_path: str | None = None
    build_command: str | None = None
    output_path: str | None = None
    entrypoint: str | None = None


class AppResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    organization_id: UUID
    slug: str
    name: str | None = None
    description: str | None = None
    is_public: bool
    git_repo_url: str
    git_repo_branch: str
    git_repo_path: str
    build_command: str
    output_path: str
    entrypoint: str
    created_at: datetime
    updated_at: datetime


# =============================================================================
# Builds
# =============================================================================


class BuildRequest(CamelModel):
    app_id: UUID = Field(alias="appId")
    org_id: UUID = Field(alias="orgId")


class UploadDoneRequest(BuildRequest):
    build_id: UUID = Field(alias="buildId")


class StatusCallbackRequest(BuildRequest):
    status: BuildStatus
    message: str | None = Field(default=None, max_length=4000)


class BuildResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    app_id: UUID
    organization_id: UUID
    status: BuildStatus
    source: str
    platform_version: str
    error_message: str | None = None
    created_at: datetime
    updated_at: datetime


class PresignedUrlResponse(BaseModel):
    url: str
    method: str
    key: str
    content_type: str
    expires_at: datetime


# =============================================================================
# Installations
# =============================================================================


class InstallationRequest(BaseModel):
    app_id: UUID
    environment_id: UUID
    organization_id: UUID
    app_build_id: UUID


class InstallationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    app_id: UUID
    environment_id: UUID
    organization_id: UUID
    app_build_id: UUID
    activation_status: str
    activated_at: datetime | None = None
    last_error: str | None = None
    created_at: datetime
    updated_at: datetime


class InstalledAppResponse(InstallationResponse):
    app: AppResponse


# =============================================================================
# Environment variables
# =============================================================================


class EnvironmentVariableRequest(BaseModel):
    organization_id: UUID
    environment_id: UUID
    name: str = Field(pattern=r"^[A-Z_][A-Z0-9_]*$", max_length=255)
    value: str
    description: str | None = None


class EnvironmentVariableResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    organization_id: UUID
    environment_id: UUID
    name: str
    description: str | None = None
    created_at: datetime
    updated_at: datetime
