"""Build requests, job status callbacks and build queries."""

from typing import Any
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, Query, status

from shipyard.api.dependencies import BuildServiceDep, OrgClaims, SessionDep
from shipyard.api.schemas import (
    BuildRequest,
    BuildResponse,
    PresignedUrlResponse,
    StatusCallbackRequest,
    UploadDoneRequest,
)
from shipyard.auth.dependencies import authorize_org, require_callback_token
from shipyard.builds.lifecycle import BuildLifecycleTracker, ReportStatus
from shipyard.storage.artifacts import PresignedUrl

log = structlog.get_logger()

router = APIRouter(prefix="/app_builds", tags=["builds"])


def _build(build: Any) -> dict[str, Any]:
    return BuildResponse.model_validate(build).model_dump(mode="json")


def _presigned(url: PresignedUrl) -> dict[str, Any]:
    return PresignedUrlResponse(
        url=url.url,
        method=url.method,
        key=url.key,
        content_type=url.content_type,
        expires_at=url.expires_at,
    ).model_dump(mode="json")


@router.post("/git", status_code=status.HTTP_201_CREATED)
async def request_git_build(
    body: BuildRequest, service: BuildServiceDep, session: SessionDep, claims: OrgClaims
) -> dict[str, Any]:
    """Create a build from the app's repository and submit its job."""
    await authorize_org(session, claims, body.org_id)
    build = await service.request_git_build(body.app_id, body.org_id)
    return {"success": True, "buildId": str(build.id), "build": _build(build)}


@router.post("/s3/signed_url", status_code=status.HTTP_201_CREATED)
async def request_upload_url(
    body: BuildRequest, service: BuildServiceDep, session: SessionDep, claims: OrgClaims
) -> dict[str, Any]:
    """Create a pending build and a presigned PUT URL for its source bundle."""
    await authorize_org(session, claims, body.org_id)
    build, upload = await service.request_upload(body.app_id, body.org_id)
    return {"uploadUrl": upload.url, "upload": _presigned(upload), "appBuild": _build(build)}


@router.post("/s3")
async def start_uploaded_build(
    body: UploadDoneRequest, service: BuildServiceDep, session: SessionDep, claims: OrgClaims
) -> dict[str, Any]:
    """The source bundle is uploaded; submit the build job."""
    await authorize_org(session, claims, body.org_id)
    build = await service.start_uploaded_build(body.build_id, body.app_id, body.org_id)
    return {"success": True, "buildId": str(build.id), "build": _build(build)}


@router.patch("/{build_id}/status", dependencies=[Depends(require_callback_token)])
async def report_status(
    build_id: UUID, body: StatusCallbackRequest, session: SessionDep
) -> dict[str, Any]:
    """Status callback from a build job."""
    tracker = BuildLifecycleTracker(session)
    build = await tracker.apply(
        ReportStatus(build_id, body.app_id, body.org_id, body.status, body.message)
    )
    return {"success": True, "build": _build(build)}


@router.get("/{build_id}/artifact")
async def artifact_url(
    build_id: UUID,
    service: BuildServiceDep,
    session: SessionDep,
    claims: OrgClaims,
    app_id: UUID = Query(alias="appId"),
    org_id: UUID = Query(alias="orgId"),
) -> dict[str, Any]:
    """Presigned GET URL for a ready build's artifact."""
    await authorize_org(session, claims, org_id)
    return _presigned(await service.artifact_download(build_id, app_id, org_id))


@router.get("/{build_id}")
async def get_build(
    build_id: UUID,
    session: SessionDep,
    claims: OrgClaims,
    app_id: UUID = Query(alias="appId"),
    org_id: UUID = Query(alias="orgId"),
) -> dict[str, Any]:
    await authorize_org(session, claims, org_id)
    return _build(await BuildLifecycleTracker(session).get(build_id, app_id, org_id))


@router.get("")
async def list_builds(
    session: SessionDep,
    claims: OrgClaims,
    app_id: UUID = Query(alias="appId"),
    org_id: UUID = Query(alias="orgId"),
) -> list[dict[str, Any]]:
    await authorize_org(session, claims, org_id)
    builds = await BuildLifecycleTracker(session).list(app_id, org_id)
    return [_build(build) for build in builds]
