"""Install, update, uninstall and list apps per environment."""

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Query, status

from shipyard.api.dependencies import InstallationServiceDep, OrgClaims, RunnerClaims, SessionDep
from shipyard.api.schemas import (
    AppResponse,
    InstallationRequest,
    InstallationResponse,
    InstalledAppResponse,
)
from shipyard.auth.dependencies import authorize_org

router = APIRouter(prefix="/app_installations", tags=["installations"])


def _installation(installation: Any) -> dict[str, Any]:
    return InstallationResponse.model_validate(installation).model_dump(mode="json")


def _installed_app(installation: Any, app: Any) -> dict[str, Any]:
    return InstalledAppResponse(
        **InstallationResponse.model_validate(installation).model_dump(),
        app=AppResponse.model_validate(app),
    ).model_dump(mode="json")


@router.post("", status_code=status.HTTP_201_CREATED)
async def install(
    body: InstallationRequest,
    service: InstallationServiceDep,
    session: SessionDep,
    claims: OrgClaims,
) -> dict[str, Any]:
    await authorize_org(session, claims, body.organization_id)
    installation = await service.install(
        body.organization_id, body.app_id, body.environment_id, body.app_build_id
    )
    return _installation(installation)


@router.put("")
async def update(
    body: InstallationRequest,
    service: InstallationServiceDep,
    session: SessionDep,
    claims: OrgClaims,
) -> dict[str, Any]:
    await authorize_org(session, claims, body.organization_id)
    installation = await service.update(
        body.organization_id, body.app_id, body.environment_id, body.app_build_id
    )
    return _installation(installation)


@router.delete("")
async def uninstall(
    service: InstallationServiceDep,
    session: SessionDep,
    claims: OrgClaims,
    app_id: UUID = Query(),
    environment_id: UUID = Query(),
    org_id: UUID = Query(),
) -> dict[str, Any]:
    await authorize_org(session, claims, org_id)
    return _installation(await service.uninstall(org_id, app_id, environment_id))


@router.get("")
async def list_installations(
    service: InstallationServiceDep,
    session: SessionDep,
    claims: OrgClaims,
    environment_id: UUID = Query(),
    organization_id: UUID = Query(),
) -> list[dict[str, Any]]:
    await authorize_org(session, claims, organization_id)
    rows = await service.list_for_environment(organization_id, environment_id)
    return [_installed_app(installation, app) for installation, app in rows]


@router.get("/runner")
async def list_for_runner(
    service: InstallationServiceDep,
    claims: RunnerClaims,
    organization_slug: str = Query(alias="organizationSlug"),
    environment_slug: str = Query(alias="environmentSlug"),
) -> list[dict[str, Any]]:
    """What a runner serves: one entry per installed app with its build id."""
    rows = await service.list_for_runner(claims, organization_slug, environment_slug)
    return [_installed_app(installation, app) for installation, app in rows]
