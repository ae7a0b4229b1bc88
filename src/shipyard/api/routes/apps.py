"""Minimal app registration and editing."""

from uuid import UUID

import structlog
from fastapi import APIRouter, Query, status
from sqlalchemy.exc import IntegrityError
from sqlmodel import col, select

from shipyard.api.dependencies import OrgClaims, SessionDep
from shipyard.api.schemas import AppCreateRequest, AppResponse, AppUpdateRequest
from shipyard.auth.dependencies import authorize_org
from shipyard.db.models import App, utcnow
from shipyard.errors import ConflictError, NotFoundError

log = structlog.get_logger()

router = APIRouter(prefix="/apps", tags=["apps"])


async def _get_app(session: SessionDep, app_id: UUID, org_id: UUID) -> App:
    result = await session.execute(
        select(App).where(App.id == app_id, App.organization_id == org_id)
    )
    app = result.scalar_one_or_none()
    if app is None:
        raise NotFoundError("App", str(app_id), org_id=str(org_id))
    return app


@router.post("", response_model=AppResponse, status_code=status.HTTP_201_CREATED)
async def create_app(body: AppCreateRequest, session: SessionDep, claims: OrgClaims) -> App:
    await authorize_org(session, claims, body.organization_id)
    app = App(**body.model_dump())
    session.add(app)
    try:
        await session.commit()
    except IntegrityError as e:
        await session.rollback()
        raise ConflictError(
            f"App slug already taken: {body.slug}",
            code="slug_taken",
            details={"slug": body.slug},
        ) from e
    await session.refresh(app)
    log.info("app_created", app_id=str(app.id), slug=app.slug, org_id=str(app.organization_id))
    return app


@router.get("", response_model=list[AppResponse])
async def list_apps(
    session: SessionDep,
    claims: OrgClaims,
    org_id: UUID = Query(alias="orgId"),
) -> list[App]:
    await authorize_org(session, claims, org_id)
    result = await session.execute(
        select(App).where(App.organization_id == org_id).order_by(col(App.slug))
    )
    return list(result.scalars().all())


@router.get("/{app_id}", response_model=AppResponse)
async def get_app(
    app_id: UUID,
    session: SessionDep,
    claims: OrgClaims,
    org_id: UUID = Query(alias="orgId"),
) -> App:
    await authorize_org(session, claims, org_id)
    return await _get_app(session, app_id, org_id)


@router.put("/{app_id}", response_model=AppResponse)
async def update_app(
    app_id: UUID, body: AppUpdateRequest, session: SessionDep, claims: OrgClaims
) -> App:
    await authorize_org(session, claims, body.organization_id)
    app = await _get_app(session, app_id, body.organization_id)
    for field, value in body.model_dump(exclude={"organization_id"}, exclude_none=True).items():
        setattr(app, field, value)
    app.updated_at = utcnow()
    session.add(app)
    await session.commit()
    await session.refresh(app)
    log.info("app_updated", app_id=str(app.id))
    return app
