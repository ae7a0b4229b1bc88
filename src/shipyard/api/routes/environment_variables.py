"""Environment variable storage and the runner fetch endpoint."""

from uuid import UUID

from fastapi import APIRouter, status

from shipyard.api.dependencies import EnvVarStoreDep, OrgClaims, RunnerClaims, SessionDep
from shipyard.api.schemas import EnvironmentVariableRequest, EnvironmentVariableResponse
from shipyard.auth.dependencies import authorize_org
from shipyard.db.models import EnvironmentVariable

router = APIRouter(prefix="/environment_variables", tags=["environment_variables"])


@router.get("/{org_id}/{environment_id}")
async def fetch_for_runner(
    org_id: UUID, environment_id: UUID, store: EnvVarStoreDep, claims: RunnerClaims
) -> dict[str, str]:
    """Decrypted variables; only a runner token for exactly this pair is accepted."""
    return await store.fetch_for_runner(claims, org_id, environment_id)


@router.post("", response_model=EnvironmentVariableResponse, status_code=status.HTTP_201_CREATED)
async def set_variable(
    body: EnvironmentVariableRequest,
    store: EnvVarStoreDep,
    session: SessionDep,
    claims: OrgClaims,
) -> EnvironmentVariable:
    await authorize_org(session, claims, body.organization_id)
    return await store.set(
        body.organization_id,
        body.environment_id,
        body.name,
        body.value,
        description=body.description,
    )
