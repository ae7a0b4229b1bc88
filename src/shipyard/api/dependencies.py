"""Request-scoped service wiring for route handlers."""

from typing import Annotated, Any

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from shipyard.auth.jwt import TokenClaims
from shipyard.auth.dependencies import require_org_token, require_runner_token
from shipyard.builds.service import BuildService
from shipyard.db.connection import get_session_dependency
from shipyard.envvars import EnvironmentVariableStore
from shipyard.installations.service import InstallationService
from shipyard.provisioning.generator import ProvisioningGenerator

SessionDep = Annotated[AsyncSession, Depends(get_session_dependency)]
OrgClaims = Annotated[TokenClaims, Depends(require_org_token)]
RunnerClaims = Annotated[TokenClaims, Depends(require_runner_token)]


def _state(request: Request, name: str) -> Any:
    component = getattr(request.app.state, name, None)
    if component is None:
        raise RuntimeError(f"{name} is not initialized")
    return component


def get_build_service(request: Request, session: SessionDep) -> BuildService:
    return BuildService(
        session,
        orchestrator=_state(request, "orchestrator"),
        gateway=_state(request, "artifact_gateway"),
    )


def get_installation_service(request: Request, session: SessionDep) -> InstallationService:
    return InstallationService(session, _state(request, "push_client"))


def get_provisioning_generator(request: Request, session: SessionDep) -> ProvisioningGenerator:
    return ProvisioningGenerator(
        session,
        issuer=_state(request, "token_issuer"),
        keystore=_state(request, "keystore"),
    )


def get_envvar_store(session: SessionDep) -> EnvironmentVariableStore:
    return EnvironmentVariableStore(session)


BuildServiceDep = Annotated[BuildService, Depends(get_build_service)]
InstallationServiceDep = Annotated[InstallationService, Depends(get_installation_service)]
ProvisioningDep = Annotated[ProvisioningGenerator, Depends(get_provisioning_generator)]
EnvVarStoreDep = Annotated[EnvironmentVariableStore, Depends(get_envvar_store)]
