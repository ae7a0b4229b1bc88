"""Per-environment parameters for the cluster's infrastructure generator.

The generator polls this on its own schedule and renders one tenant stack
per (organization, environment) pair. Generation is read-only: it reads
organizations and environments and mints the tokens each stack needs.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import col, select

from shipyard.auth.jwt import TokenIssuer
from shipyard.auth.keys import SigningKeyStore
from shipyard.config import settings
from shipyard.db.models import Environment, Organization
from shipyard.routing import tenant_hostnames

log = structlog.get_logger()


@dataclass(frozen=True)
class EnvironmentParameters:
    org_id: str
    org_slug: str
    environment_id: str
    environment_slug: str
    is_production: bool
    environment_chart_version: str
    jwks: str
    anon_key: str
    service_key: str
    runner_key: str
    runner_host: str
    rest_host: str
    auth_host: str
    database_host: str
    runner_replicas: int
    database_instances: int
    core_schema_version: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class ProvisioningGenerator:
    def __init__(self, session: AsyncSession, issuer: TokenIssuer, keystore: SigningKeyStore) -> None:
        self.session = session
        self.issuer = issuer
        self.keystore = keystore

    async def generate(self) -> list[EnvironmentParameters]:
        """One parameter set for every (organization, environment) pair."""
        result = await self.session.execute(
            select(Environment, Organization)
            .join(Organization, Organization.id == Environment.organization_id)
            .order_by(col(Organization.slug), col(Environment.slug))
        )
        rows = result.all()
        jwks = json.dumps(await self.keystore.published_key_set(), separators=(",", ":"))

        parameters = []
        for env, org in rows:
            hosts = tenant_hostnames(org.slug, env.slug)
            parameters.append(
                EnvironmentParameters(
                    org_id=str(org.id),
                    org_slug=org.slug,
                    environment_id=str(env.id),
                    environment_slug=env.slug,
                    is_production=env.is_production,
                    environment_chart_version=settings.environment_chart_version,
                    jwks=jwks,
                    anon_key=self.issuer.mint_anon(org.slug),
                    service_key=self.issuer.mint_service_role(org.slug),
                    runner_key=self.issuer.mint_runner(
                        org_id=org.id, org_slug=org.slug, env_id=env.id, env_slug=env.slug
                    ),
                    runner_host=hosts["runner"],
                    rest_host=hosts["rest"],
                    auth_host=hosts["auth"],
                    database_host=hosts["database"],
                    runner_replicas=env.runner_count,
                    database_instances=env.database_instance_count,
                    core_schema_version=env.core_schema_version,
                )
            )

        log.info("provisioning_parameters_generated", environments=len(parameters))
        return parameters
