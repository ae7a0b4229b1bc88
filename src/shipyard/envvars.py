"""Encrypted environment variables served to tenant runners."""

from __future__ import annotations

import re
from uuid import UUID

import structlog
from cryptography.fernet import Fernet, InvalidToken
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import col, select

from shipyard.auth.jwt import TokenClaims
from shipyard.auth.keys import secret_fernet
from shipyard.db.models import Environment, EnvironmentVariable, utcnow
from shipyard.errors import NotFoundError, ShipyardError, UnauthorizedError

log = structlog.get_logger()

NAME_PATTERN = re.compile(r"^[A-Z_][A-Z0-9_]*$")


class EnvironmentVariableStore:
    def __init__(self, session: AsyncSession, *, fernet: Fernet | None = None) -> None:
        self.session = session
        self._fernet = fernet or secret_fernet()

    async def _require_environment(self, org_id: UUID, env_id: UUID) -> Environment:
        result = await self.session.execute(
            select(Environment).where(Environment.id == env_id, Environment.organization_id == org_id)
        )
        env = result.scalar_one_or_none()
        if env is None:
            raise NotFoundError("Environment", str(env_id), org_id=str(org_id))
        return env

    async def set(
        self,
        org_id: UUID,
        env_id: UUID,
        name: str,
        value: str,
        *,
        description: str | None = None,
    ) -> EnvironmentVariable:
        """Create or replace ``name`` for (org, env). The value is stored encrypted."""
        if not NAME_PATTERN.match(name):
            raise ValueError(f"Invalid environment variable name: {name!r}")
        await self._require_environment(org_id, env_id)

        result = await self.session.execute(
            select(EnvironmentVariable).where(
                EnvironmentVariable.organization_id == org_id,
                EnvironmentVariable.environment_id == env_id,
                EnvironmentVariable.name == name,
            )
        )
        variable = result.scalar_one_or_none()
        ciphertext = self._fernet.encrypt(value.encode("utf-8")).decode("ascii")
        if variable is None:
            variable = EnvironmentVariable(
                organization_id=org_id,
                environment_id=env_id,
                name=name,
                description=description,
                encrypted_value=ciphertext,
            )
        else:
            variable.encrypted_value = ciphertext
            variable.description = description if description is not None else variable.description
            variable.updated_at = utcnow()
        self.session.add(variable)
        await self.session.commit()
        await self.session.refresh(variable)
        log.info("environment_variable_set", org_id=str(org_id), env_id=str(env_id), name=name)
        return variable

    async def fetch_for_runner(
        self, claims: TokenClaims, org_id: UUID, env_id: UUID
    ) -> dict[str, str]:
        """Decrypted name→value map, for a runner token scoped to exactly (org, env)."""
        if not claims.is_scoped_to(org_id, env_id):
            log.warning(
                "runner_scope_mismatch",
                token_org=claims.org_id,
                token_env=claims.env_id,
                org_id=str(org_id),
                env_id=str(env_id),
            )
            raise UnauthorizedError("Runner token is not scoped to this environment")

        result = await self.session.execute(
            select(EnvironmentVariable)
            .where(
                EnvironmentVariable.organization_id == org_id,
                EnvironmentVariable.environment_id == env_id,
            )
            .order_by(col(EnvironmentVariable.name))
        )
        values: dict[str, str] = {}
        for variable in result.scalars().all():
            try:
                values[variable.name] = self._fernet.decrypt(
                    variable.encrypted_value.encode("ascii")
                ).decode("utf-8")
            except InvalidToken as e:
                raise ShipyardError(
                    f"Environment variable {variable.name} cannot be decrypted",
                    code="decryption_failed",
                ) from e
        return values
