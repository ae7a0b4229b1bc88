"""Installation management: bind a ready build to an environment and activate it."""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from shipyard.auth.jwt import TokenClaims
from shipyard.db.models import (
    ActivationStatus,
    App,
    AppBuild,
    AppInstallation,
    BuildStatus,
    Environment,
    Organization,
    utcnow,
)
from shipyard.errors import (
    ActivationFailedError,
    ConflictError,
    NotFoundError,
    UnauthorizedError,
    UpstreamError,
)
from shipyard.installations.push import RuntimePushClient

log = structlog.get_logger()


@dataclass(frozen=True)
class InstallationTarget:
    """Ownership-validated entities an installation refers to."""

    org: Organization
    env: Environment
    app: App


class InstallationService:
    """Persists installations and pushes activations to tenant runtimes.

    The row is always committed before the push, so a failed push leaves a
    saved installation marked ``failed`` that can be retried with ``update``.
    """

    def __init__(self, session: AsyncSession, push_client: RuntimePushClient) -> None:
        self.session = session
        self.push_client = push_client

    async def _target(self, org_id: UUID, app_id: UUID, env_id: UUID) -> InstallationTarget:
        org = (
            await self.session.execute(select(Organization).where(Organization.id == org_id))
        ).scalar_one_or_none()
        if org is None:
            raise NotFoundError("Organization", str(org_id))

        env = (
            await self.session.execute(
                select(Environment).where(
                    Environment.id == env_id, Environment.organization_id == org_id
                )
            )
        ).scalar_one_or_none()
        if env is None:
            raise NotFoundError("Environment", str(env_id), org_id=str(org_id))

        app = (
            await self.session.execute(
                select(App).where(App.id == app_id, App.organization_id == org_id)
            )
        ).scalar_one_or_none()
        if app is None:
            raise NotFoundError("App", str(app_id), org_id=str(org_id))
        return InstallationTarget(org=org, env=env, app=app)

    async def _ready_build(self, build_id: UUID, app_id: UUID, org_id: UUID) -> AppBuild:
        build = (
            await self.session.execute(
                select(AppBuild).where(
                    AppBuild.id == build_id,
                    AppBuild.app_id == app_id,
                    AppBuild.organization_id == org_id,
                )
            )
        ).scalar_one_or_none()
        if build is None:
            raise NotFoundError("Build", str(build_id), app_id=str(app_id), org_id=str(org_id))
        if build.status != BuildStatus.READY.value:
            raise ConflictError(
                "Only ready builds can be installed",
                code="build_not_ready",
                details={"build_id": str(build_id), "status": build.status},
            )
        return build

    async def _find(self, org_id: UUID, app_id: UUID, env_id: UUID) -> AppInstallation | None:
        result = await self.session.execute(
            select(AppInstallation).where(
                AppInstallation.organization_id == org_id,
                AppInstallation.app_id == app_id,
                AppInstallation.environment_id == env_id,
            )
        )
        return result.scalar_one_or_none()

    async def install(
        self, org_id: UUID, app_id: UUID, env_id: UUID, build_id: UUID
    ) -> AppInstallation:
        """Create the installation and activate ``build_id`` on the runtime.

        Raises:
            NotFoundError: Any referenced entity is absent or owned elsewhere
            ConflictError: Build not ready, or the app is already installed here
            ActivationFailedError: Row saved, runtime push failed
        """
        target = await self._target(org_id, app_id, env_id)
        await self._ready_build(build_id, app_id, org_id)

        if await self._find(org_id, app_id, env_id) is not None:
            raise ConflictError(
                "App is already installed in this environment",
                code="already_installed",
                details={"app_id": str(app_id), "environment_id": str(env_id)},
            )

        installation = AppInstallation(
            app_id=app_id,
            environment_id=env_id,
            organization_id=org_id,
            app_build_id=build_id,
            activation_status=ActivationStatus.PENDING.value,
        )
        self.session.add(installation)
        try:
            await self.session.commit()
        except IntegrityError as e:
            await self.session.rollback()
            raise ConflictError(
                "App is already installed in this environment",
                code="already_installed",
                details={"app_id": str(app_id), "environment_id": str(env_id)},
            ) from e
        log.info(
            "installation_created",
            app_id=str(app_id),
            environment_id=str(env_id),
            build_id=str(build_id),
        )
        return await self._activate(installation, target)

    async def update(
        self, org_id: UUID, app_id: UUID, env_id: UUID, build_id: UUID
    ) -> AppInstallation:
        """Point an existing installation at ``build_id`` and re-activate."""
        target = await self._target(org_id, app_id, env_id)
        installation = await self._find(org_id, app_id, env_id)
        if installation is None:
            raise NotFoundError(
                "Installation", f"{app_id}@{env_id}", app_id=str(app_id), environment_id=str(env_id)
            )
        await self._ready_build(build_id, app_id, org_id)

        previous = installation.app_build_id
        installation.app_build_id = build_id
        installation.activation_status = ActivationStatus.PENDING.value
        installation.updated_at = utcnow()
        self.session.add(installation)
        await self.session.commit()
        log.info(
            "installation_updated",
            app_id=str(app_id),
            environment_id=str(env_id),
            build_id=str(build_id),
            previous_build_id=str(previous),
        )
        return await self._activate(installation, target)

    async def uninstall(self, org_id: UUID, app_id: UUID, env_id: UUID) -> AppInstallation:
        installation = await self._find(org_id, app_id, env_id)
        if installation is None:
            raise NotFoundError(
                "Installation", f"{app_id}@{env_id}", app_id=str(app_id), environment_id=str(env_id)
            )
        await self.session.delete(installation)
        await self.session.commit()
        log.info("installation_removed", app_id=str(app_id), environment_id=str(env_id))
        return installation

    async def list_for_environment(
        self, org_id: UUID, env_id: UUID
    ) -> list[tuple[AppInstallation, App]]:
        env = (
            await self.session.execute(
                select(Environment).where(
                    Environment.id == env_id, Environment.organization_id == org_id
                )
            )
        ).scalar_one_or_none()
        if env is None:
            raise NotFoundError("Environment", str(env_id), org_id=str(org_id))

        result = await self.session.execute(
            select(AppInstallation, App)
            .join(App, App.id == AppInstallation.app_id)
            .where(
                AppInstallation.organization_id == org_id,
                AppInstallation.environment_id == env_id,
                App.organization_id == org_id,
            )
        )
        return [(row[0], row[1]) for row in result.all()]

    async def list_for_runner(
        self, claims: TokenClaims, org_slug: str, env_slug: str
    ) -> list[tuple[AppInstallation, App]]:
        """Installations a runner loads at boot to learn which build each app serves.

        The token's slugs must name exactly the requested pair, and its ids
        must match the stored organization and environment.
        """
        if claims.org_slug != org_slug or claims.env_slug != env_slug:
            raise UnauthorizedError(
                "Runner token is not scoped to this environment",
                details={"organization_slug": org_slug, "environment_slug": env_slug},
            )

        row = (
            await self.session.execute(
                select(Organization, Environment)
                .join(Environment, Environment.organization_id == Organization.id)
                .where(Organization.slug == org_slug, Environment.slug == env_slug)
            )
        ).first()
        if row is None:
            raise NotFoundError("Environment", f"{org_slug}/{env_slug}")
        org, env = row[0], row[1]
        if not claims.is_scoped_to(org.id, env.id):
            raise UnauthorizedError(
                "Runner token is not scoped to this environment",
                details={"organization_slug": org_slug, "environment_slug": env_slug},
            )
        return await self.list_for_environment(org.id, env.id)

    async def _activate(
        self, installation: AppInstallation, target: InstallationTarget
    ) -> AppInstallation:
        try:
            await self.push_client.activate(
                target.org, target.env, target.app.slug, installation.app_build_id
            )
        except UpstreamError as e:
            installation.activation_status = ActivationStatus.FAILED.value
            installation.last_error = e.message
            installation.updated_at = utcnow()
            self.session.add(installation)
            await self.session.commit()
            raise ActivationFailedError(
                f"Installation saved but activation failed: {e.message}",
                installation=installation,
                app_id=str(installation.app_id),
                environment_id=str(installation.environment_id),
                build_id=str(installation.app_build_id),
                reason=e.code,
            ) from e

        installation.activation_status = ActivationStatus.ACTIVE.value
        installation.activated_at = utcnow()
        installation.last_error = None
        installation.updated_at = utcnow()
        self.session.add(installation)
        await self.session.commit()
        return installation
