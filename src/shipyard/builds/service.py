"""Build request flows: git builds, client uploads, artifact downloads."""

from __future__ import annotations

from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from shipyard.builds.job import BuildJobOptions, callback_url
from shipyard.builds.lifecycle import BuildLifecycleTracker, CreateBuild, ReportStatus, StartBuild
from shipyard.builds.orchestrator import BuildJobOrchestrator
from shipyard.db.models import App, AppBuild, BuildSource, BuildStatus
from shipyard.errors import ConflictError, NotFoundError, ShipyardError, UpstreamError
from shipyard.storage.artifacts import ArtifactGateway, ArtifactKind, PresignedUrl

log = structlog.get_logger()


class BuildService:
    """Creates builds and hands them to the job orchestrator."""

    def __init__(
        self,
        session: AsyncSession,
        orchestrator: BuildJobOrchestrator,
        gateway: ArtifactGateway,
    ) -> None:
        self.session = session
        self.orchestrator = orchestrator
        self.gateway = gateway
        self.tracker = BuildLifecycleTracker(session)

    async def _get_app(self, app_id: UUID, org_id: UUID) -> App:
        result = await self.session.execute(
            select(App).where(App.id == app_id, App.organization_id == org_id)
        )
        app = result.scalar_one_or_none()
        if app is None:
            raise NotFoundError("App", str(app_id), org_id=str(org_id))
        return app

    async def request_git_build(self, app_id: UUID, org_id: UUID) -> AppBuild:
        """Create a build from the app's repository and submit its job."""
        app = await self._get_app(app_id, org_id)
        build = await self.tracker.apply(CreateBuild(app_id, org_id, BuildSource.GIT))
        build = await self.tracker.apply(StartBuild(build.id, app_id, org_id))
        return await self._submit(app, build, source_download_url=None)

    async def request_upload(self, app_id: UUID, org_id: UUID) -> tuple[AppBuild, PresignedUrl]:
        """Create a pending upload build and a presigned PUT URL for its source bundle."""
        app = await self._get_app(app_id, org_id)
        build = await self.tracker.apply(CreateBuild(app_id, org_id, BuildSource.UPLOAD))
        upload = await self.gateway.presign_upload(ArtifactKind.SOURCE, org_id, app.slug, build.id)
        log.info("build_upload_url_issued", build_id=str(build.id), key=upload.key)
        return build, upload

    async def start_uploaded_build(self, build_id: UUID, app_id: UUID, org_id: UUID) -> AppBuild:
        """The client finished uploading; start the job from the bundle."""
        app = await self._get_app(app_id, org_id)
        build = await self.tracker.get(build_id, app_id, org_id)
        if build.source != BuildSource.UPLOAD.value:
            raise ConflictError(
                "Build was not created for an uploaded source bundle",
                code="not_an_upload_build",
                details={"build_id": str(build_id)},
            )
        build = await self.tracker.apply(StartBuild(build_id, app_id, org_id))
        try:
            download = await self.gateway.presign_download(
                ArtifactKind.SOURCE, org_id, app.slug, build.id
            )
        except UpstreamError as e:
            await self._mark_failed(build, f"Failed to presign source download: {e.message}")
            raise
        return await self._submit(app, build, source_download_url=download.url)

    async def artifact_download(self, build_id: UUID, app_id: UUID, org_id: UUID) -> PresignedUrl:
        """Presigned GET for a ready build's artifact."""
        app = await self._get_app(app_id, org_id)
        build = await self.tracker.get(build_id, app_id, org_id)
        if build.status != BuildStatus.READY.value:
            raise ConflictError(
                "Build has no artifact yet",
                code="build_not_ready",
                details={"build_id": str(build_id), "status": build.status},
            )
        return await self.gateway.presign_download(ArtifactKind.ARTIFACT, org_id, app.slug, build.id)

    async def _submit(
        self, app: App, build: AppBuild, *, source_download_url: str | None
    ) -> AppBuild:
        try:
            artifact = await self.gateway.presign_upload(
                ArtifactKind.ARTIFACT, app.organization_id, app.slug, build.id
            )
            options = BuildJobOptions(
                callback_url=callback_url(build.id),
                source_download_url=source_download_url,
                artifact_upload_url=artifact.url,
            )
            await self.orchestrator.submit(app, build.id, options)
        except UpstreamError as e:
            if e.code == "submit_timeout":
                # The job may exist; leave it building for the callback or the sweeper
                log.warning("build_submit_outcome_unknown", build_id=str(build.id))
                raise
            await self._mark_failed(build, e.message)
            raise
        except ShipyardError as e:
            await self._mark_failed(build, e.message)
            raise
        return build

    async def _mark_failed(self, build: AppBuild, message: str) -> None:
        await self.tracker.apply(
            ReportStatus(build.id, build.app_id, build.organization_id, BuildStatus.ERROR, message)
        )
        log.warning("build_submit_failed", build_id=str(build.id), error=message)
