"""Git builds, uploaded-source builds and artifact downloads."""

from __future__ import annotations

from uuid import uuid4

import pytest

from shipyard.builds.lifecycle import ReportStatus
from shipyard.builds.service import BuildService
from shipyard.db.models import BuildSource, BuildStatus
from shipyard.errors import ConflictError, NotFoundError, UpstreamError


@pytest.fixture
def service(session, orchestrator, gateway) -> BuildService:
    return BuildService(session, orchestrator, gateway)


class TestGitBuild:
    async def test_submits_job_and_marks_building(self, service, orchestrator, seed) -> None:
        build = await service.request_git_build(seed.app.id, seed.org.id)

        assert build.status == BuildStatus.BUILDING
        assert build.source == BuildSource.GIT
        orchestrator.submit.assert_awaited_once()
        app, build_id, options = orchestrator.submit.await_args.args
        assert app.id == seed.app.id
        assert build_id == build.id
        assert options.source is BuildSource.GIT
        assert options.callback_url.endswith(f"/api/app_builds/{build.id}/status")
        assert f"builds/{seed.org.id}/web/{build.id}/artifact.tar.gz" in options.artifact_upload_url

    async def test_unknown_app(self, service, seed) -> None:
        with pytest.raises(NotFoundError):
            await service.request_git_build(uuid4(), seed.org.id)

    async def test_submit_failure_marks_error(self, service, orchestrator, seed) -> None:
        orchestrator.submit.side_effect = UpstreamError("API server said no")

        with pytest.raises(UpstreamError):
            await service.request_git_build(seed.app.id, seed.org.id)

        (build,) = await service.tracker.list(seed.app.id, seed.org.id)
        assert build.status == BuildStatus.ERROR
        assert build.error_message == "API server said no"

    async def test_submit_timeout_leaves_building(self, service, orchestrator, seed) -> None:
        orchestrator.submit.side_effect = UpstreamError("slow", code="submit_timeout")

        with pytest.raises(UpstreamError):
            await service.request_git_build(seed.app.id, seed.org.id)

        (build,) = await service.tracker.list(seed.app.id, seed.org.id)
        assert build.status == BuildStatus.BUILDING

    async def test_existing_job_marks_error(self, service, orchestrator, seed) -> None:
        orchestrator.submit.side_effect = ConflictError("exists", code="job_exists")

        with pytest.raises(ConflictError):
            await service.request_git_build(seed.app.id, seed.org.id)

        (build,) = await service.tracker.list(seed.app.id, seed.org.id)
        assert build.status == BuildStatus.ERROR


class TestUploadBuild:
    async def test_upload_url_then_start(self, service, orchestrator, seed) -> None:
        build, upload = await service.request_upload(seed.app.id, seed.org.id)

        assert build.status == BuildStatus.PENDING
        assert build.source == BuildSource.UPLOAD
        assert upload.method == "PUT"
        assert upload.key == f"source/{seed.org.id}/web/{build.id}.zip"
        orchestrator.submit.assert_not_awaited()

        started = await service.start_uploaded_build(build.id, seed.app.id, seed.org.id)

        assert started.status == BuildStatus.BUILDING
        options = orchestrator.submit.await_args.args[2]
        assert options.source is BuildSource.UPLOAD
        assert upload.key in options.source_download_url
        assert "op=get_object" in options.source_download_url

    async def test_start_twice_rejected(self, service, seed) -> None:
        build, _ = await service.request_upload(seed.app.id, seed.org.id)
        await service.start_uploaded_build(build.id, seed.app.id, seed.org.id)

        with pytest.raises(ConflictError):
            await service.start_uploaded_build(build.id, seed.app.id, seed.org.id)

    async def test_git_build_cannot_be_started_as_upload(self, service, seed) -> None:
        build = await service.request_git_build(seed.app.id, seed.org.id)

        with pytest.raises(ConflictError) as exc_info:
            await service.start_uploaded_build(build.id, seed.app.id, seed.org.id)
        assert exc_info.value.code == "not_an_upload_build"

    async def test_upload_for_other_org(self, service, seed) -> None:
        build, _ = await service.request_upload(seed.app.id, seed.org.id)

        with pytest.raises(NotFoundError):
            await service.start_uploaded_build(build.id, seed.app.id, seed.other_org.id)


class TestArtifactDownload:
    async def test_requires_ready_build(self, service, seed) -> None:
        build = await service.request_git_build(seed.app.id, seed.org.id)

        with pytest.raises(ConflictError) as exc_info:
            await service.artifact_download(build.id, seed.app.id, seed.org.id)
        assert exc_info.value.code == "build_not_ready"

    async def test_ready_build_download(self, service, seed) -> None:
        build = await service.request_git_build(seed.app.id, seed.org.id)
        await service.tracker.apply(
            ReportStatus(build.id, seed.app.id, seed.org.id, BuildStatus.READY)
        )

        url = await service.artifact_download(build.id, seed.app.id, seed.org.id)

        assert url.method == "GET"
        assert url.key == f"builds/{seed.org.id}/web/{build.id}/artifact.tar.gz"
