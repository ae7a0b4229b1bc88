"""Build lifecycle state machine.

Every status change goes through ``BuildLifecycleTracker.apply`` with one of
the command objects below. Each command carries the full (build, app, org)
triple, which is re-validated against the stored row before anything
changes. Updates are conditional on the status that was read, so two
writers racing for the same edge cannot both succeed silently. Once a build
is ``ready`` or ``error`` nothing moves it again; a repeated callback is
rejected instead of rewriting its history.

    pending --StartBuild--> building --ReportStatus--> ready | error
                            building --ReportStatus(building)--> building
                            building --ExpireBuild--> error
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

import structlog
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import col, select

from shipyard.config import settings
from shipyard.db.models import App, AppBuild, BuildSource, BuildStatus, utcnow
from shipyard.errors import ConflictError, NotFoundError

log = structlog.get_logger()

TERMINAL_STATUSES = frozenset({BuildStatus.READY, BuildStatus.ERROR})
IN_FLIGHT_STATUSES = frozenset({BuildStatus.PENDING, BuildStatus.BUILDING})


@dataclass(frozen=True)
class CreateBuild:
    app_id: UUID
    org_id: UUID
    source: BuildSource = BuildSource.GIT


@dataclass(frozen=True)
class StartBuild:
    build_id: UUID
    app_id: UUID
    org_id: UUID


@dataclass(frozen=True)
class ReportStatus:
    """Status callback from a build job."""

    build_id: UUID
    app_id: UUID
    org_id: UUID
    status: BuildStatus
    message: str | None = None


@dataclass(frozen=True)
class ExpireBuild:
    """Stale-build expiry; issued by the sweeper only.

    ``observed_updated_at`` is the ``updated_at`` the sweeper judged stale. A
    heartbeat that lands after the scan changes it and the expiry is refused.
    """

    build_id: UUID
    app_id: UUID
    org_id: UUID
    reason: str
    observed_updated_at: datetime | None = None


BuildCommand = CreateBuild | StartBuild | ReportStatus | ExpireBuild


class BuildLifecycleTracker:
    """Applies lifecycle commands to ``app_builds`` rows."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def apply(self, command: BuildCommand) -> AppBuild:
        match command:
            case CreateBuild():
                return await self._create(command)
            case StartBuild():
                return await self._transition(
                    command.build_id,
                    command.app_id,
                    command.org_id,
                    allowed_from={BuildStatus.PENDING},
                    target=BuildStatus.BUILDING,
                    trigger="start",
                )
            case ReportStatus():
                if command.status is BuildStatus.PENDING:
                    raise ConflictError(
                        "Builds cannot be reported back to pending",
                        code="invalid_transition",
                        details={"build_id": str(command.build_id), "to": command.status.value},
                    )
                return await self._transition(
                    command.build_id,
                    command.app_id,
                    command.org_id,
                    allowed_from={BuildStatus.BUILDING},
                    target=command.status,
                    message=command.message if command.status is BuildStatus.ERROR else None,
                    trigger="callback",
                )
            case ExpireBuild():
                return await self._transition(
                    command.build_id,
                    command.app_id,
                    command.org_id,
                    allowed_from={BuildStatus.BUILDING},
                    target=BuildStatus.ERROR,
                    message=command.reason,
                    trigger="expire",
                    expected_updated_at=command.observed_updated_at,
                )
        raise TypeError(f"Unknown build command: {command!r}")

    async def get(self, build_id: UUID, app_id: UUID, org_id: UUID) -> AppBuild:
        result = await self.session.execute(
            select(AppBuild).where(
                AppBuild.id == build_id,
                AppBuild.app_id == app_id,
                AppBuild.organization_id == org_id,
            )
            .execution_options(populate_existing=True)
        )
        build = result.scalar_one_or_none()
        if build is None:
            raise NotFoundError("Build", str(build_id), app_id=str(app_id), org_id=str(org_id))
        return build

    async def list(self, app_id: UUID, org_id: UUID) -> list[AppBuild]:
        result = await self.session.execute(
            select(AppBuild)
            .where(AppBuild.app_id == app_id, AppBuild.organization_id == org_id)
            .order_by(col(AppBuild.created_at).desc())
        )
        return list(result.scalars().all())

    async def _create(self, command: CreateBuild) -> AppBuild:
        result = await self.session.execute(
            select(App).where(App.id == command.app_id, App.organization_id == command.org_id)
        )
        if result.scalar_one_or_none() is None:
            raise NotFoundError("App", str(command.app_id), org_id=str(command.org_id))

        if settings.serialize_app_builds:
            in_flight = await self.session.execute(
                select(AppBuild.id).where(
                    AppBuild.app_id == command.app_id,
                    AppBuild.organization_id == command.org_id,
                    col(AppBuild.status).in_([s.value for s in IN_FLIGHT_STATUSES]),
                )
            )
            existing = in_flight.scalars().first()
            if existing is not None:
                raise ConflictError(
                    "Another build of this app is still in progress",
                    code="build_in_progress",
                    details={"app_id": str(command.app_id), "build_id": str(existing)},
                )

        build = AppBuild(
            app_id=command.app_id,
            organization_id=command.org_id,
            status=BuildStatus.PENDING.value,
            source=command.source.value,
            platform_version=settings.platform_version,
        )
        self.session.add(build)
        await self.session.commit()
        await self.session.refresh(build)
        log.info(
            "build_created",
            build_id=str(build.id),
            app_id=str(build.app_id),
            org_id=str(build.organization_id),
            source=build.source,
        )
        return build

    async def _conditional_update(
        self,
        build: AppBuild,
        *,
        expected: str,
        target: BuildStatus,
        message: str | None,
        expected_updated_at: datetime | None = None,
    ) -> bool:
        values: dict[str, object] = {"status": target.value, "updated_at": utcnow()}
        if message is not None:
            values["error_message"] = message
        conditions = [
            col(AppBuild.id) == build.id,
            col(AppBuild.app_id) == build.app_id,
            col(AppBuild.organization_id) == build.organization_id,
            col(AppBuild.status) == expected,
        ]
        if expected_updated_at is not None:
            conditions.append(col(AppBuild.updated_at) == expected_updated_at)
        result = await self.session.execute(
            update(AppBuild)
            .where(*conditions)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def _transition(
        self,
        build_id: UUID,
        app_id: UUID,
        org_id: UUID,
        *,
        allowed_from: set[BuildStatus],
        target: BuildStatus,
        trigger: str,
        message: str | None = None,
        expected_updated_at: datetime | None = None,
    ) -> AppBuild:
        build = await self.get(build_id, app_id, org_id)
        current = BuildStatus(build.status)
        log_ctx = {
            "build_id": str(build_id),
            "app_id": str(app_id),
            "org_id": str(org_id),
            "trigger": trigger,
        }

        if current not in allowed_from:
            event = (
                "build_double_transition"
                if current == target and current in TERMINAL_STATUSES
                else "build_transition_rejected"
            )
            log.warning(event, from_status=current.value, to_status=target.value, **log_ctx)
            raise ConflictError(
                f"Build cannot move from {current.value} to {target.value}",
                code="invalid_transition",
                details={"build_id": str(build_id), "from": current.value, "to": target.value},
            )

        if await self._conditional_update(
            build,
            expected=current.value,
            target=target,
            message=message,
            expected_updated_at=expected_updated_at,
        ):
            await self.session.commit()
            await self.session.refresh(build)
            if current == target:
                log.debug("build_progress", status=target.value, **log_ctx)
            else:
                log.info(
                    "build_transition", from_status=current.value, to_status=target.value, **log_ctx
                )
            return build

        # Lost the race: someone else moved the row since we read it
        await self.session.rollback()
        build = await self.get(build_id, app_id, org_id)
        if build.status == target.value and target in TERMINAL_STATUSES:
            return await self._record_double_transition(build, target, message, log_ctx)
        raise ConflictError(
            f"Build changed to {build.status} concurrently",
            code="invalid_transition",
            details={"build_id": str(build_id), "from": build.status, "to": target.value},
        )

    async def _record_double_transition(
        self,
        build: AppBuild,
        target: BuildStatus,
        message: str | None,
        log_ctx: dict[str, str],
    ) -> AppBuild:
        """Two writers raced for the same terminal edge: last writer wins, the event is logged."""
        log.warning("build_double_transition", status=target.value, **log_ctx)
        await self._conditional_update(build, expected=target.value, target=target, message=message)
        await self.session.commit()
        await self.session.refresh(build)
        return build
