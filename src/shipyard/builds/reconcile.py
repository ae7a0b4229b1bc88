"""Stale build reconciliation.

A build job that dies without calling back would leave its build in
``building`` forever. The sweeper expires such builds once they have had no
update for ``stale_after`` and their Job is gone or failed, or
unconditionally once they are twice that old.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from datetime import timedelta
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import col, select

from shipyard.builds.lifecycle import BuildLifecycleTracker, ExpireBuild
from shipyard.builds.orchestrator import BuildJobOrchestrator, JobState
from shipyard.config import settings
from shipyard.db.connection import get_session
from shipyard.db.models import AppBuild, BuildStatus, utcnow
from shipyard.errors import ConflictError, UpstreamError

log = structlog.get_logger()

_DEAD_JOB_STATES = frozenset({JobState.MISSING, JobState.FAILED})


class StaleBuildSweeper:
    """Periodically moves abandoned ``building`` builds to ``error``."""

    def __init__(
        self,
        orchestrator: BuildJobOrchestrator,
        *,
        session_factory: Callable[[], AbstractAsyncContextManager[AsyncSession]] = get_session,
        stale_after_seconds: int | None = None,
        interval_seconds: int | None = None,
    ) -> None:
        self.orchestrator = orchestrator
        self._session_factory = session_factory
        self.stale_after = timedelta(seconds=stale_after_seconds or settings.build_stale_after_seconds)
        self.interval_seconds = interval_seconds or settings.build_sweep_interval_seconds

    async def _expiry_reason(self, app_id: UUID, build_id: UUID, age: timedelta) -> str | None:
        if age > self.stale_after * 2:
            return f"Build made no progress for {int(age.total_seconds())}s"
        try:
            state = await self.orchestrator.job_state(app_id, build_id)
        except UpstreamError as e:
            log.warning("build_sweep_job_state_failed", build_id=str(build_id), error=e.message)
            return None
        if state in _DEAD_JOB_STATES:
            return f"Build job is {state.value} without reporting a final status"
        return None

    async def sweep_once(self) -> int:
        """Expire every stale build that qualifies. Returns how many were expired."""
        now = utcnow()
        cutoff = now - self.stale_after
        expired = 0

        async with self._session_factory() as session:
            result = await session.execute(
                select(
                    AppBuild.id, AppBuild.app_id, AppBuild.organization_id, AppBuild.updated_at
                ).where(
                    AppBuild.status == BuildStatus.BUILDING.value,
                    col(AppBuild.updated_at) < cutoff,
                )
            )
            candidates = list(result.all())
            tracker = BuildLifecycleTracker(session)

            for build_id, app_id, org_id, updated_at in candidates:
                reason = await self._expiry_reason(app_id, build_id, now - updated_at)
                if reason is None:
                    continue
                try:
                    await tracker.apply(
                        ExpireBuild(build_id, app_id, org_id, reason, observed_updated_at=updated_at)
                    )
                except ConflictError:
                    # A callback or heartbeat landed between the scan and the expiry
                    log.info("build_sweep_skipped", build_id=str(build_id))
                    continue
                expired += 1
                log.info("build_expired", build_id=str(build_id), reason=reason)

        if candidates:
            log.info("build_sweep_completed", candidates=len(candidates), expired=expired)
        return expired

    async def run(self, stop_event: asyncio.Event | None = None) -> None:
        """Sweep every ``interval_seconds`` until ``stop_event`` is set."""
        event = stop_event or asyncio.Event()
        log.info("build_sweep_started", interval=self.interval_seconds)

        while not event.is_set():
            try:
                await self.sweep_once()
            except Exception as e:
                log.warning("build_sweep_failed", error=str(e))

            try:
                await asyncio.wait_for(event.wait(), timeout=self.interval_seconds)
            except TimeoutError:
                continue

        log.info("build_sweep_stopped")
