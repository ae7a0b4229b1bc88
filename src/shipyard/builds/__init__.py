"""Build jobs, build lifecycle and stale-build reconciliation."""

from shipyard.builds.job import BuildJobOptions, build_job_manifest, job_name, render_build_script
from shipyard.builds.lifecycle import (
    BuildLifecycleTracker,
    CreateBuild,
    ExpireBuild,
    ReportStatus,
    StartBuild,
)
from shipyard.builds.orchestrator import BuildJobOrchestrator, JobState
from shipyard.builds.reconcile import StaleBuildSweeper
from shipyard.builds.service import BuildService

__all__ = [
    "BuildJobOptions",
    "BuildJobOrchestrator",
    "BuildLifecycleTracker",
    "BuildService",
    "CreateBuild",
    "ExpireBuild",
    "JobState",
    "ReportStatus",
    "StaleBuildSweeper",
    "StartBuild",
    "build_job_manifest",
    "job_name",
    "render_build_script",
]
