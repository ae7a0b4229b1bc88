"""Build job submission against the Kubernetes batch API."""

from __future__ import annotations

import asyncio
import inspect
from enum import StrEnum
from typing import Any

import structlog
from kubernetes_asyncio import client as k8s_client, config as k8s_config
from kubernetes_asyncio.client.exceptions import ApiException

from shipyard.builds.job import BuildJobOptions, build_job_manifest, job_name
from shipyard.config import settings
from shipyard.db.models import App
from shipyard.errors import ConflictError, UpstreamError

log = structlog.get_logger()


class JobState(StrEnum):
    ACTIVE = "active"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    MISSING = "missing"


class BuildJobOrchestrator:
    """Submits one Job per build and reports its coarse state.

    Submission is never retried: a timed-out create may or may not have
    reached the API server, and a second create would collide on the
    deterministic job name anyway.
    """

    def __init__(
        self,
        *,
        namespace: str | None = None,
        submit_timeout: float | None = None,
        batch_api: Any | None = None,
    ) -> None:
        self.namespace = namespace or settings.k8s_namespace
        self.submit_timeout = submit_timeout or settings.k8s_submit_timeout_seconds
        self._batch_api = batch_api
        self._k8s_error: str | None = None

    @property
    def runtime_error(self) -> str | None:
        """Latest configuration error for diagnostics."""
        return self._k8s_error

    async def _maybe_await(self, value: Any) -> Any:
        if inspect.isawaitable(value):
            return await value
        return value

    async def _ensure_batch_api(self) -> Any:
        if self._batch_api is not None:
            return self._batch_api

        load_errors: list[str] = []
        configured = False
        try:
            await self._maybe_await(k8s_config.load_incluster_config())
            configured = True
        except k8s_config.ConfigException as e:
            load_errors.append(f"incluster={e}")

        if not configured:
            try:
                await self._maybe_await(k8s_config.load_kube_config())
                configured = True
            except (k8s_config.ConfigException, OSError) as e:
                load_errors.append(f"kubeconfig={e}")

        if not configured:
            self._k8s_error = (
                "Kubernetes configuration not found; "
                "tried in-cluster and local kubeconfig. Details: " + "; ".join(load_errors)
            )
            log.warning("build_k8s_config_unavailable", error=self._k8s_error)
            raise UpstreamError(self._k8s_error, code="orchestrator_unavailable")

        self._batch_api = k8s_client.BatchV1Api()
        self._k8s_error = None
        log.info("build_k8s_ready", namespace=self.namespace)
        return self._batch_api

    async def submit(self, app: App, build_id: object, options: BuildJobOptions) -> str:
        """Create the build Job and return its name.

        Raises:
            ConflictError: A job with this build's name already exists
            UpstreamError: Submission timed out or the API rejected it
        """
        batch_api = await self._ensure_batch_api()
        manifest = build_job_manifest(app, build_id, options, namespace=self.namespace)
        name = manifest["metadata"]["name"]

        try:
            await asyncio.wait_for(
                batch_api.create_namespaced_job(namespace=self.namespace, body=manifest),
                timeout=self.submit_timeout,
            )
        except TimeoutError as e:
            log.warning("build_job_submit_timeout", job_name=name, build_id=str(build_id))
            raise UpstreamError(
                f"Timed out submitting build job {name}",
                code="submit_timeout",
                details={"job_name": name, "build_id": str(build_id)},
            ) from e
        except ApiException as e:
            if e.status == 409:
                raise ConflictError(
                    f"Build job {name} already exists",
                    code="job_exists",
                    details={"job_name": name, "build_id": str(build_id)},
                ) from e
            log.error("build_job_submit_failed", job_name=name, status=e.status, reason=e.reason)
            raise UpstreamError(
                f"Failed to submit build job {name}: {e.reason}",
                details={"job_name": name, "status": e.status},
            ) from e

        log.info(
            "build_job_submitted",
            job_name=name,
            build_id=str(build_id),
            app_id=str(app.id),
            source=options.source.value,
        )
        return name

    async def job_state(self, app_id: object, build_id: object) -> JobState:
        """Coarse job state for reconciliation."""
        batch_api = await self._ensure_batch_api()
        name = job_name(app_id, build_id)
        try:
            job = await batch_api.read_namespaced_job(name=name, namespace=self.namespace)
        except ApiException as e:
            if e.status == 404:
                return JobState.MISSING
            raise UpstreamError(
                f"Failed to read build job {name}: {e.reason}",
                details={"job_name": name, "status": e.status},
            ) from e

        status = getattr(job, "status", None)
        if getattr(status, "succeeded", None):
            return JobState.SUCCEEDED
        if getattr(status, "failed", None):
            return JobState.FAILED
        return JobState.ACTIVE

    async def close(self) -> None:
        api_client = getattr(self._batch_api, "api_client", None)
        if api_client is not None and hasattr(api_client, "close"):
            await self._maybe_await(api_client.close())
