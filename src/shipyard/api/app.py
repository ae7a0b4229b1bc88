"""FastAPI application factory.

Long-lived collaborators (key store, token issuer/verifier, job
orchestrator, artifact gateway, runtime push client) are constructed once in
the lifespan and shared through ``app.state``. Tests pass their own.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import structlog
from fastapi import APIRouter, FastAPI

from shipyard import __version__
from shipyard.api.errors import register_exception_handlers
from shipyard.api.routes import (
    apps,
    auth,
    builds,
    environment_variables,
    health,
    installations,
    provisioning,
)
from shipyard.auth.jwt import LocalKeySet, RemoteKeySet, TokenIssuer, TokenVerifier
from shipyard.auth.keys import SigningKeyStore
from shipyard.builds.orchestrator import BuildJobOrchestrator
from shipyard.builds.reconcile import StaleBuildSweeper
from shipyard.config import settings
from shipyard.db.connection import close_db, init_db
from shipyard.installations.push import RuntimePushClient
from shipyard.storage.artifacts import ArtifactGateway

log = structlog.get_logger()


def create_app(
    *,
    keystore: SigningKeyStore | None = None,
    orchestrator: BuildJobOrchestrator | Any | None = None,
    artifact_gateway: ArtifactGateway | None = None,
    push_client: RuntimePushClient | None = None,
    create_tables: bool = False,
    run_sweeper: bool | None = None,
) -> FastAPI:
    """Build the API app.

    Args:
        keystore: Signing key store (default: database-backed store)
        orchestrator: Build job orchestrator (default: Kubernetes)
        artifact_gateway: Presigning gateway (default: S3 via aioboto3)
        push_client: Runtime push client (default: httpx)
        create_tables: Create tables on startup instead of relying on migrations
        run_sweeper: Run the stale build sweeper (default: settings)
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await init_db(create_tables=create_tables)

        store = keystore or SigningKeyStore()
        await store.ensure_keypair()
        issuer = TokenIssuer(store)
        key_source = RemoteKeySet(settings.jwks_url) if settings.jwks_url else LocalKeySet(store)
        job_orchestrator = orchestrator or BuildJobOrchestrator()
        pusher = push_client or RuntimePushClient(issuer)

        app.state.keystore = store
        app.state.token_issuer = issuer
        app.state.token_verifier = TokenVerifier(key_source)
        app.state.orchestrator = job_orchestrator
        app.state.artifact_gateway = artifact_gateway or ArtifactGateway()
        app.state.push_client = pusher

        stop_event = asyncio.Event()
        sweeper_task: asyncio.Task[None] | None = None
        sweep = settings.build_sweep_enabled if run_sweeper is None else run_sweeper
        if sweep:
            sweeper = StaleBuildSweeper(job_orchestrator)
            sweeper_task = asyncio.create_task(sweeper.run(stop_event))

        log.info("api_started", version=__version__, environment=settings.environment)
        try:
            yield
        finally:
            stop_event.set()
            if sweeper_task is not None:
                sweeper_task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await sweeper_task
            if push_client is None:
                await pusher.close()
            if orchestrator is None:
                await job_orchestrator.close()
            await close_db()
            log.info("api_stopped")

    app = FastAPI(
        title="Shipyard",
        description="Build-and-deploy orchestration core",
        version=__version__,
        lifespan=lifespan,
    )
    register_exception_handlers(app)

    api = APIRouter(prefix="/api")
    for module in (auth, apps, builds, installations, environment_variables, provisioning, health):
        api.include_router(module.router)
    app.include_router(api)
    return app
