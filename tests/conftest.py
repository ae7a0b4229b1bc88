"""Shared fixtures.

Every test that touches the database gets a fresh in-memory SQLite engine;
the URL must be in the environment before ``shipyard.config`` is imported.
"""

import os

os.environ["SHIPYARD_DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["SHIPYARD_ENVIRONMENT"] = "development"
os.environ["SHIPYARD_BUILD_SWEEP_ENABLED"] = "false"

from collections.abc import AsyncIterator  # noqa: E402
from contextlib import asynccontextmanager  # noqa: E402
from types import SimpleNamespace  # noqa: E402
from typing import Any  # noqa: E402
from unittest.mock import AsyncMock  # noqa: E402

import httpx  # noqa: E402
import pytest  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: E402

from shipyard.auth.jwt import LocalKeySet, TokenIssuer, TokenVerifier  # noqa: E402
from shipyard.auth.keys import SigningKeyStore  # noqa: E402
from shipyard.builds.lifecycle import (  # noqa: E402
    BuildLifecycleTracker,
    CreateBuild,
    ReportStatus,
    StartBuild,
)
from shipyard.db.connection import close_db, get_session, init_db  # noqa: E402
from shipyard.db.models import (  # noqa: E402
    App,
    AppBuild,
    BuildStatus,
    Environment,
    Organization,
)
from shipyard.storage.artifacts import ArtifactGateway  # noqa: E402

TEST_AUTH_SECRET = "test-auth-secret"  # noqa: S105


@pytest.fixture
async def db() -> AsyncIterator[None]:
    await init_db(create_tables=True)
    yield
    await close_db()


@pytest.fixture
async def session(db: None) -> AsyncIterator[AsyncSession]:
    async with get_session() as s:
        yield s


@pytest.fixture
async def keystore(db: None) -> SigningKeyStore:
    store = SigningKeyStore(secret=TEST_AUTH_SECRET)
    await store.ensure_keypair()
    return store


@pytest.fixture
def issuer(keystore: SigningKeyStore) -> TokenIssuer:
    return TokenIssuer(keystore)


@pytest.fixture
def verifier(keystore: SigningKeyStore) -> TokenVerifier:
    return TokenVerifier(LocalKeySet(keystore))


async def seed_tenants(session: AsyncSession) -> SimpleNamespace:
    """Two organizations; acme has a dev and a prod environment and one app."""
    acme = Organization(name="Acme", slug="acme")
    globex = Organization(name="Globex", slug="globex")
    dev = Environment(organization_id=acme.id, slug="dev", name="Development")
    prod = Environment(organization_id=acme.id, slug="prod", is_production=True, runner_count=3)
    globex_dev = Environment(organization_id=globex.id, slug="dev")
    app = App(
        organization_id=acme.id,
        slug="web",
        git_repo_url="https://github.com/acme/web.git",
        git_repo_branch="main",
    )
    session.add_all([acme, globex])
    await session.flush()
    session.add_all([dev, prod, globex_dev, app])
    await session.commit()
    return SimpleNamespace(org=acme, other_org=globex, env=dev, prod=prod, other_env=globex_dev, app=app)


@pytest.fixture
async def seed(session: AsyncSession) -> SimpleNamespace:
    return await seed_tenants(session)


async def make_ready_build(session: AsyncSession, app: App) -> AppBuild:
    tracker = BuildLifecycleTracker(session)
    build = await tracker.apply(CreateBuild(app.id, app.organization_id))
    await tracker.apply(StartBuild(build.id, app.id, app.organization_id))
    return await tracker.apply(
        ReportStatus(build.id, app.id, app.organization_id, BuildStatus.READY)
    )


class FakeS3Client:
    """Stands in for an aioboto3 S3 client; only presigning is used."""

    def __init__(self) -> None:
        self.generate_presigned_url = AsyncMock(side_effect=self._sign)

    async def _sign(self, operation: str, Params: dict[str, Any], ExpiresIn: int) -> str:  # noqa: N803
        return f"https://s3.test/{Params['Bucket']}/{Params['Key']}?op={operation}&ttl={ExpiresIn}"


@pytest.fixture
def s3_client() -> FakeS3Client:
    return FakeS3Client()


@pytest.fixture
def gateway(s3_client: FakeS3Client) -> ArtifactGateway:
    @asynccontextmanager
    async def client_factory() -> AsyncIterator[FakeS3Client]:
        yield s3_client

    return ArtifactGateway(bucket="builds", expires_in=900, timeout=1, client_factory=client_factory)


@pytest.fixture
def orchestrator() -> SimpleNamespace:
    """Records submissions instead of talking to a cluster."""
    return SimpleNamespace(
        submit=AsyncMock(return_value="build-job"),
        job_state=AsyncMock(),
        close=AsyncMock(),
    )


class RuntimeStub:
    """Tenant runner double behind ``httpx.MockTransport``."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.status_code = 200
        self.error: Exception | None = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return httpx.Response(self.status_code, json={"ok": self.status_code < 400})

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


@pytest.fixture
def runtime() -> RuntimeStub:
    return RuntimeStub()


@pytest.fixture
def ready_build(session: AsyncSession):
    """Factory for builds that went pending -> building -> ready."""

    async def _make(app: App) -> AppBuild:
        return await make_ready_build(session, app)

    return _make


@pytest.fixture
def seeder():
    """``seed_tenants`` for tests that open their own session."""
    return seed_tenants
