"""E2E tests for the HTTP API, in-process over ASGI."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from types import SimpleNamespace

import httpx
import pytest

from shipyard.api.app import create_app
from shipyard.auth.jwt import TokenIssuer
from shipyard.auth.keys import SigningKeyStore
from shipyard.config import settings
from shipyard.db.connection import get_session
from shipyard.installations.push import RuntimePushClient


@pytest.fixture
async def platform(orchestrator, gateway, runtime, seeder) -> AsyncIterator[SimpleNamespace]:
    """Running API with a fake cluster, fake object store and stub tenant runtime."""
    keystore = SigningKeyStore(secret="e2e-auth-secret")
    push_client = RuntimePushClient(TokenIssuer(keystore), client=runtime.client())
    app = create_app(
        keystore=keystore,
        orchestrator=orchestrator,
        artifact_gateway=gateway,
        push_client=push_client,
        create_tables=True,
        run_sweeper=False,
    )
    async with app.router.lifespan_context(app):
        async with get_session() as session:
            seed = await seeder(session)
        issuer = app.state.token_issuer
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
            yield SimpleNamespace(
                client=client,
                issuer=issuer,
                seed=seed,
                service_headers={"Authorization": f"Bearer {issuer.mint_service_role('acme')}"},
                callback_headers={
                    "Authorization": f"Bearer {settings.callback_token.get_secret_value()}"
                },
            )


def _ids(seed) -> dict[str, str]:
    return {"appId": str(seed.app.id), "orgId": str(seed.org.id)}


class TestPublicEndpoints:
    async def test_health(self, platform) -> None:
        response = await platform.client.get("/api/health")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"
        assert response.json()["database"]["status"] == "healthy"

    async def test_jwks(self, platform) -> None:
        response = await platform.client.get("/api/auth/jwks")

        assert response.status_code == 200
        (key,) = response.json()["keys"]
        assert key["kty"] == "RSA"
        assert "d" not in key


class TestAuthRequired:
    async def test_missing_token(self, platform) -> None:
        response = await platform.client.post("/api/app_builds/git", json=_ids(platform.seed))

        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"
        assert response.json()["error"]["code"] == "unauthorized"

    async def test_garbage_token(self, platform) -> None:
        response = await platform.client.post(
            "/api/app_builds/git",
            json=_ids(platform.seed),
            headers={"Authorization": "Bearer not-a-token"},
        )

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "malformed_token"

    async def test_token_for_other_org(self, platform) -> None:
        token = platform.issuer.mint_service_role("globex")

        response = await platform.client.post(
            "/api/app_builds/git",
            json=_ids(platform.seed),
            headers={"Authorization": f"Bearer {token}"},
        )

        assert response.status_code == 401

    async def test_anon_token_cannot_build(self, platform) -> None:
        token = platform.issuer.mint_anon("acme")

        response = await platform.client.post(
            "/api/app_builds/git",
            json=_ids(platform.seed),
            headers={"Authorization": f"Bearer {token}"},
        )

        assert response.status_code == 401

    async def test_callback_requires_static_token(self, platform, orchestrator) -> None:
        created = await platform.client.post(
            "/api/app_builds/git", json=_ids(platform.seed), headers=platform.service_headers
        )
        build_id = created.json()["buildId"]

        response = await platform.client.patch(
            f"/api/app_builds/{build_id}/status",
            json={**_ids(platform.seed), "status": "ready"},
            headers=platform.service_headers,
        )

        assert response.status_code == 401


class TestGitBuildToInstall:
    async def test_build_callback_install(self, platform, orchestrator, runtime) -> None:
        seed = platform.seed
        created = await platform.client.post(
            "/api/app_builds/git", json=_ids(seed), headers=platform.service_headers
        )
        assert created.status_code == 201
        body = created.json()
        assert body["success"] is True
        assert body["build"]["status"] == "building"
        orchestrator.submit.assert_awaited_once()
        build_id = body["buildId"]

        progress = await platform.client.patch(
            f"/api/app_builds/{build_id}/status",
            json={**_ids(seed), "status": "building", "message": "Running build command"},
            headers=platform.callback_headers,
        )
        assert progress.json()["build"]["status"] == "building"

        ready = await platform.client.patch(
            f"/api/app_builds/{build_id}/status",
            json={**_ids(seed), "status": "ready", "message": "done"},
            headers=platform.callback_headers,
        )
        assert ready.status_code == 200
        assert ready.json()["build"]["status"] == "ready"

        repeated = await platform.client.patch(
            f"/api/app_builds/{build_id}/status",
            json={**_ids(seed), "status": "ready", "message": "done"},
            headers=platform.callback_headers,
        )
        assert repeated.status_code == 409
        assert repeated.json()["error"]["code"] == "invalid_transition"

        artifact = await platform.client.get(
            f"/api/app_builds/{build_id}/artifact",
            params=_ids(seed),
            headers=platform.service_headers,
        )
        assert artifact.status_code == 200
        assert artifact.json()["method"] == "GET"

        installed = await platform.client.post(
            "/api/app_installations",
            json={
                "app_id": str(seed.app.id),
                "environment_id": str(seed.env.id),
                "organization_id": str(seed.org.id),
                "app_build_id": build_id,
            },
            headers=platform.service_headers,
        )
        assert installed.status_code == 201
        assert installed.json()["activation_status"] == "active"
        (push,) = runtime.requests
        assert push.url.path == "/apps/update/web"
        assert json.loads(push.content) == {"buildId": build_id}

        listed = await platform.client.get(
            "/api/app_installations",
            params={"environment_id": str(seed.env.id), "organization_id": str(seed.org.id)},
            headers=platform.service_headers,
        )
        (entry,) = listed.json()
        assert entry["app"]["slug"] == "web"
        assert entry["app_build_id"] == build_id

        runner = platform.issuer.mint_runner(
            org_id=seed.org.id, org_slug="acme", env_id=seed.env.id, env_slug="dev"
        )
        boot = await platform.client.get(
            "/api/app_installations/runner",
            params={"organizationSlug": "acme", "environmentSlug": "dev"},
            headers={"Authorization": f"Bearer {runner}"},
        )
        assert boot.status_code == 200
        (served,) = boot.json()
        assert served["app"]["slug"] == "web"
        assert served["app_build_id"] == build_id

        prod_runner = platform.issuer.mint_runner(
            org_id=seed.org.id, org_slug="acme", env_id=seed.prod.id, env_slug="prod"
        )
        denied = await platform.client.get(
            "/api/app_installations/runner",
            params={"organizationSlug": "acme", "environmentSlug": "dev"},
            headers={"Authorization": f"Bearer {prod_runner}"},
        )
        assert denied.status_code == 401

        service_token = await platform.client.get(
            "/api/app_installations/runner",
            params={"organizationSlug": "acme", "environmentSlug": "dev"},
            headers=platform.service_headers,
        )
        assert service_token.status_code == 401

    async def test_callback_cannot_revert_to_pending(self, platform) -> None:
        seed = platform.seed
        created = await platform.client.post(
            "/api/app_builds/git", json=_ids(seed), headers=platform.service_headers
        )

        response = await platform.client.patch(
            f"/api/app_builds/{created.json()['buildId']}/status",
            json={**_ids(seed), "status": "pending"},
            headers=platform.callback_headers,
        )

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "invalid_transition"

    async def test_callback_for_wrong_org_is_not_found(self, platform) -> None:
        seed = platform.seed
        created = await platform.client.post(
            "/api/app_builds/git", json=_ids(seed), headers=platform.service_headers
        )

        response = await platform.client.patch(
            f"/api/app_builds/{created.json()['buildId']}/status",
            json={"appId": str(seed.app.id), "orgId": str(seed.other_org.id), "status": "ready"},
            headers=platform.callback_headers,
        )

        assert response.status_code == 404

    async def test_failed_activation_is_reported(self, platform, runtime) -> None:
        seed = platform.seed
        build_id = (
            await platform.client.post(
                "/api/app_builds/git", json=_ids(seed), headers=platform.service_headers
            )
        ).json()["buildId"]
        await platform.client.patch(
            f"/api/app_builds/{build_id}/status",
            json={**_ids(seed), "status": "ready"},
            headers=platform.callback_headers,
        )
        runtime.status_code = 500

        response = await platform.client.post(
            "/api/app_installations",
            json={
                "app_id": str(seed.app.id),
                "environment_id": str(seed.env.id),
                "organization_id": str(seed.org.id),
                "app_build_id": build_id,
            },
            headers=platform.service_headers,
        )

        assert response.status_code == 502
        error = response.json()["error"]
        assert error["code"] == "activation_failed"
        assert error["details"]["installation_saved"] is True


class TestUploadBuild:
    async def test_signed_url_then_start(self, platform, orchestrator) -> None:
        seed = platform.seed
        signed = await platform.client.post(
            "/api/app_builds/s3/signed_url", json=_ids(seed), headers=platform.service_headers
        )
        assert signed.status_code == 201
        body = signed.json()
        build_id = body["appBuild"]["id"]
        assert body["appBuild"]["status"] == "pending"
        assert body["upload"]["method"] == "PUT"
        assert body["uploadUrl"] == body["upload"]["url"]
        orchestrator.submit.assert_not_awaited()

        started = await platform.client.post(
            "/api/app_builds/s3",
            json={**_ids(seed), "buildId": build_id},
            headers=platform.service_headers,
        )

        assert started.status_code == 200
        assert started.json()["build"]["status"] == "building"
        options = orchestrator.submit.await_args.args[2]
        assert options.source_download_url is not None


class TestApps:
    async def test_create_and_duplicate_slug(self, platform) -> None:
        payload = {
            "organization_id": str(platform.seed.org.id),
            "slug": "api",
            "git_repo_url": "https://github.com/acme/api.git",
        }

        created = await platform.client.post(
            "/api/apps", json=payload, headers=platform.service_headers
        )
        duplicate = await platform.client.post(
            "/api/apps", json=payload, headers=platform.service_headers
        )

        assert created.status_code == 201
        assert created.json()["build_command"] == "bun run build"
        assert duplicate.status_code == 409
        assert duplicate.json()["error"]["code"] == "slug_taken"


class TestRunnerEnvironmentVariables:
    async def test_scoped_runner_reads_values(self, platform) -> None:
        seed = platform.seed
        stored = await platform.client.post(
            "/api/environment_variables",
            json={
                "organization_id": str(seed.org.id),
                "environment_id": str(seed.env.id),
                "name": "API_KEY",
                "value": "sk-123",
            },
            headers=platform.service_headers,
        )
        assert stored.status_code == 201
        assert "value" not in stored.json()

        runner = platform.issuer.mint_runner(
            org_id=seed.org.id, org_slug="acme", env_id=seed.env.id, env_slug="dev"
        )
        response = await platform.client.get(
            f"/api/environment_variables/{seed.org.id}/{seed.env.id}",
            headers={"Authorization": f"Bearer {runner}"},
        )
        assert response.status_code == 200
        assert response.json() == {"API_KEY": "sk-123"}

        other = platform.issuer.mint_runner(
            org_id=seed.org.id, org_slug="acme", env_id=seed.prod.id, env_slug="prod"
        )
        denied = await platform.client.get(
            f"/api/environment_variables/{seed.org.id}/{seed.env.id}",
            headers={"Authorization": f"Bearer {other}"},
        )
        assert denied.status_code == 401


class TestProvisioning:
    async def test_generator_token_required(self, platform) -> None:
        response = await platform.client.post(
            "/api/v1/getparams.execute", headers=platform.service_headers
        )
        assert response.status_code == 401

    async def test_parameters(self, platform) -> None:
        token = settings.generator_token.get_secret_value()

        response = await platform.client.post(
            "/api/v1/getparams.execute",
            json={"input": {}},
            headers={"Authorization": f"Bearer {token}"},
        )

        assert response.status_code == 200
        parameters = response.json()["output"]["parameters"]
        assert [p["environment_slug"] for p in parameters] == ["dev", "prod", "dev"]
        assert parameters[0]["runner_host"] == "acme-dev.127.0.0.1.nip.io"

    async def test_production_rejects_spoofed_forwarded_host(self, platform, monkeypatch) -> None:
        monkeypatch.setattr(settings, "environment", "production")
        monkeypatch.setattr(settings, "generator_internal_host", "10.0.0.9")
        headers = {
            "Authorization": f"Bearer {settings.generator_token.get_secret_value()}",
            "Host": "10.0.0.9",
            "X-Forwarded-Host": "10.0.0.9",
            "X-Forwarded-For": "10.0.0.9",
        }

        response = await platform.client.post("/api/v1/getparams.execute", headers=headers)

        assert response.status_code == 401

    async def test_production_accepts_internal_peer(self, platform, monkeypatch) -> None:
        # The in-process client connects from 127.0.0.1
        monkeypatch.setattr(settings, "environment", "production")
        monkeypatch.setattr(settings, "generator_internal_host", "127.0.0.1")
        headers = {"Authorization": f"Bearer {settings.generator_token.get_secret_value()}"}

        response = await platform.client.post("/api/v1/getparams.execute", headers=headers)

        assert response.status_code == 200

    async def test_production_trusts_forwarded_for_from_proxy(
        self, platform, monkeypatch
    ) -> None:
        monkeypatch.setattr(settings, "environment", "production")
        monkeypatch.setattr(settings, "generator_internal_host", "10.0.0.9")
        monkeypatch.setattr(settings, "trusted_proxies", ["127.0.0.1"])
        headers = {
            "Authorization": f"Bearer {settings.generator_token.get_secret_value()}",
            "X-Forwarded-For": "203.0.113.7, 10.0.0.9",
        }

        response = await platform.client.post("/api/v1/getparams.execute", headers=headers)

        assert response.status_code == 200
