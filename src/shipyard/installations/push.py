"""Activation push to a tenant runtime."""

from __future__ import annotations

from datetime import timedelta

import httpx
import structlog

from shipyard.auth.jwt import TokenIssuer
from shipyard.config import settings
from shipyard.db.models import Environment, Organization
from shipyard.errors import UpstreamError
from shipyard.routing import runtime_base_url

log = structlog.get_logger()


class RuntimePushClient:
    """Tells a tenant runner which build an app should serve.

    Each push authenticates with a freshly minted, short-lived runner token
    scoped to the target (organization, environment).
    """

    def __init__(
        self,
        issuer: TokenIssuer,
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
        token_ttl_seconds: int | None = None,
    ) -> None:
        self.issuer = issuer
        self.timeout = timeout or settings.push_timeout_seconds
        self.token_ttl = timedelta(seconds=token_ttl_seconds or settings.push_token_ttl_seconds)
        self._client = client
        self._owns_client = client is None

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def activate(
        self,
        org: Organization,
        env: Environment,
        app_slug: str,
        build_id: object,
    ) -> None:
        """PUT ``/apps/update/{app_slug}`` on the tenant runner.

        Raises:
            UpstreamError: Network failure or a non-2xx response
        """
        token = self.issuer.mint_runner(
            org_id=org.id,
            org_slug=org.slug,
            env_id=env.id,
            env_slug=env.slug,
            ttl=self.token_ttl,
        )
        url = f"{runtime_base_url(org.slug, env.slug, env.is_production)}/apps/update/{app_slug}"
        log_ctx = {
            "org_slug": org.slug,
            "env_slug": env.slug,
            "app_slug": app_slug,
            "build_id": str(build_id),
        }

        try:
            response = await self._http().put(
                url,
                json={"buildId": str(build_id)},
                headers={"Authorization": f"Bearer {token}"},
                timeout=self.timeout,
            )
        except httpx.HTTPError as e:
            log.warning("activation_push_unreachable", url=url, error=str(e), **log_ctx)
            raise UpstreamError(
                f"Runtime unreachable: {e}", code="runtime_unreachable", details={"url": url}
            ) from e

        if not response.is_success:
            log.warning("activation_push_rejected", url=url, status=response.status_code, **log_ctx)
            raise UpstreamError(
                f"Runtime rejected activation with HTTP {response.status_code}",
                code="runtime_rejected",
                details={"url": url, "status": response.status_code},
            )

        log.info("activation_pushed", **log_ctx)
