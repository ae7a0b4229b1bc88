"""Deterministic object keys and presigned transfer URLs for build artifacts.

Build jobs and clients never receive object-store credentials; they get a
time-limited URL for exactly one object. Keys are a pure function of the
build's identity so any component can reconstruct them.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from typing import Any

import aioboto3
import structlog

from shipyard.config import settings
from shipyard.db.models import AppBuild
from shipyard.errors import UpstreamError

log = structlog.get_logger()


class ArtifactKind(StrEnum):
    SOURCE = "source"
    ARTIFACT = "artifact"


CONTENT_TYPES: dict[ArtifactKind, str] = {
    ArtifactKind.SOURCE: "application/zip",
    ArtifactKind.ARTIFACT: "application/gzip",
}


def object_key(kind: ArtifactKind, org_id: object, app_slug: str, build_id: object) -> str:
    """Object key for one build's source bundle or output artifact."""
    if kind is ArtifactKind.SOURCE:
        return f"source/{org_id}/{app_slug}/{build_id}.zip"
    return f"builds/{org_id}/{app_slug}/{build_id}/artifact.tar.gz"


def object_key_for_build(kind: ArtifactKind, build: AppBuild, app_slug: str) -> str:
    return object_key(kind, build.organization_id, app_slug, build.id)


@dataclass(frozen=True)
class PresignedUrl:
    url: str
    method: str
    key: str
    content_type: str
    expires_at: datetime

    def to_dict(self) -> dict[str, str]:
        return {
            "url": self.url,
            "method": self.method,
            "key": self.key,
            "contentType": self.content_type,
            "expiresAt": self.expires_at.isoformat(),
        }


ClientFactory = Callable[[], AbstractAsyncContextManager[Any]]


class ArtifactGateway:
    """Presigns PUT/GET URLs against the build bucket."""

    def __init__(
        self,
        *,
        bucket: str | None = None,
        expires_in: int | None = None,
        timeout: float | None = None,
        client_factory: ClientFactory | None = None,
    ) -> None:
        self.bucket = bucket or settings.s3_bucket
        self.expires_in = expires_in or settings.s3_presign_expiry_seconds
        self.timeout = timeout or settings.s3_presign_timeout_seconds
        self._client_factory = client_factory or self._default_client_factory()

    @staticmethod
    def _default_client_factory() -> ClientFactory:
        session = aioboto3.Session()
        kwargs: dict[str, Any] = {"region_name": settings.s3_region}
        if settings.s3_endpoint_url:
            kwargs["endpoint_url"] = settings.s3_endpoint_url
        access_key = settings.s3_access_key_id.get_secret_value()
        secret_key = settings.s3_secret_access_key.get_secret_value()
        if access_key and secret_key:
            kwargs["aws_access_key_id"] = access_key
            kwargs["aws_secret_access_key"] = secret_key
        return lambda: session.client("s3", **kwargs)

    async def presign_upload(
        self, kind: ArtifactKind, org_id: object, app_slug: str, build_id: object
    ) -> PresignedUrl:
        return await self._presign("put_object", "PUT", kind, org_id, app_slug, build_id)

    async def presign_download(
        self, kind: ArtifactKind, org_id: object, app_slug: str, build_id: object
    ) -> PresignedUrl:
        return await self._presign("get_object", "GET", kind, org_id, app_slug, build_id)

    async def _presign(
        self,
        operation: str,
        method: str,
        kind: ArtifactKind,
        org_id: object,
        app_slug: str,
        build_id: object,
    ) -> PresignedUrl:
        key = object_key(kind, org_id, app_slug, build_id)
        content_type = CONTENT_TYPES[kind]
        params: dict[str, Any] = {"Bucket": self.bucket, "Key": key}
        if method == "PUT":
            params["ContentType"] = content_type

        try:
            url = await asyncio.wait_for(self._generate(operation, params), timeout=self.timeout)
        except TimeoutError as e:
            log.warning("presign_timeout", key=key, method=method)
            raise UpstreamError(
                "Timed out presigning object URL", details={"key": key, "method": method}
            ) from e
        except Exception as e:
            log.error("presign_failed", key=key, method=method, error=str(e))
            raise UpstreamError(
                f"Failed to presign object URL: {e}", details={"key": key, "method": method}
            ) from e

        log.debug("presigned_url_issued", key=key, method=method)
        return PresignedUrl(
            url=url,
            method=method,
            key=key,
            content_type=content_type,
            expires_at=datetime.now(UTC) + timedelta(seconds=self.expires_in),
        )

    async def _generate(self, operation: str, params: dict[str, Any]) -> str:
        async with self._client_factory() as client:
            return await client.generate_presigned_url(
                operation, Params=params, ExpiresIn=self.expires_in
            )
