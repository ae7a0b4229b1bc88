"""Signed token issuance and verification (RS256 with a published key set)."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from typing import Any, Protocol

import httpx
import jwt
import structlog

from shipyard.auth.keys import SigningKeyStore
from shipyard.config import settings

log = structlog.get_logger()

RUNNER_SCOPE_CLAIMS = ("orgId", "orgSlug", "envId", "envSlug")


class Role(StrEnum):
    ANON = "anon"
    SERVICE_ROLE = "service_role"
    RUNNER = "runner"


class JwtError(ValueError):
    """Token could not be accepted."""


class InvalidSignatureError(JwtError):
    pass


class ExpiredTokenError(JwtError):
    pass


class MalformedTokenError(JwtError):
    pass


@dataclass(frozen=True)
class TokenClaims:
    """Verified claims of a platform token."""

    role: Role
    issued_at: datetime
    expires_at: datetime
    audience: tuple[str, ...] = ()
    org_id: str | None = None
    org_slug: str | None = None
    env_id: str | None = None
    env_slug: str | None = None
    raw: dict[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> TokenClaims:
        try:
            role = Role(payload["role"])
        except ValueError as e:
            raise MalformedTokenError(f"Unknown role: {payload.get('role')!r}") from e
        aud = payload.get("aud") or ()
        if isinstance(aud, str):
            aud = (aud,)
        claims = cls(
            role=role,
            issued_at=datetime.fromtimestamp(payload["iat"], UTC),
            expires_at=datetime.fromtimestamp(payload["exp"], UTC),
            audience=tuple(aud),
            org_id=payload.get("orgId"),
            org_slug=payload.get("orgSlug"),
            env_id=payload.get("envId"),
            env_slug=payload.get("envSlug"),
            raw=payload,
        )
        if role is Role.RUNNER and not all(payload.get(k) for k in RUNNER_SCOPE_CLAIMS):
            raise MalformedTokenError("Runner token is missing its organization/environment scope")
        return claims

    def has_audience(self, org_slug: str) -> bool:
        return org_slug in self.audience

    def is_scoped_to(self, org_id: object, env_id: object) -> bool:
        """True only for a runner token minted for exactly this (org, env) pair."""
        return (
            self.role is Role.RUNNER
            and self.org_id == str(org_id)
            and self.env_id == str(env_id)
        )


class TokenIssuer:
    """Signs platform tokens with the active keypair."""

    def __init__(self, keystore: SigningKeyStore) -> None:
        self._keystore = keystore

    def sign(self, claims: dict[str, Any], *, ttl: timedelta | None = None) -> str:
        """Sign ``claims`` into a compact JWT.

        ``iat`` and ``exp`` are always set. Only the role is validated beyond
        the runner scope claims being present.
        """
        role = Role(claims["role"])
        if role is Role.RUNNER:
            missing = [k for k in RUNNER_SCOPE_CLAIMS if not claims.get(k)]
            if missing:
                raise ValueError(f"Runner claims missing: {', '.join(missing)}")

        material = self._keystore.material
        now = datetime.now(UTC)
        lifetime = ttl if ttl is not None else timedelta(days=settings.provisioning_token_ttl_days)
        payload = {
            **claims,
            "role": role.value,
            "iat": int(now.timestamp()),
            "exp": int((now + lifetime).timestamp()),
        }
        return jwt.encode(
            payload,
            material.private_key,
            algorithm=material.algorithm,
            headers={"kid": material.kid},
        )

    def mint_anon(self, org_slug: str, *, ttl: timedelta | None = None) -> str:
        return self.sign({"role": Role.ANON, "aud": [org_slug]}, ttl=ttl)

    def mint_service_role(self, org_slug: str, *, ttl: timedelta | None = None) -> str:
        return self.sign({"role": Role.SERVICE_ROLE, "aud": [org_slug]}, ttl=ttl)

    def mint_runner(
        self,
        *,
        org_id: object,
        org_slug: str,
        env_id: object,
        env_slug: str,
        ttl: timedelta | None = None,
    ) -> str:
        return self.sign(
            {
                "role": Role.RUNNER,
                "orgId": str(org_id),
                "orgSlug": org_slug,
                "envId": str(env_id),
                "envSlug": env_slug,
            },
            ttl=ttl,
        )


class KeySetSource(Protocol):
    async def fetch(self) -> dict[str, Any]: ...


class LocalKeySet:
    """Key set published by this process's own key store."""

    def __init__(self, keystore: SigningKeyStore) -> None:
        self._keystore = keystore

    async def fetch(self) -> dict[str, Any]:
        return await self._keystore.published_key_set()


class RemoteKeySet:
    """Key set fetched from a remote ``/auth/jwks`` endpoint."""

    def __init__(
        self,
        url: str,
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float = 5.0,
    ) -> None:
        self._url = url
        self._client = client
        self._timeout = timeout

    async def fetch(self) -> dict[str, Any]:
        if self._client is not None:
            response = await self._client.get(self._url, timeout=self._timeout)
        else:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.get(self._url)
        response.raise_for_status()
        return response.json()


class TokenVerifier:
    """Verifies platform tokens against a published key set.

    Keys are cached by ``kid`` for ``cache_seconds``; each refresh replaces
    the cache, so a key that drops out of the published set stops verifying.
    An unknown ``kid`` triggers one refresh so a rotation is picked up on
    first use.
    """

    def __init__(
        self, source: KeySetSource, *, leeway: int = 0, cache_seconds: int | None = None
    ) -> None:
        self._source = source
        self._leeway = leeway
        self._cache_seconds = (
            settings.jwks_cache_seconds if cache_seconds is None else cache_seconds
        )
        self._keys: dict[str, jwt.PyJWK] = {}
        self._fetched_at: float | None = None

    async def refresh(self) -> None:
        key_set = await self._source.fetch()
        keys: dict[str, jwt.PyJWK] = {}
        for entry in key_set.get("keys", []):
            kid = entry.get("kid")
            if kid:
                keys[kid] = jwt.PyJWK(entry)
        self._keys = keys
        self._fetched_at = time.monotonic()
        log.debug("jwks_refreshed", kids=sorted(keys))

    def _cache_expired(self) -> bool:
        if self._fetched_at is None:
            return True
        return time.monotonic() - self._fetched_at >= self._cache_seconds

    async def _key_for(self, kid: str) -> jwt.PyJWK:
        refreshed = False
        if self._cache_expired():
            await self.refresh()
            refreshed = True
        key = self._keys.get(kid)
        if key is None and not refreshed:
            await self.refresh()
            key = self._keys.get(kid)
        if key is None:
            raise InvalidSignatureError(f"Unknown signing key: {kid}")
        return key

    async def verify(self, token: str) -> TokenClaims:
        """Verify ``token`` and return its claims.

        Raises:
            MalformedTokenError: Not a parseable JWT or missing required claims
            InvalidSignatureError: Unknown key or signature mismatch
            ExpiredTokenError: ``exp`` is in the past
        """
        try:
            header = jwt.get_unverified_header(token)
        except jwt.DecodeError as e:
            raise MalformedTokenError(str(e)) from e
        kid = header.get("kid")
        if not kid:
            raise MalformedTokenError("Token header has no kid")

        key = await self._key_for(kid)
        try:
            payload = jwt.decode(
                token,
                key.key,
                algorithms=[key.algorithm_name],
                options={"verify_aud": False, "require": ["exp", "iat", "role"]},
                leeway=self._leeway,
            )
        except jwt.ExpiredSignatureError as e:
            raise ExpiredTokenError("Token has expired") from e
        except jwt.InvalidSignatureError as e:
            raise InvalidSignatureError("Token signature is invalid") from e
        except jwt.InvalidTokenError as e:
            raise MalformedTokenError(str(e)) from e
        return TokenClaims.from_payload(payload)
