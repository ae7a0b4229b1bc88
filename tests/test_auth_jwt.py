"""Signing keypair storage, token issuance and verification."""

from __future__ import annotations

import json
from datetime import timedelta
from uuid import uuid4

import httpx
import jwt
import pytest
from jwt.utils import base64url_decode, base64url_encode

from shipyard.auth.jwt import (
    ExpiredTokenError,
    InvalidSignatureError,
    LocalKeySet,
    MalformedTokenError,
    RemoteKeySet,
    Role,
    TokenClaims,
    TokenIssuer,
    TokenVerifier,
)
from shipyard.auth.keys import SigningKeyStore

TEST_AUTH_SECRET = "test-auth-secret"  # noqa: S105


def _tamper(token: str, **changes: object) -> str:
    header, payload, signature = token.split(".")
    claims = json.loads(base64url_decode(payload))
    claims.update(changes)
    forged = base64url_encode(json.dumps(claims).encode("utf-8")).decode("ascii")
    return f"{header}.{forged}.{signature}"


# ---------------------------------------------------------------------------
# SigningKeyStore
# ---------------------------------------------------------------------------


class TestSigningKeyStore:
    async def test_ensure_keypair_is_idempotent(self, keystore: SigningKeyStore) -> None:
        first = keystore.material
        again = await keystore.ensure_keypair()
        other_process = await SigningKeyStore(secret=TEST_AUTH_SECRET).ensure_keypair()

        assert again.kid == first.kid
        assert other_process.kid == first.kid

    async def test_material_requires_loading(self, db: None) -> None:
        with pytest.raises(RuntimeError, match="ensure_keypair"):
            _ = SigningKeyStore(secret=TEST_AUTH_SECRET).material

    async def test_published_set_has_public_half_only(self, keystore: SigningKeyStore) -> None:
        key_set = await keystore.published_key_set()

        assert len(key_set["keys"]) == 1
        jwk = key_set["keys"][0]
        assert jwk["kid"] == keystore.material.kid
        assert jwk["kty"] == "RSA"
        assert jwk["alg"] == "RS256"
        assert jwk["use"] == "sig"
        assert "d" not in jwk

    async def test_rotation_publishes_latest_two(self, keystore: SigningKeyStore) -> None:
        original = keystore.material.kid
        second = await keystore.rotate()
        third = await keystore.rotate()

        kids = [k["kid"] for k in (await keystore.published_key_set())["keys"]]
        assert kids == [third.kid, second.kid]
        assert original not in kids
        assert keystore.material.kid == third.kid


# ---------------------------------------------------------------------------
# TokenIssuer / TokenVerifier
# ---------------------------------------------------------------------------


class TestTokenRoundTrip:
    async def test_runner_token(self, issuer: TokenIssuer, verifier: TokenVerifier) -> None:
        org_id, env_id = uuid4(), uuid4()
        token = issuer.mint_runner(org_id=org_id, org_slug="acme", env_id=env_id, env_slug="dev")

        claims = await verifier.verify(token)

        assert claims.role is Role.RUNNER
        assert claims.org_slug == "acme"
        assert claims.env_slug == "dev"
        assert claims.is_scoped_to(org_id, env_id)
        assert not claims.is_scoped_to(org_id, uuid4())
        assert jwt.get_unverified_header(token)["kid"] == issuer._keystore.material.kid

    async def test_service_role_audience(self, issuer: TokenIssuer, verifier: TokenVerifier) -> None:
        claims = await verifier.verify(issuer.mint_service_role("acme"))

        assert claims.role is Role.SERVICE_ROLE
        assert claims.has_audience("acme")
        assert not claims.has_audience("globex")
        assert not claims.is_scoped_to(uuid4(), uuid4())

    async def test_default_ttl_is_provisioning_ttl(
        self, issuer: TokenIssuer, verifier: TokenVerifier
    ) -> None:
        claims = await verifier.verify(issuer.mint_anon("acme"))
        assert claims.role is Role.ANON
        assert claims.expires_at - claims.issued_at == timedelta(days=3650)

    async def test_explicit_ttl(self, issuer: TokenIssuer, verifier: TokenVerifier) -> None:
        token = issuer.mint_anon("acme", ttl=timedelta(minutes=5))
        claims = await verifier.verify(token)
        assert claims.expires_at - claims.issued_at == timedelta(minutes=5)

    def test_runner_claims_required(self, issuer: TokenIssuer) -> None:
        with pytest.raises(ValueError, match="envId"):
            issuer.sign({"role": Role.RUNNER, "orgId": "o", "orgSlug": "acme", "envSlug": "dev"})

    def test_unknown_role_rejected(self, issuer: TokenIssuer) -> None:
        with pytest.raises(ValueError):
            issuer.sign({"role": "admin"})


class TestTokenRejection:
    async def test_tampered_payload(self, issuer: TokenIssuer, verifier: TokenVerifier) -> None:
        token = issuer.mint_anon("acme")
        with pytest.raises(InvalidSignatureError):
            await verifier.verify(_tamper(token, role="service_role"))

    async def test_expired(self, issuer: TokenIssuer, verifier: TokenVerifier) -> None:
        token = issuer.mint_service_role("acme", ttl=timedelta(seconds=-30))
        with pytest.raises(ExpiredTokenError):
            await verifier.verify(token)

    @pytest.mark.parametrize("token", ["", "not-a-jwt", "a.b.c"])
    async def test_malformed(self, verifier: TokenVerifier, token: str) -> None:
        with pytest.raises(MalformedTokenError):
            await verifier.verify(token)

    async def test_missing_kid(self, issuer: TokenIssuer, verifier: TokenVerifier) -> None:
        material = issuer._keystore.material
        token = jwt.encode(
            {"role": "anon", "iat": 0, "exp": 4_102_444_800},
            material.private_key,
            algorithm="RS256",
        )
        with pytest.raises(MalformedTokenError, match="kid"):
            await verifier.verify(token)

    async def test_foreign_key(self, db: None, verifier: TokenVerifier) -> None:
        """A token signed by a key the platform never published."""
        from cryptography.hazmat.primitives.asymmetric import rsa

        rogue = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        token = jwt.encode(
            {"role": "service_role", "aud": ["acme"], "iat": 0, "exp": 4_102_444_800},
            rogue,
            algorithm="RS256",
            headers={"kid": str(uuid4())},
        )
        with pytest.raises(InvalidSignatureError, match="Unknown signing key"):
            await verifier.verify(token)

    def test_runner_payload_without_scope(self) -> None:
        with pytest.raises(MalformedTokenError):
            TokenClaims.from_payload({"role": "runner", "iat": 0, "exp": 1, "orgId": "o"})


class TestKeyRotation:
    async def test_verifier_picks_up_rotated_key(
        self, keystore: SigningKeyStore, issuer: TokenIssuer
    ) -> None:
        verifier = TokenVerifier(LocalKeySet(keystore))
        old_token = issuer.mint_service_role("acme")
        await verifier.verify(old_token)

        await keystore.rotate()
        new_token = issuer.mint_service_role("acme")

        assert (await verifier.verify(new_token)).has_audience("acme")
        # The retired key is still published
        assert (await verifier.verify(old_token)).has_audience("acme")

    async def test_remote_key_set(self, keystore: SigningKeyStore, issuer: TokenIssuer) -> None:
        key_set = await keystore.published_key_set()
        requested: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requested.append(str(request.url))
            return httpx.Response(200, json=key_set)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            verifier = TokenVerifier(
                RemoteKeySet("https://platform.test/api/auth/jwks", client=client)
            )
            claims = await verifier.verify(issuer.mint_anon("acme"))
            await verifier.verify(issuer.mint_anon("acme"))

        assert claims.role is Role.ANON
        assert requested == ["https://platform.test/api/auth/jwks"]

    async def test_key_rotated_out_stops_verifying(
        self, keystore: SigningKeyStore, issuer: TokenIssuer
    ) -> None:
        verifier = TokenVerifier(LocalKeySet(keystore), cache_seconds=3600)
        oldest = issuer.mint_service_role("acme")
        await verifier.verify(oldest)

        await keystore.rotate()
        await keystore.rotate()
        # Unknown kid forces a refresh, which drops the unpublished key
        await verifier.verify(issuer.mint_service_role("acme"))

        with pytest.raises(InvalidSignatureError):
            await verifier.verify(oldest)

    async def test_cache_age_bounds_key_lifetime(
        self, keystore: SigningKeyStore, issuer: TokenIssuer
    ) -> None:
        verifier = TokenVerifier(LocalKeySet(keystore), cache_seconds=0)
        oldest = issuer.mint_service_role("acme")
        await verifier.verify(oldest)

        await keystore.rotate()
        await keystore.rotate()

        with pytest.raises(InvalidSignatureError):
            await verifier.verify(oldest)
