"""Platform signing keypair storage.

The platform signs every token with one RSA keypair. The private half is
stored Fernet-encrypted under ``SHIPYARD_AUTH_SECRET``; the public half is
published as a JWK set. The active key lives in the unique ``"primary"``
slot so concurrent first boots converge on a single row.
"""

from __future__ import annotations

import base64
import hashlib
import json
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from typing import Any
from uuid import UUID, uuid4

import structlog
from cryptography.fernet import Fernet
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from jwt.algorithms import RSAAlgorithm
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import col, select

from shipyard.config import settings
from shipyard.db.connection import get_session
from shipyard.db.models import SigningKey, utcnow

log = structlog.get_logger()

PRIMARY_SLOT = "primary"
PUBLISHED_KEY_COUNT = 2
RSA_KEY_SIZE = 2048

SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]


def secret_fernet(secret: str | None = None) -> Fernet:
    """Build a Fernet cipher keyed from the platform auth secret."""
    raw = secret if secret is not None else settings.auth_secret.get_secret_value()
    digest = hashlib.sha256(raw.encode("utf-8")).digest()
    return Fernet(base64.urlsafe_b64encode(digest))


@dataclass(frozen=True)
class SigningMaterial:
    """Decrypted active keypair, ready for signing."""

    kid: str
    algorithm: str
    private_key: rsa.RSAPrivateKey
    public_jwk: dict[str, Any]


def public_jwk_for(private_key: rsa.RSAPrivateKey, *, kid: str, algorithm: str) -> dict[str, Any]:
    jwk = RSAAlgorithm.to_jwk(private_key.public_key(), as_dict=True)
    jwk.update({"kid": kid, "alg": algorithm, "use": "sig"})
    return jwk


class SigningKeyStore:
    """Loads, creates and rotates the platform signing keypair."""

    def __init__(
        self,
        *,
        session_factory: SessionFactory = get_session,
        secret: str | None = None,
        algorithm: str | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._fernet = secret_fernet(secret)
        self._algorithm = algorithm or settings.jwt_algorithm
        self._material: SigningMaterial | None = None

    @property
    def material(self) -> SigningMaterial:
        """Active signing material. ``ensure_keypair`` must have run first."""
        if self._material is None:
            raise RuntimeError("Signing keypair not loaded; call ensure_keypair() at startup")
        return self._material

    async def ensure_keypair(self) -> SigningMaterial:
        """Load the primary keypair, generating and persisting it if absent.

        Idempotent. A concurrent insert that loses the unique-slot race
        re-reads the winning row.
        """
        async with self._session_factory() as session:
            row = await self._load_primary(session)
            if row is None:
                candidate = self._new_row(PRIMARY_SLOT)
                session.add(candidate)
                try:
                    await session.commit()
                    row = candidate
                    log.info("signing_key_generated", kid=str(candidate.id))
                except IntegrityError:
                    await session.rollback()
                    log.info("signing_key_race_lost", kid=str(candidate.id))
                    row = await self._load_primary(session)
                    if row is None:
                        raise
            self._material = self._decrypt(row)
        return self._material

    async def rotate(self) -> SigningMaterial:
        """Retire the primary key and generate a new one.

        The retired key stays in the published set so tokens it signed keep
        verifying until the next rotation.
        """
        async with self._session_factory() as session:
            current = await self._load_primary(session)
            if current is not None:
                current.slot = f"retired-{current.id}"
                current.retired_at = utcnow()
                session.add(current)
                await session.flush()
            fresh = self._new_row(PRIMARY_SLOT)
            session.add(fresh)
            await session.commit()
            log.info(
                "signing_key_rotated",
                kid=str(fresh.id),
                retired_kid=str(current.id) if current is not None else None,
            )
            self._material = self._decrypt(fresh)
        return self._material

    async def published_key_set(self) -> dict[str, list[dict[str, Any]]]:
        """Public JWK set containing the latest keys, newest first."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(SigningKey)
                .order_by(col(SigningKey.created_at).desc())
                .limit(PUBLISHED_KEY_COUNT)
            )
            rows = result.scalars().all()
        return {"keys": [json.loads(row.public_jwk) for row in rows]}

    async def _load_primary(self, session: AsyncSession) -> SigningKey | None:
        result = await session.execute(select(SigningKey).where(SigningKey.slot == PRIMARY_SLOT))
        return result.scalar_one_or_none()

    def _new_row(self, slot: str) -> SigningKey:
        key_id: UUID = uuid4()
        private_key = rsa.generate_private_key(public_exponent=65537, key_size=RSA_KEY_SIZE)
        pem = private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
        jwk = public_jwk_for(private_key, kid=str(key_id), algorithm=self._algorithm)
        return SigningKey(
            id=key_id,
            slot=slot,
            algorithm=self._algorithm,
            public_jwk=json.dumps(jwk),
            encrypted_private_key=self._fernet.encrypt(pem).decode("ascii"),
        )

    def _decrypt(self, row: SigningKey) -> SigningMaterial:
        pem = self._fernet.decrypt(row.encrypted_private_key.encode("ascii"))
        private_key = serialization.load_pem_private_key(pem, password=None)
        if not isinstance(private_key, rsa.RSAPrivateKey):
            raise TypeError(f"Signing key {row.id} is not an RSA key")
        return SigningMaterial(
            kid=str(row.id),
            algorithm=row.algorithm,
            private_key=private_key,
            public_jwk=json.loads(row.public_jwk),
        )
