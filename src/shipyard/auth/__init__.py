"""Signing keys, platform tokens and request authentication."""

from shipyard.auth.jwt import (
    ExpiredTokenError,
    InvalidSignatureError,
    JwtError,
    LocalKeySet,
    MalformedTokenError,
    RemoteKeySet,
    Role,
    TokenClaims,
    TokenIssuer,
    TokenVerifier,
)
from shipyard.auth.keys import SigningKeyStore, SigningMaterial, secret_fernet

__all__ = [
    "ExpiredTokenError",
    "InvalidSignatureError",
    "JwtError",
    "LocalKeySet",
    "MalformedTokenError",
    "RemoteKeySet",
    "Role",
    "SigningKeyStore",
    "SigningMaterial",
    "TokenClaims",
    "TokenIssuer",
    "TokenVerifier",
    "secret_fernet",
]
