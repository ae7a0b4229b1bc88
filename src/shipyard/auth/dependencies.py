"""FastAPI dependencies for the platform's token and static-secret auth."""

from __future__ import annotations

import ipaddress
from typing import Annotated
from uuid import UUID

import structlog
from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from shipyard.auth.http import (
    client_address,
    extract_bearer_token,
    matches_static_token,
    resolve_host_addresses,
)
from shipyard.auth.jwt import JwtError, Role, TokenClaims, TokenVerifier
from shipyard.config import settings
from shipyard.db.models import Organization
from shipyard.errors import NotFoundError, UnauthorizedError

log = structlog.get_logger()

AuthorizationHeader = Annotated[str | None, Header(alias="Authorization")]


def get_token_verifier(request: Request) -> TokenVerifier:
    verifier = getattr(request.app.state, "token_verifier", None)
    if verifier is None:
        raise RuntimeError("Token verifier is not initialized")
    return verifier


async def _verified_claims(authorization: str | None, verifier: TokenVerifier) -> TokenClaims:
    token = extract_bearer_token(authorization)
    if token is None:
        raise UnauthorizedError("Missing bearer token")
    try:
        return await verifier.verify(token)
    except JwtError as e:
        log.info("token_rejected", error_type=type(e).__name__, error=str(e))
        raise UnauthorizedError(str(e), code=_jwt_error_code(e)) from e


def _jwt_error_code(exc: JwtError) -> str:
    name = type(exc).__name__
    return {
        "ExpiredTokenError": "token_expired",
        "InvalidSignatureError": "invalid_signature",
        "MalformedTokenError": "malformed_token",
    }.get(name, "unauthorized")


async def require_org_token(
    authorization: AuthorizationHeader = None,
    verifier: TokenVerifier = Depends(get_token_verifier),
) -> TokenClaims:
    """A ``service_role`` token. Audience is checked per organization."""
    claims = await _verified_claims(authorization, verifier)
    if claims.role is not Role.SERVICE_ROLE:
        raise UnauthorizedError("A service_role token is required")
    return claims


async def require_runner_token(
    authorization: AuthorizationHeader = None,
    verifier: TokenVerifier = Depends(get_token_verifier),
) -> TokenClaims:
    claims = await _verified_claims(authorization, verifier)
    if claims.role is not Role.RUNNER:
        raise UnauthorizedError("A runner token is required")
    return claims


async def require_callback_token(authorization: AuthorizationHeader = None) -> None:
    """Static secret shared with build jobs."""
    token = extract_bearer_token(authorization)
    if not matches_static_token(token, settings.callback_token.get_secret_value()):
        raise UnauthorizedError("Invalid callback token")


async def require_generator_token(request: Request, authorization: AuthorizationHeader = None) -> None:
    """Static secret shared with the infrastructure generator.

    In production the connecting peer must also be one of the addresses the
    generator's in-cluster hostname resolves to.
    """
    token = extract_bearer_token(authorization)
    if not matches_static_token(token, settings.generator_token.get_secret_value()):
        raise UnauthorizedError("Invalid generator token")
    if settings.is_production:
        peer = client_address(request, settings.trusted_proxies)
        allowed = await resolve_host_addresses(settings.generator_internal_host)
        if not _address_in(peer, allowed):
            log.warning(
                "generator_request_rejected",
                peer=peer,
                internal_host=settings.generator_internal_host,
            )
            raise UnauthorizedError("Generator requests must come from the internal host")


def _address_in(address: str | None, allowed: set[str]) -> bool:
    if not address:
        return False
    try:
        return str(ipaddress.ip_address(address)) in allowed
    except ValueError:
        return False


async def authorize_org(session: AsyncSession, claims: TokenClaims, org_id: UUID) -> Organization:
    """Load ``org_id`` and require the token audience to name its slug."""
    result = await session.execute(select(Organization).where(Organization.id == org_id))
    org = result.scalar_one_or_none()
    if org is None:
        raise NotFoundError("Organization", str(org_id))
    if not claims.has_audience(org.slug):
        raise UnauthorizedError(
            "Token is not valid for this organization", details={"organization_id": str(org_id)}
        )
    return org
