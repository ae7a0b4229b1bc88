"""HTTP auth helpers."""

from __future__ import annotations

import asyncio
import hmac
import ipaddress
import socket
from collections.abc import Iterable

from fastapi import Request


def extract_bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    if not authorization.lower().startswith("bearer "):
        return None
    token = authorization[7:].strip()
    return token or None


def matches_static_token(presented: str | None, expected: str) -> bool:
    """Constant-time comparison against a configured static bearer token."""
    if not presented or not expected:
        return False
    return hmac.compare_digest(presented.encode("utf-8"), expected.encode("utf-8"))


def client_address(request: Request, trusted_proxies: Iterable[str] = ()) -> str | None:
    """Address of the connecting peer.

    ``X-Forwarded-For`` is honoured only when the peer itself is a trusted
    proxy; the right-most entry is the address that proxy saw.
    """
    peer = request.client.host if request.client else None
    if peer is not None and peer in set(trusted_proxies):
        forwarded = request.headers.get("x-forwarded-for", "")
        hops = [hop.strip() for hop in forwarded.split(",") if hop.strip()]
        if hops:
            return hops[-1]
    return peer


async def resolve_host_addresses(host: str) -> set[str]:
    """All IP addresses ``host`` resolves to. Empty if it does not resolve."""
    loop = asyncio.get_running_loop()
    try:
        infos = await loop.getaddrinfo(host, None, type=socket.SOCK_STREAM)
    except socket.gaierror:
        return set()
    return {str(ipaddress.ip_address(info[4][0].split("%", 1)[0])) for info in infos}
