"""Public key set endpoint."""

from typing import Any

from fastapi import APIRouter, Request

router = APIRouter(prefix="/auth", tags=["auth"])


@router.get("/jwks")
async def jwks(request: Request) -> dict[str, Any]:
    """Public JWK set used to verify every platform-issued token."""
    return await request.app.state.keystore.published_key_set()
