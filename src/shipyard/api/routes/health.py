"""Liveness endpoint."""

from typing import Any

from fastapi import APIRouter

from shipyard import __version__
from shipyard.db.connection import check_postgres_health

router = APIRouter(tags=["health"])


@router.get("/health")
async def health() -> dict[str, Any]:
    database = await check_postgres_health()
    return {
        "status": "ok" if database["status"] == "healthy" else "degraded",
        "version": __version__,
        "database": database,
    }
