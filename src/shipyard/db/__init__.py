"""Shipyard database module.

This module provides:
- SQLModel schemas for tenants, apps, builds, installations and keys
- Async connection management with SQLAlchemy 2.0

Usage:
    from shipyard.db import get_session, App

    async with get_session() as session:
        app = App(organization_id=org.id, slug="hello", git_repo_url=url)
        session.add(app)
        await session.commit()
"""

from shipyard.db.connection import (
    check_postgres_health,
    close_db,
    get_engine,
    get_session,
    get_session_dependency,
    get_session_factory,
    init_db,
)
from shipyard.db.models import (
    ActivationStatus,
    App,
    AppBuild,
    AppInstallation,
    BuildSource,
    BuildStatus,
    Environment,
    EnvironmentVariable,
    Organization,
    SigningKey,
    UTCDateTime,
    utcnow,
)

__all__ = [
    # Connection
    "init_db",
    "close_db",
    "get_engine",
    "get_session",
    "get_session_dependency",
    "get_session_factory",
    "check_postgres_health",
    # Models
    "App",
    "AppBuild",
    "AppInstallation",
    "Environment",
    "EnvironmentVariable",
    "Organization",
    "SigningKey",
    "UTCDateTime",
    "utcnow",
    # Enums
    "ActivationStatus",
    "BuildSource",
    "BuildStatus",
]
