"""Shipyard: build-and-deploy orchestration core.

Turns registered apps into versioned build artifacts, activates them inside
per-tenant runners, and provisions the signed identities those runners use
to talk back to the platform.
"""

from shipyard.logging import configure_logging

# Configure logging FIRST before any other modules use structlog
configure_logging()

from shipyard.config import Settings  # noqa: E402 - must come after logging config

__version__ = "0.1.0"
__all__ = ["Settings", "__version__"]
