"""HTTP API for builds, installations and provisioning."""

from shipyard.api.app import create_app

__all__ = ["create_app"]
