"""App installations and activation pushes to tenant runtimes."""

from shipyard.installations.push import RuntimePushClient
from shipyard.installations.service import InstallationService

__all__ = ["InstallationService", "RuntimePushClient"]
