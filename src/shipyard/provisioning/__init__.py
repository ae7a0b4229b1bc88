"""Environment provisioning parameters for the infrastructure generator."""

from shipyard.provisioning.generator import EnvironmentParameters, ProvisioningGenerator

__all__ = ["EnvironmentParameters", "ProvisioningGenerator"]
