"""Object storage for source bundles and build artifacts."""

from shipyard.storage.artifacts import (
    ArtifactGateway,
    ArtifactKind,
    PresignedUrl,
    object_key,
    object_key_for_build,
)

__all__ = [
    "ArtifactGateway",
    "ArtifactKind",
    "PresignedUrl",
    "object_key",
    "object_key_for_build",
]
