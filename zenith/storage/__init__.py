"""Artifact storage backends."""

from zenith.storage.store import (
    ArtifactStore,
    LocalArtifactStore,
    S3ArtifactStore,
    create_store,
)

__all__ = ["ArtifactStore", "LocalArtifactStore", "S3ArtifactStore", "create_store"]
