"""Domain models for component image versions."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

__all__ = [
    "LatestImageInfo",
    "VersionSource",
]


class VersionSource(StrEnum):
    """Strategy that determined the current image of a component."""

    CUSTOM_IMAGE = "custom-image"
    CUSTOM_VERSION = "custom-version"
    PUBLIC_REGISTRY = "public-registry"
    TENANT_REGISTRY = "tenant-registry"


@dataclass
class LatestImageInfo:
    """Latest image of a component as published on the public registry."""

    source: str
    """Repository holding the image, including the registry."""

    tag: str
    """Tag of the latest image."""

    def __str__(self) -> str:
        return f"{self.source}:{self.tag}"
