"""Repackaging data models."""
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class RepackagedArtifact:
    """
    An archive ready to be served for installation.

    Attributes:
        path: Location of the repackaged archive
        bundle_id: CFBundleIdentifier of the app
        bundle_version: CFBundleShortVersionString of the app
    """
    path: Path
    bundle_id: str
    bundle_version: str

    @property
    def size(self) -> int:
        return self.path.stat().st_size
