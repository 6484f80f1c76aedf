"""Catalog data models."""
from dataclasses import dataclass


@dataclass(frozen=True)
class VersionDescriptor:
    """
    One historical release of an app.

    Attributes:
        external_id: Store's external version identifier
        display_version: Human readable version (falls back to external_id)
    """
    external_id: str
    display_version: str

    def __str__(self) -> str:
        if self.display_version and self.display_version != self.external_id:
            return f"{self.display_version} ({self.external_id})"
        return self.external_id
