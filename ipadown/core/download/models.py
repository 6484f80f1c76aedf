"""Download data models."""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class DownloadDescriptor:
    """
    Everything needed to fetch and personalize one app version.

    Attributes:
        app_id: Store id of the app
        version_id: External version id (None for the current version)
        url: Archive download URL
        entitlement_blobs: sinf blobs in store order
        metadata: Store metadata, written out as iTunesMetadata.plist
    """
    app_id: str
    version_id: Optional[str]
    url: str
    entitlement_blobs: List[bytes] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def bundle_display_name(self) -> Optional[str]:
        return self.metadata.get('bundleDisplayName') or self.metadata.get('itemName')

    @property
    def bundle_version(self) -> Optional[str]:
        return self.metadata.get('bundleShortVersionString')
