"""Archive repackaging."""
from .models import RepackagedArtifact
from .repackager import PackageRepackager

__all__ = [
    'RepackagedArtifact',
    'PackageRepackager',
]
