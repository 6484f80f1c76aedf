"""Download resolution and archive retrieval."""
from .models import DownloadDescriptor
from .fetcher import PackageFetcher

__all__ = [
    'DownloadDescriptor',
    'PackageFetcher',
]
