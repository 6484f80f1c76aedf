"""Version discovery."""
from .models import VersionDescriptor
from .service import CatalogClient

__all__ = [
    'VersionDescriptor',
    'CatalogClient',
]
