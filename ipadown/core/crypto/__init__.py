"""Crypto helpers: guid derivation and hybrid blob encryption."""
from .guid import generate_guid
from .hybrid import HybridCipher

__all__ = [
    'generate_guid',
    'HybridCipher',
]
