"""
Session management module.

Credentials, the authenticated request context, and their encrypted
persistence behind a SecretStore.
"""
from .protocols import SecretStore
from .models import Credential, SessionContext, SessionData
from .memory_store import MemorySecretStore
from .file_store import FileSecretStore
from .vault import CredentialVault

__all__ = [
    'SecretStore',
    'Credential',
    'SessionContext',
    'SessionData',
    'MemorySecretStore',
    'FileSecretStore',
    'CredentialVault',
]
