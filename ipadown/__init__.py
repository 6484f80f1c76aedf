"""
ipadown - Async Python tool for installing older App Store versions.

Usage:
    >>> from ipadown import DowngradeClient, CredentialVault, FileSecretStore
    >>>
    >>> vault = CredentialVault(FileSecretStore("device.key"), "authinfo")
    >>> async with DowngradeClient(vault) as client:
    ...     await client.login("me@example.com", "password")
    ...     for version in await client.list_versions("544007664"):
    ...         print(version)
"""
import logging
from .client import DowngradeClient

# Configuration
from .core.api import (
    APIConfig,
    EndpointConfig,
    ProxyConfig,
    SSLConfig,
    TimeoutConfig,
    RetryConfig,
    ServerConfig,
    AsyncStoreClient,
    AsyncAuthService
)

# Session management
from .core.session import (
    SecretStore,
    Credential,
    SessionContext,
    SessionData,
    MemorySecretStore,
    FileSecretStore,
    CredentialVault
)

from .core.catalog import VersionDescriptor
from .core.download import DownloadDescriptor
from .core.repackage import RepackagedArtifact
from .core.server import DistributionServer
from .core.utils import parse_app_id

__version__ = '1.0.0'


def setup_logging(level=logging.INFO):
    """
    Configure logging for ipadown modules.

    Args:
        level: Logging level (default: logging.INFO)
    """
    loggers = [
        'ipadown',
        'ipadown.api',
        'ipadown.auth',
        'ipadown.catalog',
        'ipadown.download',
        'ipadown.repackage',
        'ipadown.server',
        'ipadown.client',
        'ipadown.secrets',
    ]

    for logger_name in loggers:
        logger = logging.getLogger(logger_name)
        logger.setLevel(level)
        logger.propagate = True


__all__ = [
    'DowngradeClient',
    'APIConfig',
    'EndpointConfig',
    'ProxyConfig',
    'SSLConfig',
    'TimeoutConfig',
    'RetryConfig',
    'ServerConfig',
    'AsyncStoreClient',
    'AsyncAuthService',
    'SecretStore',
    'Credential',
    'SessionContext',
    'SessionData',
    'MemorySecretStore',
    'FileSecretStore',
    'CredentialVault',
    'VersionDescriptor',
    'DownloadDescriptor',
    'RepackagedArtifact',
    'DistributionServer',
    'parse_app_id',
    'setup_logging',
]
