"""Store API module: transport, configuration and authentication."""
from .config import (
    APIConfig,
    EndpointConfig,
    ProxyConfig,
    RetryConfig,
    ServerConfig,
    SSLConfig,
    TimeoutConfig,
)
from .async_client import AsyncStoreClient, StoreResponse
from .async_auth import AsyncAuthService, AuthState

__all__ = [
    # Client
    'AsyncStoreClient',
    'StoreResponse',

    # Auth
    'AsyncAuthService',
    'AuthState',

    # Configuration
    'APIConfig',
    'EndpointConfig',
    'ProxyConfig',
    'RetryConfig',
    'ServerConfig',
    'SSLConfig',
    'TimeoutConfig',
]
