"""
Custom exceptions for ipadown operations.

One family per pipeline stage: authentication, catalog lookup,
download, repackaging and local distribution.
"""
from typing import Optional


class IpadownException(Exception):
    """Base exception for all ipadown errors."""

    def __init__(self, message: str, detail: Optional[str] = None) -> None:
        """
        Initialize the exception.

        Args:
            message: Error message
            detail: Human readable detail supplied by the remote side (if any)
        """
        self.detail = detail
        super().__init__(message)

    def __str__(self) -> str:
        message = super().__str__()
        if self.detail and self.detail not in message:
            return f"{message}: {self.detail}"
        return message


class SecretStoreError(IpadownException):
    """Exception raised when the secret store cannot encrypt, decrypt or manage its key."""
    pass


# Authentication

class AuthError(IpadownException):
    """Exception raised for authentication-related errors."""
    pass


class TwoFactorRequiredError(AuthError):
    """The store asked for a two-factor code and none was supplied."""
    pass


class InvalidCredentialsError(AuthError):
    """The store refused the credentials after every attempt."""
    pass


class AuthTransportError(AuthError):
    """The authentication request could not reach the store."""
    pass


# Catalog

class CatalogError(IpadownException):
    """Exception raised while listing app versions."""
    pass


class NoVersionsFoundError(CatalogError):
    """The source returned no version identifiers."""
    pass


class CatalogTransportError(CatalogError):
    """The version source could not be reached or returned garbage."""
    pass


# Download

class FetchError(IpadownException):
    """Exception raised while resolving or downloading an archive."""
    pass


class RemoteRejectedError(FetchError):
    """The store refused the download request."""
    pass


class FetchTransportError(FetchError):
    """The archive could not be transferred."""
    pass


class StorageError(FetchError):
    """The archive could not be written to local storage."""
    pass


# Repackaging

class RepackageError(IpadownException):
    """Exception raised when an archive cannot be repackaged."""

    def __init__(
        self,
        message: str,
        step: Optional[str] = None,
        detail: Optional[str] = None
    ) -> None:
        """
        Initialize the exception.

        Args:
            message: Error message
            step: Name of the repackaging step that failed
            detail: Extra detail (usually the underlying error)
        """
        self.step = step
        super().__init__(message, detail)

    def __str__(self) -> str:
        message = super().__str__()
        if self.step:
            return f"[{self.step}] {message}"
        return message


class MalformedArchiveError(RepackageError):
    """The archive or its bundle is missing required content."""
    pass


class UnsupportedLayoutError(RepackageError):
    """The bundle's signature manifest has a shape we cannot handle."""
    pass


class RepackageIOError(RepackageError):
    """A filesystem operation failed while repackaging."""
    pass


# Distribution server

class ServerError(IpadownException):
    """Exception raised by the local distribution server."""
    pass


class PortInUseError(ServerError):
    """The distribution port is already bound."""
    pass


class BindFailedError(ServerError):
    """The distribution server could not bind for another reason."""
    pass


class StoreProtocolError(IpadownException):
    """A store or mirror reply could not be decoded."""
    pass
