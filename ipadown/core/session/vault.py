"""
Encrypted identity persistence.

One encrypted blob on disk holds the credential and session context.
Absence of the blob means no stored identity.
"""
import json
from pathlib import Path
from typing import Optional, Union

from .protocols import SecretStore
from .models import SessionData
from ..exceptions import SecretStoreError
from ..logging import get_logger


class CredentialVault:
    """
    Stores SessionData encrypted through a SecretStore.

    Example:
        >>> vault = CredentialVault(MemorySecretStore(), "authinfo")
        >>> vault.save(session_data)
        >>> loaded = vault.load()
    """

    def __init__(self, store: SecretStore, blob_path: Union[str, Path]):
        """
        Initialize vault.

        Args:
            store: Secret store protecting the blob
            blob_path: Location of the encrypted blob
        """
        self._store = store
        self._path = Path(blob_path)
        self._logger = get_logger('ipadown.secrets')

    @property
    def store(self) -> SecretStore:
        return self._store

    @property
    def path(self) -> Path:
        return self._path

    def exists(self) -> bool:
        return self._path.exists()

    def save(self, data: SessionData) -> None:
        """
        Encrypt and write session data, replacing any previous blob.

        Raises:
            SecretStoreError: If encryption or the write fails
        """
        blob = self._store.encrypt(data.to_json().encode('utf-8'))
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_bytes(blob)
        except OSError as e:
            raise SecretStoreError(f"Cannot write identity to {self._path}", str(e))
        self._logger.debug(f"Saved encrypted identity to {self._path}")

    def load(self) -> Optional[SessionData]:
        """
        Load and decrypt session data.

        Returns:
            SessionData if a blob exists, None otherwise

        Raises:
            SecretStoreError: If the blob exists but cannot be decrypted or parsed
        """
        try:
            blob = self._path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise SecretStoreError(f"Cannot read identity from {self._path}", str(e))

        plaintext = self._store.decrypt(blob)
        try:
            return SessionData.from_json(plaintext.decode('utf-8'))
        except (UnicodeDecodeError, json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            raise SecretStoreError("Stored identity is corrupt", str(e))

    def delete(self) -> None:
        """Remove the blob if present."""
        try:
            self._path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            raise SecretStoreError(f"Cannot remove identity at {self._path}", str(e))
