"""
Key-file secret store implementation.

Software stand-in for a hardware-backed key: an RSA key pair kept in a
private file, used to wrap a per-blob AES-GCM key.
"""
import os
from pathlib import Path
from typing import Optional, Union

from Crypto.PublicKey import RSA

from .protocols import SecretStore
from ..crypto import HybridCipher
from ..exceptions import SecretStoreError
from ..logging import get_logger


class FileSecretStore(SecretStore):
    """
    RSA key-file secret store.

    Example:
        >>> store = FileSecretStore(Path.home() / ".config" / "ipadown" / "device.key")
        >>> blob = store.encrypt(b'secret')
    """

    KEY_BITS = 2048

    def __init__(self, key_path: Union[str, Path]):
        """
        Initialize file secret store.

        Args:
            key_path: Location of the PEM key file
        """
        self._path = Path(key_path)
        self._key: Optional[RSA.RsaKey] = None
        self._logger = get_logger('ipadown.secrets')

    @property
    def path(self) -> Path:
        """Get key file path."""
        return self._path

    @property
    def has_key(self) -> bool:
        return self._path.exists()

    def _load_key(self) -> RSA.RsaKey:
        if self._key is None:
            try:
                self._key = RSA.import_key(self._path.read_bytes())
            except FileNotFoundError:
                raise SecretStoreError(f"No key at {self._path}")
            except (OSError, ValueError, IndexError, TypeError) as e:
                raise SecretStoreError(f"Unreadable key at {self._path}", str(e))
        return self._key

    def encrypt(self, plaintext: bytes) -> bytes:
        if not self.has_key:
            self._logger.info("No device key yet, generating one")
            self.generate_key()
        return HybridCipher(self._load_key()).encrypt(plaintext)

    def decrypt(self, blob: bytes) -> bytes:
        try:
            return HybridCipher(self._load_key()).decrypt(blob)
        except ValueError as e:
            raise SecretStoreError("Blob does not decrypt under the current key", str(e))

    def generate_key(self) -> None:
        self.wipe()
        key = RSA.generate(self.KEY_BITS)
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(self._path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, 'wb') as f:
                f.write(key.export_key('PEM'))
        except OSError as e:
            raise SecretStoreError(f"Cannot write key to {self._path}", str(e))
        self._key = key
        self._logger.debug(f"Generated device key at {self._path}")

    def wipe(self) -> None:
        self._key = None
        try:
            self._path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            raise SecretStoreError(f"Cannot remove key at {self._path}", str(e))
