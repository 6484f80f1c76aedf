"""
In-memory secret store implementation.

Provides a non-persistent key for testing and temporary use.
"""
from typing import Optional

from Crypto.Cipher import AES
from Crypto.Random import get_random_bytes

from .protocols import SecretStore
from ..exceptions import SecretStoreError


class MemorySecretStore(SecretStore):
    """
    AES-GCM secret store keyed in memory.

    Blobs encrypted before a wipe() or generate_key() no longer decrypt,
    which mirrors a rotated device key.

    Example:
        >>> store = MemorySecretStore()
        >>> store.decrypt(store.encrypt(b'data'))
        b'data'
    """

    def __init__(self):
        """Initialize memory secret store."""
        self._key: Optional[bytes] = None

    @property
    def has_key(self) -> bool:
        return self._key is not None

    def encrypt(self, plaintext: bytes) -> bytes:
        if self._key is None:
            self.generate_key()
        nonce = get_random_bytes(12)
        cipher = AES.new(self._key, AES.MODE_GCM, nonce=nonce)
        ciphertext, tag = cipher.encrypt_and_digest(plaintext)
        return nonce + tag + ciphertext

    def decrypt(self, blob: bytes) -> bytes:
        if self._key is None:
            raise SecretStoreError("No key available")
        if len(blob) < 28:
            raise SecretStoreError("Blob too short")
        nonce, tag, ciphertext = blob[:12], blob[12:28], blob[28:]
        cipher = AES.new(self._key, AES.MODE_GCM, nonce=nonce)
        try:
            return cipher.decrypt_and_verify(ciphertext, tag)
        except ValueError as e:
            raise SecretStoreError("Blob does not decrypt under the current key", str(e))

    def generate_key(self) -> None:
        self._key = get_random_bytes(32)

    def wipe(self) -> None:
        self._key = None
