"""
Secret store protocol.

The device key that protects the persisted identity lives outside
this package; only this contract is consumed.
"""
from typing import Protocol, runtime_checkable


@runtime_checkable
class SecretStore(Protocol):
    """
    Protocol for key-backed secret stores.

    Implementations may use a hardware key, a key file, or memory.
    Every method raises SecretStoreError on failure.
    """

    def encrypt(self, plaintext: bytes) -> bytes:
        """
        Encrypt data under the current key.

        Args:
            plaintext: Data to protect

        Returns:
            Opaque blob
        """
        ...

    def decrypt(self, blob: bytes) -> bytes:
        """
        Decrypt a blob produced by encrypt().

        Args:
            blob: Opaque blob

        Returns:
            Original plaintext
        """
        ...

    def generate_key(self) -> None:
        """Create a new key, replacing any existing one."""
        ...

    def wipe(self) -> None:
        """Destroy the current key."""
        ...
