"""
Hybrid RSA-OAEP / AES-GCM encryption.

Blob layout: wrapped data key | nonce (16) | tag (16) | ciphertext.
The wrapped key length equals the RSA modulus size.
"""
from Crypto.Cipher import AES, PKCS1_OAEP
from Crypto.Hash import SHA256
from Crypto.PublicKey import RSA
from Crypto.Random import get_random_bytes

NONCE_SIZE = 16
TAG_SIZE = 16
DATA_KEY_SIZE = 32


class HybridCipher:
    """Encrypts with the public half of an RSA key, decrypts with the private half."""

    def __init__(self, key: RSA.RsaKey):
        """Initializes cipher with an RSA key pair."""
        self.key = key

    def encrypt(self, plaintext: bytes) -> bytes:
        """Encrypts plaintext under a fresh AES-256-GCM data key."""
        data_key = get_random_bytes(DATA_KEY_SIZE)
        wrapped = PKCS1_OAEP.new(self.key.publickey(), hashAlgo=SHA256).encrypt(data_key)
        nonce = get_random_bytes(NONCE_SIZE)
        cipher = AES.new(data_key, AES.MODE_GCM, nonce=nonce)
        ciphertext, tag = cipher.encrypt_and_digest(plaintext)
        return wrapped + nonce + tag + ciphertext

    def decrypt(self, blob: bytes) -> bytes:
        """
        Decrypts a blob produced by encrypt().

        Raises:
            ValueError: If the blob is truncated, tampered with or was
                encrypted under another key
        """
        key_len = self.key.size_in_bytes()
        if len(blob) < key_len + NONCE_SIZE + TAG_SIZE:
            raise ValueError("Blob too short")

        wrapped = blob[:key_len]
        nonce = blob[key_len:key_len + NONCE_SIZE]
        tag = blob[key_len + NONCE_SIZE:key_len + NONCE_SIZE + TAG_SIZE]
        ciphertext = blob[key_len + NONCE_SIZE + TAG_SIZE:]

        data_key = PKCS1_OAEP.new(self.key, hashAlgo=SHA256).decrypt(wrapped)
        cipher = AES.new(data_key, AES.MODE_GCM, nonce=nonce)
        return cipher.decrypt_and_verify(ciphertext, tag)
