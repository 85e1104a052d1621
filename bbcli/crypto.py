"""Encryption at rest for API secrets.

Envelope format: ``enc:`` + base64(iv || auth_tag || ciphertext), using
AES-256-GCM with a 16-byte IV and a 16-byte tag. The key comes from scrypt,
either over an operator-supplied passphrase or over ``hostname:username``
when no passphrase is configured. Key material is never written to disk.

Values without the ``enc:`` prefix are treated as legacy plaintext and
returned unchanged by ``decrypt`` so older vaults can be migrated lazily.
"""
import base64
import binascii
import getpass
import os
import socket
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from .errors import decryption_failure

ENCRYPTED_PREFIX = "enc:"
IV_LENGTH = 16
AUTH_TAG_LENGTH = 16
KEY_LENGTH = 32
SALT = b"bybit-cli-v1"

# scrypt cost parameters (N, r, p)
SCRYPT_N = 2 ** 14
SCRYPT_R = 8
SCRYPT_P = 1


def machine_identity() -> str:
    """Return the ``hostname:username`` string used when no passphrase is set."""
    return f"{socket.gethostname()}:{getpass.getuser()}"


def derive_key(passphrase: Optional[str] = None) -> bytes:
    """Derive the 32-byte AES key.

    Args:
        passphrase: Optional override passphrase. When empty or None the
                    machine identity is used instead.

    Returns:
        Raw key bytes. Deriving is deliberately slow; derive once per process.
    """
    material = passphrase if passphrase else machine_identity()
    kdf = Scrypt(salt=SALT, length=KEY_LENGTH, n=SCRYPT_N, r=SCRYPT_R, p=SCRYPT_P)
    return kdf.derive(material.encode("utf-8"))


def is_encrypted(value: str) -> bool:
    return value.startswith(ENCRYPTED_PREFIX)


class CryptoEnvelope:
    """Encrypt/decrypt short secret strings with a key derived once at construction.

    Example:
        >>> envelope = CryptoEnvelope(passphrase="correct horse")
        >>> token = envelope.encrypt("s3cret")
        >>> envelope.decrypt(token)
        's3cret'
    """

    def __init__(self, passphrase: Optional[str] = None, *, key: Optional[bytes] = None):
        if key is None:
            key = derive_key(passphrase)
        if len(key) != KEY_LENGTH:
            raise ValueError(f"Key must be {KEY_LENGTH} bytes, got {len(key)}")
        self._aead = AESGCM(key)

    @staticmethod
    def is_encrypted(value: str) -> bool:
        return is_encrypted(value)

    def encrypt(self, plaintext: str) -> str:
        """Encrypt ``plaintext`` under a fresh random IV."""
        iv = os.urandom(IV_LENGTH)
        # AESGCM appends the tag to the ciphertext
        sealed = self._aead.encrypt(iv, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[:-AUTH_TAG_LENGTH], sealed[-AUTH_TAG_LENGTH:]
        payload = iv + tag + ciphertext
        return ENCRYPTED_PREFIX + base64.b64encode(payload).decode("ascii")

    def decrypt(self, value: str) -> str:
        """Decrypt an envelope; values without the prefix pass through unchanged.

        Raises:
            CliError: DECRYPTION_FAILURE when the tag does not verify (wrong
                      key or tampered data) or the payload is malformed.
        """
        if not is_encrypted(value):
            return value

        try:
            payload = base64.b64decode(value[len(ENCRYPTED_PREFIX):], validate=True)
        except (binascii.Error, ValueError):
            raise decryption_failure()

        if len(payload) < IV_LENGTH + AUTH_TAG_LENGTH:
            raise decryption_failure()

        iv = payload[:IV_LENGTH]
        tag = payload[IV_LENGTH:IV_LENGTH + AUTH_TAG_LENGTH]
        ciphertext = payload[IV_LENGTH + AUTH_TAG_LENGTH:]
        try:
            plaintext = self._aead.decrypt(iv, ciphertext + tag, None)
        except InvalidTag:
            raise decryption_failure()
        return plaintext.decode("utf-8")
