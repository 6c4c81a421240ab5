"""Credential vault for third-party API secrets stored on brand accounts.

Blob layout (base64 encoded):

    salt (64 bytes) | iv (16 bytes) | auth tag (16 bytes) | ciphertext

The AES-256-GCM key is derived per blob with PBKDF2-HMAC-SHA512 over the
process master secret and the blob's salt (100,000 iterations, 32 bytes).
Only the salt travels with the blob; derived keys are never stored.
"""

from __future__ import annotations

import base64
import binascii
import os
from functools import lru_cache

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from src.sampling.config import get_settings
from src.sampling.core.errors import ConfigurationError, DecryptionError

SALT_LENGTH = 64
IV_LENGTH = 16
TAG_LENGTH = 16
KEY_LENGTH = 32
KDF_ITERATIONS = 100_000

_TAG_POSITION = SALT_LENGTH + IV_LENGTH
_CIPHERTEXT_POSITION = _TAG_POSITION + TAG_LENGTH


class CredentialVault:
    """Encrypts and decrypts credential strings under a master secret.

    Args:
        master_secret: Process-wide secret (ENCRYPTION_KEY). Must be non-empty.

    Raises:
        ConfigurationError: If master_secret is empty.
    """

    def __init__(self, master_secret: str) -> None:
        if not master_secret:
            raise ConfigurationError(
                "ENCRYPTION_KEY environment variable is required for credential encryption"
            )
        self._secret = master_secret.encode("utf-8")

    def _derive_key(self, salt: bytes) -> bytes:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA512(),
            length=KEY_LENGTH,
            salt=salt,
            iterations=KDF_ITERATIONS,
        )
        return kdf.derive(self._secret)

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a string, returning the base64 storage blob."""
        salt = os.urandom(SALT_LENGTH)
        iv = os.urandom(IV_LENGTH)
        sealed = AESGCM(self._derive_key(salt)).encrypt(iv, plaintext.encode("utf-8"), None)
        # cryptography appends the tag; storage format puts it before the ciphertext
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
        return base64.b64encode(salt + iv + tag + ciphertext).decode("ascii")

    def decrypt(self, blob: str) -> str:
        """Decrypt a storage blob.

        Raises:
            DecryptionError: If the blob is malformed, tampered with, or was
                produced under a different master secret.
        """
        try:
            raw = base64.b64decode(blob, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise DecryptionError("Credential blob is not valid base64") from exc

        if len(raw) < _CIPHERTEXT_POSITION:
            raise DecryptionError("Credential blob is truncated")

        salt = raw[:SALT_LENGTH]
        iv = raw[SALT_LENGTH:_TAG_POSITION]
        tag = raw[_TAG_POSITION:_CIPHERTEXT_POSITION]
        ciphertext = raw[_CIPHERTEXT_POSITION:]

        try:
            plaintext = AESGCM(self._derive_key(salt)).decrypt(iv, ciphertext + tag, None)
        except InvalidTag as exc:
            raise DecryptionError(
                "Credential blob failed authentication (tampered or wrong key)"
            ) from exc

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise DecryptionError("Decrypted credential is not valid UTF-8") from exc

    def encrypt_safe(self, value: str | None) -> str | None:
        """Encrypt value, passing None or empty through as None."""
        if not value:
            return None
        return self.encrypt(value)

    def decrypt_safe(self, value: str | None) -> str | None:
        """Decrypt value, passing None or empty through as None.

        A present but undecryptable blob still raises DecryptionError; callers
        treat that credential as absent.
        """
        if not value:
            return None
        return self.decrypt(value)


@lru_cache
def get_vault() -> CredentialVault:
    """Process-wide vault built from ENCRYPTION_KEY.

    Raises:
        ConfigurationError: On first use if ENCRYPTION_KEY is not set.
    """
    return CredentialVault(get_settings().ENCRYPTION_KEY)
