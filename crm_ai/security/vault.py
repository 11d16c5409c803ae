"""Symmetric encryption of provider API keys at rest.

Two ciphertext formats coexist, both hex segments joined by ``:``:

* current: ``iv:auth_tag:ciphertext`` using AES-256-GCM (12-byte IV, 16-byte tag)
* legacy:  ``iv:ciphertext`` using AES-256-CBC with PKCS7 padding (16-byte IV)

``decrypt`` routes on the segment count, so callers never need to know which
format a stored credential uses. ``encrypt`` always emits the current format.
"""

from __future__ import annotations

import logging
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from crm_ai.core.config import ENCRYPTION_KEY_ENV
from crm_ai.core.exceptions import DecryptionError, VaultConfigurationError

logger = logging.getLogger("crm_ai.vault")

KEY_LENGTH = 32
IV_LENGTH = 12
AUTH_TAG_LENGTH = 16
LEGACY_IV_LENGTH = 16
SEPARATOR = ":"


def _parse_master_key(master_key: str | bytes | None) -> bytes:
    if not master_key:
        raise VaultConfigurationError(f"{ENCRYPTION_KEY_ENV} environment variable not set")
    if isinstance(master_key, bytes):
        key = master_key
    else:
        try:
            key = bytes.fromhex(master_key.strip())
        except ValueError as exc:
            raise VaultConfigurationError("Encryption key must be hex encoded") from exc
    if len(key) != KEY_LENGTH:
        raise VaultConfigurationError(
            f"Encryption key must be {KEY_LENGTH} bytes ({KEY_LENGTH * 2} hex chars)"
        )
    return key


def is_legacy_format(encrypted: str) -> bool:
    return len(encrypted.split(SEPARATOR)) == 2


class CredentialVault:
    """Encrypts and decrypts provider credentials with one process-wide master key."""

    def __init__(self, master_key: str | bytes | None) -> None:
        self._key = _parse_master_key(master_key)

    @classmethod
    def from_env(cls) -> CredentialVault:
        return cls(os.getenv(ENCRYPTION_KEY_ENV))

    def __repr__(self) -> str:
        return "CredentialVault(key=<redacted>)"

    def encrypt(self, plaintext: str) -> str:
        iv = os.urandom(IV_LENGTH)
        sealed = AESGCM(self._key).encrypt(iv, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[:-AUTH_TAG_LENGTH], sealed[-AUTH_TAG_LENGTH:]
        return SEPARATOR.join((iv.hex(), tag.hex(), ciphertext.hex()))

    def decrypt(self, encrypted: str) -> str:
        if not isinstance(encrypted, str) or not encrypted:
            raise DecryptionError("Invalid encrypted data format")
        if is_legacy_format(encrypted):
            logger.debug("Decrypting credential stored in legacy format")
            return self._decrypt_legacy(encrypted)
        return self._decrypt_current(encrypted)

    def _decrypt_current(self, encrypted: str) -> str:
        parts = encrypted.split(SEPARATOR)
        if len(parts) != 3:
            raise DecryptionError("Invalid encrypted data format")
        try:
            iv, tag, ciphertext = (bytes.fromhex(part) for part in parts)
        except ValueError as exc:
            raise DecryptionError("Invalid encrypted data format") from exc
        if len(iv) != IV_LENGTH or len(tag) != AUTH_TAG_LENGTH:
            raise DecryptionError("Invalid encrypted data format")

        try:
            plaintext = AESGCM(self._key).decrypt(iv, ciphertext + tag, None)
            return plaintext.decode("utf-8")
        except (InvalidTag, UnicodeDecodeError) as exc:
            raise DecryptionError("Failed to decrypt data") from exc

    def _decrypt_legacy(self, encrypted: str) -> str:
        iv_hex, ciphertext_hex = encrypted.split(SEPARATOR)
        try:
            iv = bytes.fromhex(iv_hex)
            ciphertext = bytes.fromhex(ciphertext_hex)
        except ValueError as exc:
            raise DecryptionError("Invalid legacy encrypted data format") from exc
        if len(iv) != LEGACY_IV_LENGTH or not ciphertext or len(ciphertext) % 16:
            raise DecryptionError("Invalid legacy encrypted data format")

        decryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).decryptor()
        unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
        try:
            padded = decryptor.update(ciphertext) + decryptor.finalize()
            plaintext = unpadder.update(padded) + unpadder.finalize()
            return plaintext.decode("utf-8")
        except ValueError as exc:
            raise DecryptionError("Failed to decrypt legacy data") from exc


__all__ = ["CredentialVault", "is_legacy_format"]
