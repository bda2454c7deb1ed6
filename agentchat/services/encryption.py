"""
At-rest encryption for chat text.

AES-256-CBC with PKCS7 padding. Ciphertext is stored as ``ivhex:cipherhex``
so a stored value can be recognised without decrypting it.
"""

import logging
import os
import re
import secrets
from typing import Optional

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

logger = logging.getLogger(__name__)

_HEX_RE = re.compile(r"^[0-9a-f]+$", re.IGNORECASE)

DEV_KEY_PASSPHRASE = b"agentchat-development-key"
DEV_KEY_SALT = b"salt"


class EncryptionError(Exception):
    """Raised when a value cannot be encrypted or decrypted."""


class EncryptionService:
    """Encrypts and decrypts message text with a 32-byte key."""

    def __init__(self, key_hex: Optional[str] = None):
        self._key = self._load_key(key_hex)

    @staticmethod
    def _load_key(key_hex: Optional[str]) -> bytes:
        if key_hex:
            try:
                key = bytes.fromhex(key_hex)
            except ValueError:
                key = b""
            if len(key) == 32:
                return key
            logger.warning("⚠️ ENCRYPTION_KEY is not 64 hex characters, falling back to development key")
        else:
            logger.warning(
                "⚠️ Using default encryption key. Set ENCRYPTION_KEY environment variable for production."
            )
        kdf = Scrypt(salt=DEV_KEY_SALT, length=32, n=2 ** 14, r=8, p=1)
        return kdf.derive(DEV_KEY_PASSPHRASE)

    def encrypt(self, text: str) -> str:
        if not text or not isinstance(text, str):
            raise EncryptionError("Text must be a non-empty string")

        iv = os.urandom(16)
        padder = padding.PKCS7(algorithms.AES.block_size).padder()
        padded = padder.update(text.encode("utf-8")) + padder.finalize()

        encryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).encryptor()
        ciphertext = encryptor.update(padded) + encryptor.finalize()
        return f"{iv.hex()}:{ciphertext.hex()}"

    def decrypt(self, value: str) -> str:
        if not value or not isinstance(value, str):
            raise EncryptionError("Encrypted text must be a non-empty string")

        parts = value.split(":")
        if len(parts) != 2:
            raise EncryptionError("Invalid encrypted text format")

        try:
            iv = bytes.fromhex(parts[0])
            ciphertext = bytes.fromhex(parts[1])
            decryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).decryptor()
            padded = decryptor.update(ciphertext) + decryptor.finalize()
            unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
            plaintext = unpadder.update(padded) + unpadder.finalize()
            return plaintext.decode("utf-8")
        except ValueError as e:
            raise EncryptionError("Failed to decrypt message") from e

    @staticmethod
    def is_encrypted(value: Optional[str]) -> bool:
        """True only for values shaped like ``hex:hex``."""
        if not value or not isinstance(value, str):
            return False
        parts = value.split(":")
        if len(parts) != 2:
            return False
        return all(_HEX_RE.match(part) for part in parts)

    @staticmethod
    def generate_key() -> str:
        return secrets.token_hex(32)
