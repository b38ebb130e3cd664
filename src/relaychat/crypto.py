"""
relaychat - At-rest encryption for local conversation files.

Stored text form:  hex(iv) + ":" + hex(ciphertext)

- Key: SHA-256 of a fixed passphrase, derived once per process
- Cipher: AES-256-CBC with PKCS7 padding
- IV: fresh 16 random bytes per encryption call

The passphrase ships inside the client, so this protects files from casual
inspection only. It is kept in this shape for compatibility with existing
conversation files; real key management would replace it wholesale.

Uses the cryptography library (Apache 2.0/BSD License).
"""

import functools
import hashlib
import os
from typing import Optional

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from .constants import DEFAULT_STORAGE_PASSPHRASE, STORAGE_IV_SIZE, STORAGE_SEPARATOR
from .errors import CryptoError, ErrorCode


@functools.lru_cache(maxsize=None)
def derive_storage_key(passphrase: str) -> bytes:
    """Reduce a passphrase to a 32-byte AES key (SHA-256, cached per process)."""
    return hashlib.sha256(passphrase.encode("utf-8")).digest()


class StorageCipher:
    """Encrypts and decrypts the text stored in conversation files."""

    def __init__(self, passphrase: str = DEFAULT_STORAGE_PASSPHRASE):
        self._key = derive_storage_key(passphrase)

    def encrypt(self, plaintext: str) -> str:
        """
        Encrypt a UTF-8 string.

        Returns:
            ``hex(iv):hex(ciphertext)``

        Raises:
            CryptoError: If encryption fails
        """
        try:
            iv = os.urandom(STORAGE_IV_SIZE)
            padder = padding.PKCS7(algorithms.AES.block_size).padder()
            padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()

            encryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).encryptor()
            ciphertext = encryptor.update(padded) + encryptor.finalize()
        except (ValueError, TypeError, AttributeError) as e:
            raise CryptoError(ErrorCode.E401_ENCRYPTION_FAILED, f"Encryption failed: {e}") from e

        return iv.hex() + STORAGE_SEPARATOR + ciphertext.hex()

    def decrypt(self, stored: str) -> str:
        """
        Decrypt a value produced by encrypt().

        Raises:
            CryptoError: If the value is malformed or does not decrypt to UTF-8
        """
        iv, ciphertext = self._split(stored)

        try:
            decryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).decryptor()
            padded = decryptor.update(ciphertext) + decryptor.finalize()

            unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
            plaintext = unpadder.update(padded) + unpadder.finalize()
            return plaintext.decode("utf-8")
        except (ValueError, UnicodeDecodeError) as e:
            raise CryptoError(ErrorCode.E402_DECRYPTION_FAILED, f"Decryption failed: {e}") from e

    def try_decrypt(self, stored: str) -> Optional[str]:
        """Decrypt, returning None instead of raising on any failure."""
        try:
            return self.decrypt(stored)
        except CryptoError:
            return None

    @staticmethod
    def _split(stored: str):
        if not isinstance(stored, str):
            raise CryptoError(ErrorCode.E403_MALFORMED_CIPHERTEXT, "Stored value is not text")

        parts = stored.strip().split(STORAGE_SEPARATOR, 1)
        if len(parts) != 2:
            raise CryptoError(ErrorCode.E403_MALFORMED_CIPHERTEXT, "Missing IV separator")

        try:
            iv = bytes.fromhex(parts[0])
            ciphertext = bytes.fromhex(parts[1])
        except ValueError as e:
            raise CryptoError(
                ErrorCode.E403_MALFORMED_CIPHERTEXT, f"Invalid hex segment: {e}"
            ) from e

        if len(iv) != STORAGE_IV_SIZE:
            raise CryptoError(
                ErrorCode.E403_MALFORMED_CIPHERTEXT,
                f"IV must be {STORAGE_IV_SIZE} bytes",
                {"length": len(iv)},
            )
        if not ciphertext or len(ciphertext) % STORAGE_IV_SIZE:
            raise CryptoError(
                ErrorCode.E403_MALFORMED_CIPHERTEXT, "Ciphertext is not block aligned"
            )
        return iv, ciphertext
