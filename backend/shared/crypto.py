"""At-rest encryption for customer contact fields.

Ciphertexts use the OpenSSL passphrase format that CryptoJS produces for
``AES.encrypt(text, passphrase)``: base64 of ``b"Salted__" + salt + data``,
AES-256-CBC with PKCS#7 padding, key and IV derived by MD5 EVP_BytesToKey.
Rows written by the web frontend and by this service are interchangeable.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import logging
import os

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

logger = logging.getLogger(__name__)

_MAGIC = b"Salted__"
_SALT_LEN = 8
_KEY_LEN = 32
_IV_LEN = 16


def _evp_bytes_to_key(passphrase: bytes, salt: bytes) -> tuple[bytes, bytes]:
    derived = b""
    block = b""
    while len(derived) < _KEY_LEN + _IV_LEN:
        block = hashlib.md5(block + passphrase + salt).digest()  # noqa: S324
        derived += block
    return derived[:_KEY_LEN], derived[_KEY_LEN : _KEY_LEN + _IV_LEN]


class ContactCipher:
    """Encrypt/decrypt contact strings with a shared passphrase.

    Both directions are lenient: with no key configured, or for input that
    is not a ciphertext, the value passes through unchanged. This lets
    legacy plaintext rows coexist with encrypted ones.
    """

    def __init__(self, key: str | None) -> None:
        self._key = key.encode("utf-8") if key else b""
        if not self._key:
            logger.warning("Encryption key not configured, contact fields stay plaintext")

    @property
    def enabled(self) -> bool:
        return bool(self._key)

    def encrypt(self, plaintext: str | None) -> str | None:
        if not plaintext or not self._key:
            return plaintext

        salt = os.urandom(_SALT_LEN)
        key, iv = _evp_bytes_to_key(self._key, salt)
        padder = padding.PKCS7(algorithms.AES.block_size).padder()
        data = padder.update(plaintext.encode("utf-8")) + padder.finalize()
        encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
        ciphertext = encryptor.update(data) + encryptor.finalize()
        return base64.b64encode(_MAGIC + salt + ciphertext).decode("ascii")

    def decrypt(self, ciphertext: str | None) -> str | None:
        if not ciphertext or not self._key:
            return ciphertext

        try:
            raw = base64.b64decode(ciphertext, validate=True)
        except (binascii.Error, ValueError):
            return ciphertext
        if not raw.startswith(_MAGIC) or len(raw) <= len(_MAGIC) + _SALT_LEN:
            return ciphertext

        salt = raw[len(_MAGIC) : len(_MAGIC) + _SALT_LEN]
        body = raw[len(_MAGIC) + _SALT_LEN :]
        if len(body) % _IV_LEN:
            return ciphertext

        key, iv = _evp_bytes_to_key(self._key, salt)
        try:
            decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
            padded = decryptor.update(body) + decryptor.finalize()
            unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
            data = unpadder.update(padded) + unpadder.finalize()
            return data.decode("utf-8")
        except ValueError as e:
            # Wrong key or corrupted value; UnicodeDecodeError is a ValueError too
            logger.error(f"Decryption error: {e}")
            return ciphertext

    def is_encrypted(self, value: str | None) -> bool:
        """True when *value* decrypts to something other than itself."""
        if not value or not self._key:
            return False
        return self.decrypt(value) != value
