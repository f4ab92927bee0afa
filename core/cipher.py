"""
core/cipher.py -- Symmetric cipher shared with the client application.

Two wire formats use the same 32-byte ENCRYPTION_KEY:

  Envelope (outbound): AES-256-GCM with a random 12-byte nonce.

      base64( nonce || ciphertext || tag )

  Credential block (inbound): AES-256-ECB with PKCS#7 padding, hex encoded
      by the client. This is the format the login form uses for the
      username and password fields; the server only ever decrypts it.
      encrypt_block() exists for the operator CLI and for tests.

The key is passed to the constructor and never stored anywhere else.

Layer rule: core/ is the kernel. No imports from api/ or auth/.
"""

from __future__ import annotations

import base64
import os

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

_NONCE_SIZE = 12  # 96-bit nonce recommended by NIST for AES-GCM
_BLOCK_BITS = 128


class SymmetricCipher:
    """AES-256 helper bound to one immutable key.

    Usage:
        cipher = SymmetricCipher(settings.encryption_key)
        data = cipher.seal(b'{"valid": true}')
        raw = cipher.decrypt_block(bytes.fromhex(username_hex))
    """

    def __init__(self, key: str | bytes) -> None:
        key_bytes = key.encode("utf-8") if isinstance(key, str) else key
        if len(key_bytes) != 32:
            raise ValueError("Cipher key must be exactly 32 bytes.")
        self._key = key_bytes
        self._aesgcm = AESGCM(key_bytes)

    # ------------------------------------------------------------------
    # Envelope (AES-GCM)
    # ------------------------------------------------------------------

    def seal(self, plaintext: bytes) -> str:
        """Encrypt plaintext and return base64(nonce || ciphertext || tag).

        A fresh random nonce is generated for every call so identical
        payloads produce different envelopes.
        """
        nonce = os.urandom(_NONCE_SIZE)
        ct = self._aesgcm.encrypt(nonce, plaintext, None)
        return base64.b64encode(nonce + ct).decode("ascii")

    def open(self, envelope: str) -> bytes:
        """Decrypt an envelope produced by seal().

        Raises cryptography.exceptions.InvalidTag if the key is wrong or the
        data has been tampered with, binascii.Error on malformed base64.
        """
        raw = base64.b64decode(envelope, validate=True)
        return self._aesgcm.decrypt(raw[:_NONCE_SIZE], raw[_NONCE_SIZE:], None)

    # ------------------------------------------------------------------
    # Credential blocks (AES-ECB + PKCS#7)
    # ------------------------------------------------------------------

    def decrypt_block(self, data: bytes) -> bytes:
        """Decrypt block-aligned ciphertext and strip PKCS#7 padding.

        Raises ValueError when the input is empty, not a multiple of the
        block size, or the padding is inconsistent (wrong key or corrupted
        ciphertext).
        """
        if not data or len(data) % (_BLOCK_BITS // 8) != 0:
            raise ValueError("Ciphertext is not a multiple of the block size.")
        decryptor = Cipher(algorithms.AES(self._key), modes.ECB()).decryptor()  # noqa: S305 # nosec B305
        padded = decryptor.update(data) + decryptor.finalize()
        unpadder = padding.PKCS7(_BLOCK_BITS).unpadder()
        return unpadder.update(padded) + unpadder.finalize()

    def encrypt_block(self, plaintext: bytes) -> bytes:
        """Inverse of decrypt_block(). Used by the CLI and tests to build client input."""
        padder = padding.PKCS7(_BLOCK_BITS).padder()
        padded = padder.update(plaintext) + padder.finalize()
        encryptor = Cipher(algorithms.AES(self._key), modes.ECB()).encryptor()  # noqa: S305 # nosec B305
        return encryptor.update(padded) + encryptor.finalize()
