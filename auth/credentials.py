"""
auth/credentials.py -- Credential Decoder.

The client encrypts the username and password fields with the shared
ENCRYPTION_KEY (AES-ECB, PKCS#7) and sends them hex encoded. This module
accepts ONLY that form: plaintext or malformed input is rejected before the
cipher is touched, so a client that forgets to encrypt fails closed.

Errors name the offending field for diagnostics but never carry the
ciphertext or key.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from core.cipher import SymmetricCipher

_HEX_RE = re.compile(r"\A[0-9a-fA-F]+\Z")


class CredentialFormatError(ValueError):
    """Input is empty, odd-length, or not hexadecimal."""

    def __init__(self, field: str | None, message: str) -> None:
        super().__init__(message)
        self.field = field
        self.message = message


class CredentialDecryptionError(ValueError):
    """Input was well-formed hex but did not decrypt under the configured key."""

    def __init__(self, field: str) -> None:
        self.field = field
        self.message = f"{field.capitalize()} decryption failed"
        super().__init__(self.message)


@dataclass(frozen=True)
class Credentials:
    username: str
    password: str

    def __repr__(self) -> str:
        return f"Credentials(username={self.username!r}, password='***')"


def is_hex_ciphertext(value: str) -> bool:
    """True when value is non-empty, even-length hexadecimal."""
    return bool(value) and len(value) % 2 == 0 and _HEX_RE.match(value) is not None


def validate_encrypted_credentials(username: str, password: str) -> None:
    """Raise CredentialFormatError unless both fields look like client ciphertext."""
    if not username or not password:
        raise CredentialFormatError(None, "Missing username or password")
    if not is_hex_ciphertext(username):
        raise CredentialFormatError("username", "Invalid username format - must be encrypted (hex-encoded)")
    if not is_hex_ciphertext(password):
        raise CredentialFormatError("password", "Invalid password format - must be encrypted (hex-encoded)")


def _decrypt_field(cipher: SymmetricCipher, field: str, value: str) -> str:
    try:
        return cipher.decrypt_block(bytes.fromhex(value)).decode("utf-8")
    except ValueError as exc:  # bad padding, block size, or UTF-8
        raise CredentialDecryptionError(field) from exc


def decode_credentials(username: str, password: str, cipher: SymmetricCipher) -> Credentials:
    """Validate and decrypt an inbound username/password pair.

    Both fields are format-checked before either is decrypted. The username
    is decrypted first, so a pair where both fields are corrupt reports the
    username.

    Raises:
        CredentialFormatError: a field is empty or not hex.
        CredentialDecryptionError: a field did not decrypt.
    """
    validate_encrypted_credentials(username, password)
    return Credentials(
        username=_decrypt_field(cipher, "username", username),
        password=_decrypt_field(cipher, "password", password),
    )
