"""Credential encryption using AES-256-GCM.

Stored payloads are a single base64 string: nonce (12 bytes) + ciphertext + tag (16 bytes).
"""

import base64
import binascii
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from finvault.errors import AuthenticationFailure

KEY_SIZE = 32  # 256 bits
_NONCE_SIZE = 12  # 96 bits, recommended for AES-GCM
_TAG_SIZE = 16


def generate_key() -> bytes:
    """Generate a new random 256-bit vault key."""
    return os.urandom(KEY_SIZE)


def encode_key(key: bytes) -> str:
    """Encode a key as base64 for the secrets bundle."""
    _check_key(key)
    return base64.b64encode(key).decode("ascii")


def decode_key(encoded: str) -> bytes:
    """Decode a 256-bit key written as base64 or hex.

    Raises ValueError if the text is neither or the key is not 32 bytes.
    """
    text = encoded.strip()
    if len(text) == KEY_SIZE * 2:
        try:
            return bytes.fromhex(text)
        except ValueError:
            pass
    try:
        key = base64.b64decode(text, validate=True)
    except binascii.Error:
        raise ValueError("Encryption key must be base64 or hex encoded") from None
    _check_key(key)
    return key


def _check_key(key: bytes) -> None:
    if len(key) != KEY_SIZE:
        raise ValueError(f"Encryption key must be {KEY_SIZE} bytes, got {len(key)}")


def encrypt(key: bytes, plaintext: bytes) -> tuple[bytes, bytes]:
    """Encrypt with a fresh random nonce. Returns (nonce, ciphertext + tag)."""
    _check_key(key)
    nonce = os.urandom(_NONCE_SIZE)
    return nonce, AESGCM(key).encrypt(nonce, plaintext, None)


def decrypt(key: bytes, nonce: bytes, ciphertext: bytes) -> bytes:
    """Decrypt ciphertext + tag. Raises AuthenticationFailure on any mismatch."""
    _check_key(key)
    if len(nonce) != _NONCE_SIZE or len(ciphertext) < _TAG_SIZE:
        raise AuthenticationFailure("Encrypted payload is truncated")
    try:
        return AESGCM(key).decrypt(nonce, ciphertext, None)
    except InvalidTag:
        raise AuthenticationFailure(
            "Authentication failed: wrong key or tampered payload"
        ) from None


def encrypt_value(plaintext: str, key: bytes) -> str:
    """Encrypt a credential value into a single base64 storage string."""
    nonce, ciphertext = encrypt(key, plaintext.encode("utf-8"))
    return base64.b64encode(nonce + ciphertext).decode("ascii")


def decrypt_value(payload: str, key: bytes) -> str:
    """Decrypt a base64 storage string back to the plaintext value.

    Raises AuthenticationFailure on malformed, truncated or tampered payloads.
    """
    try:
        blob = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError):
        raise AuthenticationFailure("Encrypted payload is not valid base64") from None
    if len(blob) < _NONCE_SIZE + _TAG_SIZE:
        raise AuthenticationFailure("Encrypted payload is truncated")
    plaintext = decrypt(key, blob[:_NONCE_SIZE], blob[_NONCE_SIZE:])
    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError:
        raise AuthenticationFailure("Decrypted payload is not valid UTF-8") from None
