"""
AES-256-GCM encryption for vault payloads.

Each vault gets its own random 32-byte key. A unique 12-byte nonce is
prepended to the ciphertext. Key material is handed around as ``bytearray``
so it can be overwritten with ``wipe``. Zeroing is best effort: the
``cryptography`` backend and the interpreter may hold their own copies.
"""

from __future__ import annotations

import secrets

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from chronovault.errors import EncryptionError

KEY_SIZE = 32
NONCE_SIZE = 12
TAG_SIZE = 16


def generate_key() -> bytearray:
    """Generate a fresh raw AES-256 key."""
    return bytearray(secrets.token_bytes(KEY_SIZE))


def export_key(key: bytes | bytearray) -> bytearray:
    """Return a wipeable copy of a raw key."""
    return bytearray(key)


def import_key(raw_key: bytes | bytearray) -> AESGCM:
    """Build a cipher from raw key bytes (e.g. as released by the time-lock network)."""
    if len(raw_key) != KEY_SIZE:
        raise EncryptionError(f"Vault key must be {KEY_SIZE} bytes, got {len(raw_key)}")
    return AESGCM(bytes(raw_key))


def encrypt(plaintext: str | bytes, raw_key: bytes | bytearray) -> bytearray:
    """Encrypt with AES-256-GCM. Returns nonce (12 bytes) + ciphertext + tag (16 bytes)."""
    data = plaintext.encode("utf-8") if isinstance(plaintext, str) else plaintext
    cipher = import_key(raw_key)
    nonce = secrets.token_bytes(NONCE_SIZE)
    try:
        ciphertext = cipher.encrypt(nonce, data, None)
    except (ValueError, OverflowError) as e:
        raise EncryptionError("Encryption failed") from e
    return bytearray(nonce + ciphertext)


def decrypt(data: bytes | bytearray, raw_key: bytes | bytearray) -> bytes:
    """Decrypt nonce + ciphertext + tag back to plaintext bytes."""
    if len(data) < NONCE_SIZE + TAG_SIZE:
        raise EncryptionError("Encrypted data too short")
    cipher = import_key(raw_key)
    nonce = bytes(data[:NONCE_SIZE])
    try:
        return cipher.decrypt(nonce, bytes(data[NONCE_SIZE:]), None)
    except InvalidTag as e:
        raise EncryptionError("Decryption failed: wrong key or corrupted data") from e


def decrypt_to_string(data: bytes | bytearray, raw_key: bytes | bytearray) -> str:
    """Decrypt and decode as UTF-8."""
    plaintext = decrypt(data, raw_key)
    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError as e:
        raise EncryptionError("Decrypted data is not valid text") from e


def wipe(buf: bytearray | None) -> None:
    """Overwrite a buffer with zeros in place."""
    if buf is None:
        return
    for i in range(len(buf)):
        buf[i] = 0
