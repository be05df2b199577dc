"""URL-safe base64 without padding, for embedding bytes in links."""

from __future__ import annotations

import base64


def to_base64(data: bytes | bytearray) -> str:
    """Encode bytes as unpadded URL-safe base64."""
    return base64.urlsafe_b64encode(bytes(data)).decode("ascii").rstrip("=")


def from_base64(text: str) -> bytes:
    """Decode unpadded URL-safe base64. Raises ValueError on malformed input."""
    padded = text + "=" * (-len(text) % 4)
    return base64.b64decode(padded, altchars=b"-_", validate=True)
