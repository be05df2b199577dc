"""Vault data models."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import UTC, datetime

from pydantic import BaseModel, Field, field_validator, model_validator

from chronovault.vault.crypto import wipe


def utcnow() -> datetime:
    return datetime.now(UTC)


class VaultReference(BaseModel):
    """A persisted, time-locked vault.

    Never holds the raw key or the plaintext. The ciphertext is either inline
    (``encoded_payload``) or pinned on the content network (``cid``).
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    unlock_time: datetime
    wrapped_key: str
    wrapped_key_digest: str
    created_at: datetime = Field(default_factory=utcnow)
    encoded_payload: str = ""
    destroy_after_read: bool = False
    name: str | None = None
    cid: str | None = None

    @field_validator("unlock_time", "created_at")
    @classmethod
    def _require_utc(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=UTC)
        return v.astimezone(UTC)

    @model_validator(mode="after")
    def _require_payload(self) -> VaultReference:
        if not self.encoded_payload and not self.cid:
            raise ValueError("vault has neither an inline payload nor a content id")
        return self

    @property
    def is_inline(self) -> bool:
        return bool(self.encoded_payload)


@dataclass
class VaultDraft:
    """Pre-commitment vault. Lives only in memory and is never serialized."""

    unlock_time: datetime
    destroy_after_read: bool
    # Sensitive: zeroed by wipe()
    raw_key: bytearray
    encrypted_payload: bytearray
    encoded_payload: str
    name: str | None = None
    # Set once the ciphertext is pinned, so a retried arm reuses the pin
    cid: str | None = None

    @property
    def wiped(self) -> bool:
        return not any(self.raw_key) and not any(self.encrypted_payload)

    def wipe(self) -> None:
        """Zero all byte fields in place."""
        wipe(self.raw_key)
        wipe(self.encrypted_payload)
        self.encoded_payload = ""

    def __repr__(self) -> str:
        return (
            f"VaultDraft(unlock_time={self.unlock_time.isoformat()}, "
            f"destroy_after_read={self.destroy_after_read}, "
            f"payload_bytes={len(self.encrypted_payload)})"
        )
