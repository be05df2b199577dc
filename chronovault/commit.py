"""
Vault commitment — turns a plaintext secret into a persisted, time-locked vault.

Creation has two phases with one irreversible boundary:

1. DRAFT (reversible). Encrypts the secret under a fresh key and keeps raw
   key + ciphertext in memory only. No network calls, no persistence. Can be
   discarded, which zeroes the buffers.

2. ARM (irreversible). Wraps the raw key with the time-lock network, builds a
   VaultReference, persists it, and only then zeroes the draft. A crash
   before persistence is the same as never having armed; wiping after
   persistence means a crash never destroys the only copy of the key.

States: form -> encrypting -> draft -> arming -> (committed | draft).
Only ``form`` and ``draft`` are resumable; the other two are never left
visible after a method returns or raises.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import UTC, datetime
from enum import StrEnum

from chronovault.errors import (
    AlreadyInProgress,
    ChronovaultError,
    EncryptionError,
    InvalidStateError,
    PersistenceError,
    TimeLockError,
    UploadError,
    ValidationError,
    friendly_error,
)
from chronovault.pinning import INLINE_DATA_THRESHOLD, ContentStore, should_use_inline_storage
from chronovault.timelock.client import TimeLockNetwork
from chronovault.vault.crypto import encrypt, generate_key, wipe
from chronovault.vault.encoding import to_base64
from chronovault.vault.models import VaultDraft, VaultReference
from chronovault.vault.store import VaultStore

logger = logging.getLogger(__name__)


class CommitState(StrEnum):
    FORM = "form"
    ENCRYPTING = "encrypting"
    DRAFT = "draft"
    ARMING = "arming"
    COMMITTED = "committed"


def _seal(secret: str) -> tuple[bytearray, bytearray]:
    raw_key = generate_key()
    try:
        return raw_key, encrypt(secret, raw_key)
    except BaseException:
        wipe(raw_key)
        raise


class VaultCommitter:
    """Owns at most one draft and arms it exactly once."""

    def __init__(
        self,
        timelock: TimeLockNetwork,
        store: VaultStore,
        content_store: ContentStore | None = None,
        inline_threshold: int = INLINE_DATA_THRESHOLD,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self.timelock = timelock
        self.store = store
        self.content_store = content_store
        self.inline_threshold = inline_threshold
        self.clock = clock

        self.state = CommitState.FORM
        self.error: str | None = None
        self.draft: VaultDraft | None = None
        self.vault: VaultReference | None = None  # last committed
        self._arming = False

    # ── Phase 1: draft ──

    async def create_draft(
        self,
        secret: str,
        unlock_time: datetime,
        destroy_after_read: bool = False,
        name: str | None = None,
    ) -> VaultDraft:
        """Encrypt locally and hold the result in memory. No network calls."""
        if self._arming:
            raise AlreadyInProgress("A vault is being armed")

        if not secret:
            self.error = "Secret must not be empty"
            raise ValidationError(self.error)
        if unlock_time.tzinfo is None:
            unlock_time = unlock_time.replace(tzinfo=UTC)
        if unlock_time <= self.clock():
            self.error = "Unlock time must be in the future"
            raise ValidationError(self.error)

        # A new draft replaces, and wipes, any previous one
        self._drop_draft()
        self.state = CommitState.ENCRYPTING
        self.error = None

        try:
            raw_key, encrypted = await asyncio.to_thread(_seal, secret)
        except Exception as e:
            self.state = CommitState.FORM
            logger.error("Failed to create draft: %s", e)
            if isinstance(e, EncryptionError):
                self.error = friendly_error(e)
                raise
            self.error = "Encryption failed"
            raise EncryptionError("Encryption failed") from e

        self.draft = VaultDraft(
            unlock_time=unlock_time,
            destroy_after_read=destroy_after_read,
            raw_key=raw_key,
            encrypted_payload=encrypted,
            encoded_payload=to_base64(encrypted),
            name=name,
        )
        self.state = CommitState.DRAFT
        logger.debug("Draft ready (%d bytes ciphertext)", len(encrypted))
        return self.draft

    def discard(self, draft: VaultDraft | None = None) -> None:
        """Zero the draft's buffers and return to the form."""
        if draft is not None and draft is not self.draft:
            draft.wipe()
            return
        self._drop_draft()
        if not self._arming:
            self.state = CommitState.FORM
        self.error = None

    # ── Phase 2: arm ──

    async def arm(self, draft: VaultDraft | None = None) -> VaultReference:
        """Commit the draft. Irreversible once it returns."""
        if self._arming:
            raise AlreadyInProgress("This vault is already being armed")
        draft = draft or self.draft
        if draft is None or draft is not self.draft:
            raise InvalidStateError("There is no draft to arm")

        self._arming = True
        self.state = CommitState.ARMING
        self.error = None
        try:
            vault = await self._arm(draft)
        except ChronovaultError as e:
            self.state = CommitState.DRAFT if self.draft is draft else CommitState.FORM
            self.error = friendly_error(e)
            logger.warning("Failed to arm vault: %s", e)
            raise
        finally:
            self._arming = False

        self.vault = vault
        self.state = CommitState.COMMITTED
        logger.info("Armed vault %s (unlocks %s)", vault.id, vault.unlock_time.isoformat())
        return vault

    async def _arm(self, draft: VaultDraft) -> VaultReference:
        cid: str | None = None
        encoded = draft.encoded_payload

        if self.content_store is not None and not should_use_inline_storage(
            draft.encrypted_payload, self.inline_threshold
        ):
            if draft.cid is None:
                try:
                    draft.cid = await self.content_store.upload(draft.encrypted_payload)
                except Exception as e:
                    if isinstance(e, UploadError):
                        raise
                    raise UploadError(
                        "Could not store the encrypted vault. Please try again."
                    ) from e
            else:
                logger.debug("Reusing pinned ciphertext %s", draft.cid)
            cid = draft.cid
            encoded = ""

        # === POINT OF NO RETURN ===
        try:
            await self.timelock.initialize()
            wrapped = await self.timelock.wrap(draft.raw_key, draft.unlock_time)
        except Exception as e:
            if isinstance(e, TimeLockError):
                raise
            raise TimeLockError("Could not create the time lock. Please try again.") from e

        if self.draft is not draft:
            raise InvalidStateError("The draft was discarded while arming")

        vault = VaultReference(
            unlock_time=draft.unlock_time,
            wrapped_key=wrapped.wrapped_key,
            wrapped_key_digest=wrapped.digest,
            created_at=self.clock(),
            encoded_payload=encoded,
            destroy_after_read=draft.destroy_after_read,
            name=draft.name,
            cid=cid,
        )

        try:
            await self.store.save(vault)
        except Exception as e:
            # The wrap result goes out of scope here; a retry always wraps afresh
            del wrapped, vault
            if isinstance(e, PersistenceError):
                raise
            raise PersistenceError("Could not save the vault. Please try again.") from e

        # === WIPE ALL SENSITIVE DATA ===
        self._drop_draft()
        return vault

    # ── Lifecycle ──

    def reset(self) -> None:
        """Back to an empty form (after showing a committed vault)."""
        if self._arming:
            raise AlreadyInProgress("A vault is being armed")
        self._drop_draft()
        self.state = CommitState.FORM
        self.error = None

    def close(self) -> None:
        """Wipe any draft. Call on shutdown."""
        self._drop_draft()

    def __enter__(self) -> VaultCommitter:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def _drop_draft(self) -> None:
        if self.draft is not None:
            self.draft.wipe()
            self.draft = None
