"""
Vault unlock — turns a stored or shared vault reference back into plaintext.

States:
    loading -> (not_found | locked | ready) -> unlocking -> (unlocked | destroyed | error)

``not_found`` and ``destroyed`` are terminal. ``error`` always offers
``retry()``: unwrap is idempotent and side-effect free when it fails.

The local store wins over a link fragment for the same id. If the two
disagree, the fragment is ignored (and logged).

Decrypted plaintext lives only on this object and is dropped by ``close()``.
Python strings cannot be zeroed, so this is best effort.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime
from enum import StrEnum

from chronovault.errors import (
    AlreadyInProgress,
    IntegrityError,
    InvalidStateError,
    NetworkError,
    PersistenceError,
    friendly_error,
)
from chronovault.pinning import ContentStore
from chronovault.retry import with_retry
from chronovault.timelock.client import TimeLockNetwork, is_unlockable
from chronovault.vault.crypto import decrypt_to_string, wipe
from chronovault.vault.encoding import from_base64
from chronovault.vault.models import VaultReference
from chronovault.vault.share import decode_vault_from_fragment
from chronovault.vault.store import VaultStore

logger = logging.getLogger(__name__)

FETCH_ATTEMPTS = 2


class UnlockState(StrEnum):
    LOADING = "loading"
    NOT_FOUND = "not_found"
    LOCKED = "locked"
    READY = "ready"
    UNLOCKING = "unlocking"
    UNLOCKED = "unlocked"
    DESTROYED = "destroyed"
    ERROR = "error"


class VaultUnlocker:
    """One unlock flow for one vault id."""

    def __init__(
        self,
        timelock: TimeLockNetwork,
        store: VaultStore,
        content_store: ContentStore | None = None,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self.timelock = timelock
        self.store = store
        self.content_store = content_store
        self.clock = clock

        self.state = UnlockState.LOADING
        self.vault: VaultReference | None = None
        self.source: str | None = None  # "local" or "shared"
        self.error: str | None = None
        self.progress = ""
        self._plaintext: str | None = None

    @property
    def plaintext(self) -> str | None:
        return self._plaintext

    @property
    def seconds_remaining(self) -> float:
        if self.vault is None:
            return 0.0
        return max(0.0, (self.vault.unlock_time - self.clock()).total_seconds())

    async def load(self, vault_id: str, fragment: str = "") -> UnlockState:
        """Resolve the vault from the local store, then from the link fragment."""
        self.state = UnlockState.LOADING
        local: VaultReference | None = None
        try:
            local = await self.store.get(vault_id)
        except PersistenceError as e:
            logger.warning("Local store unavailable while loading %s: %s", vault_id, e)

        shared = decode_vault_from_fragment(fragment, vault_id) if fragment else None

        if local is not None:
            if shared is not None and shared != local:
                logger.warning("Shared link for %s disagrees with the local copy", vault_id)
            self.vault, self.source = local, "local"
        elif shared is not None:
            self.vault, self.source = shared, "shared"
        else:
            self.state = UnlockState.NOT_FOUND
            return self.state

        self.state = self._gate()
        return self.state

    def _gate(self) -> UnlockState:
        if self.vault is None:
            raise InvalidStateError("No vault is loaded")
        if is_unlockable(self.vault.unlock_time, self.clock()):
            return UnlockState.READY
        return UnlockState.LOCKED

    def refresh(self) -> UnlockState:
        """Re-check the local clock. Moves ``locked`` to ``ready`` once due."""
        if self.state == UnlockState.LOCKED:
            self.state = self._gate()
        return self.state

    async def unlock(self) -> str | None:
        """Release the key, decrypt, and apply destroy-after-read.

        Returns the plaintext, or None with ``state``/``error`` describing why.
        """
        if self.state == UnlockState.UNLOCKING:
            raise AlreadyInProgress("This vault is already being unlocked")
        if self.state != UnlockState.READY or self.vault is None:
            raise InvalidStateError(f"Cannot unlock from state {self.state}")

        vault = self.vault
        if not is_unlockable(vault.unlock_time, self.clock()):
            self.state = UnlockState.LOCKED
            return None

        self.state = UnlockState.UNLOCKING
        self.error = None
        raw_key: bytearray | None = None
        try:
            self.progress = "Connecting to time-lock network..."
            await self.timelock.initialize()

            self.progress = "Retrieving decryption key..."
            raw_key = await self.timelock.unwrap(
                vault.wrapped_key, vault.wrapped_key_digest, vault.unlock_time
            )

            self.progress = "Loading encrypted data..."
            ciphertext = await self._load_payload(vault)

            self.progress = "Decrypting..."
            plaintext = decrypt_to_string(ciphertext, raw_key)
        except Exception as e:
            return self._fail(e)
        finally:
            wipe(raw_key)
            self.progress = ""

        if vault.destroy_after_read:
            # Delete before reporting success so a restart cannot re-read it
            try:
                await self.store.delete(vault.id)
            except Exception as e:
                return self._fail(e)
            await self._unpin(vault)
            self._plaintext = plaintext
            self.state = UnlockState.DESTROYED
            logger.info("Vault %s read and destroyed", vault.id)
        else:
            self._plaintext = plaintext
            self.state = UnlockState.UNLOCKED
            logger.info("Vault %s unlocked", vault.id)
        return plaintext

    async def _load_payload(self, vault: VaultReference) -> bytes:
        if vault.is_inline:
            try:
                return from_base64(vault.encoded_payload)
            except ValueError as e:
                raise IntegrityError("Vault payload is corrupted") from e

        if self.content_store is None:
            raise NetworkError("This vault's data is stored remotely and no gateway is configured")
        store = self.content_store
        cid = vault.cid or ""
        return await with_retry(
            lambda: store.fetch(cid),
            max_attempts=FETCH_ATTEMPTS,
            on_retry=lambda n, e: logger.warning("Fetch retry %d for %s: %s", n, cid, e),
        )

    async def _unpin(self, vault: VaultReference) -> None:
        if not vault.cid or self.content_store is None:
            return
        try:
            await self.content_store.unpin(vault.cid)
        except Exception as e:
            logger.warning("Unpin of %s failed: %s", vault.cid, e)

    def _fail(self, err: Exception) -> None:
        self.error = friendly_error(err)
        self.state = UnlockState.ERROR
        logger.warning("Unlock of %s failed: %r", self.vault.id if self.vault else "?", err)
        return None

    def retry(self) -> UnlockState:
        """Leave ``error`` and go back to ``ready`` (or ``locked``)."""
        if self.state != UnlockState.ERROR:
            raise InvalidStateError(f"Nothing to retry from state {self.state}")
        self.error = None
        self.state = self._gate()
        return self.state

    def close(self) -> None:
        """Drop the plaintext. Call when the vault is no longer shown."""
        self._plaintext = None
