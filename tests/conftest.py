"""
Shared fixtures for the Chronovault test suite.

Provides a simulated clock, an in-memory time-lock network that enforces the
unlock condition against that clock, an in-memory content store, and a
file-backed vault store in a temp directory.
"""

from __future__ import annotations

import asyncio
import hashlib
import uuid
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from chronovault.errors import IntegrityError, NotYetUnlockable, PersistenceError
from chronovault.timelock.client import WrapResult
from chronovault.vault.store import FileVaultStore

# clean_env is inherited from the root conftest.py


class FakeClock:
    """Settable clock shared by the state machines and the fake network."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


def _digest(wrapped_key: str) -> str:
    return hashlib.sha256(wrapped_key.encode()).hexdigest()


class FakeTimeLockNetwork:
    """Releases a key only once the network's own clock reaches its unlock time.

    The unlock time recorded at wrap is authoritative; whatever the caller
    passes to ``unwrap`` is ignored, as on a real network.
    """

    def __init__(self, clock: FakeClock) -> None:
        self.clock = clock
        self._keys: dict[str, tuple[bytes, datetime]] = {}
        self.initialize_calls = 0
        self.wrap_calls = 0
        self.unwrap_calls = 0
        self.wrap_error: Exception | None = None
        self.unwrap_error: Exception | None = None
        self.wrap_gate: asyncio.Event | None = None
        self.wrap_started = asyncio.Event()

    async def initialize(self) -> None:
        self.initialize_calls += 1

    async def close(self) -> None:
        pass

    async def wrap(self, raw_key, unlock_time: datetime) -> WrapResult:
        self.wrap_calls += 1
        # Copy before any await: callers wipe their buffer afterwards
        key = bytes(raw_key)
        self.wrap_started.set()
        if self.wrap_gate is not None:
            await self.wrap_gate.wait()
        if self.wrap_error is not None:
            raise self.wrap_error
        wrapped = uuid.uuid4().hex
        self._keys[wrapped] = (key, unlock_time)
        return WrapResult(wrapped_key=wrapped, digest=_digest(wrapped))

    async def unwrap(self, wrapped_key: str, digest: str, unlock_time: datetime) -> bytearray:
        self.unwrap_calls += 1
        if self.unwrap_error is not None:
            raise self.unwrap_error
        if digest != _digest(wrapped_key) or wrapped_key not in self._keys:
            raise IntegrityError("Wrapped key does not match its digest")
        key, locked_until = self._keys[wrapped_key]
        if self.clock() < locked_until:
            raise NotYetUnlockable("The time-lock condition is not yet satisfied")
        return bytearray(key)

    @property
    def wrapped_count(self) -> int:
        return len(self._keys)


class FakeContentStore:
    """In-memory stand-in for IPFS pinning."""

    def __init__(self) -> None:
        self.blobs: dict[str, bytes] = {}
        self.unpinned: list[str] = []
        self.upload_error: Exception | None = None
        self.fetch_calls = 0
        self.upload_calls = 0

    async def upload(self, data) -> str:
        self.upload_calls += 1
        if self.upload_error is not None:
            raise self.upload_error
        cid = "bafy" + hashlib.sha256(bytes(data)).hexdigest()[:40]
        self.blobs[cid] = bytes(data)
        return cid

    async def fetch(self, cid: str) -> bytes:
        self.fetch_calls += 1
        return self.blobs[cid]

    async def unpin(self, cid: str) -> bool:
        self.unpinned.append(cid)
        return self.blobs.pop(cid, None) is not None

    async def close(self) -> None:
        pass


class FlakyStore(FileVaultStore):
    """File store whose next N saves (or deletes) fail."""

    def __init__(self, path: Path) -> None:
        super().__init__(path)
        self.fail_saves = 0
        self.fail_deletes = 0
        self.save_calls = 0

    async def save(self, vault) -> None:
        self.save_calls += 1
        if self.fail_saves:
            self.fail_saves -= 1
            raise PersistenceError("disk full")
        await super().save(vault)

    async def delete(self, vault_id: str) -> bool:
        if self.fail_deletes:
            self.fail_deletes -= 1
            raise PersistenceError("disk full")
        return await super().delete(vault_id)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def timelock(clock) -> FakeTimeLockNetwork:
    return FakeTimeLockNetwork(clock)


@pytest.fixture
def content_store() -> FakeContentStore:
    return FakeContentStore()


@pytest.fixture
def store(tmp_path: Path) -> FlakyStore:
    return FlakyStore(tmp_path / "vaults.json")


@pytest.fixture
def make_vault(clock):
    """Factory for well-formed VaultReference objects."""
    from chronovault.vault.models import VaultReference

    def _make(**overrides):
        fields = {
            "unlock_time": clock() + timedelta(hours=1),
            "wrapped_key": uuid.uuid4().hex,
            "wrapped_key_digest": "digest",
            "created_at": clock(),
            "encoded_payload": "AAAA",
            "destroy_after_read": False,
        }
        fields.update(overrides)
        return VaultReference(**fields)

    return _make
