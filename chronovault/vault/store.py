"""
Vault store — durable local collection of vault references, keyed by id.

The default backend is a single JSON file (chmod 600) rewritten atomically on
every change. Blocking file I/O runs in a worker thread so callers on the
event loop can simply ``await`` each operation.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import stat
import tempfile
from pathlib import Path
from typing import Protocol

from pydantic import ValidationError as PydanticValidationError

from chronovault.errors import PersistenceError
from chronovault.vault.models import VaultReference

logger = logging.getLogger(__name__)


class VaultStore(Protocol):
    """Keyed collection of vault references."""

    async def save(self, vault: VaultReference) -> None: ...

    async def get(self, vault_id: str) -> VaultReference | None: ...

    async def list_all(self) -> list[VaultReference]: ...

    async def delete(self, vault_id: str) -> bool: ...


class FileVaultStore:
    """JSON-file-backed vault store."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)

    # ── Sync functions (called via asyncio.to_thread) ──

    def _read(self) -> dict[str, VaultReference]:
        if not self.path.exists():
            return {}
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise PersistenceError(f"Could not read vault store at {self.path}") from e

        vaults: dict[str, VaultReference] = {}
        for item in raw.get("vaults", []):
            try:
                vault = VaultReference.model_validate(item)
            except PydanticValidationError as e:
                logger.warning("Skipping malformed vault entry in %s: %s", self.path, e)
                continue
            vaults[vault.id] = vault
        return vaults

    def _write(self, vaults: dict[str, VaultReference]) -> None:
        payload = {"vaults": [v.model_dump(mode="json") for v in vaults.values()]}
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=".vaults-", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(payload, f, indent=2)
                os.chmod(tmp, stat.S_IRUSR | stat.S_IWUSR)  # 600
                os.replace(tmp, self.path)
            except BaseException:
                Path(tmp).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise PersistenceError(f"Could not write vault store at {self.path}") from e

    def _save(self, vault: VaultReference) -> None:
        vaults = self._read()
        vaults[vault.id] = vault
        self._write(vaults)

    def _delete(self, vault_id: str) -> bool:
        vaults = self._read()
        if vaults.pop(vault_id, None) is None:
            return False
        self._write(vaults)
        return True

    # ── Async API ──

    async def save(self, vault: VaultReference) -> None:
        """Insert or replace a vault reference."""
        await asyncio.to_thread(self._save, vault)
        logger.debug("Saved vault %s", vault.id)

    async def get(self, vault_id: str) -> VaultReference | None:
        """Return a vault by id, or None if not found."""
        vaults = await asyncio.to_thread(self._read)
        return vaults.get(vault_id)

    async def list_all(self) -> list[VaultReference]:
        """Return all vaults, oldest first."""
        vaults = await asyncio.to_thread(self._read)
        return sorted(vaults.values(), key=lambda v: v.created_at)

    async def delete(self, vault_id: str) -> bool:
        """Delete a vault. Returns True if it existed."""
        deleted = await asyncio.to_thread(self._delete, vault_id)
        if deleted:
            logger.debug("Deleted vault %s", vault_id)
        return deleted

    async def count(self) -> int:
        vaults = await asyncio.to_thread(self._read)
        return len(vaults)
