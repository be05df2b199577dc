"""
Shareable links and backup blobs.

A single vault travels as ``<public_url>/vault/<id>#<token>``; a batch of
vaults as ``<public_url>/restore#<token>``. Tokens are URL-safe base64 of
compact JSON and live only in the URL fragment, which browsers never send to
a server.

Usage:
    url = share_url(vault, "https://vault.example")
    vault_id, fragment = parse_vault_url(url)
    shared = decode_vault_from_fragment(fragment, vault_id)

    blob = encode_backup(vaults)
    restored = decode_backup(blob)      # None if malformed
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import StrEnum
from urllib.parse import urlsplit

from pydantic import TypeAdapter

from chronovault.vault.encoding import from_base64, to_base64
from chronovault.vault.models import VaultReference
from chronovault.vault.store import VaultStore

logger = logging.getLogger(__name__)

_VAULT_LIST = TypeAdapter(list[VaultReference])


def _dump(obj: object) -> str:
    text = json.dumps(obj, separators=(",", ":"), ensure_ascii=False)
    return to_base64(text.encode("utf-8"))


def _load(token: str) -> object:
    return json.loads(from_base64(token).decode("utf-8"))


def _strip_fragment(fragment: str) -> str:
    return fragment[1:] if fragment.startswith("#") else fragment


# ─── Single vault ────────────────────────────────────────────────────


def encode_vault(vault: VaultReference) -> str:
    """Encode one vault reference as a URL-safe token."""
    return _dump(vault.model_dump(mode="json", exclude_none=True))


def decode_vault(token: str) -> VaultReference | None:
    """Decode a single-vault token. Returns None on malformed input."""
    try:
        return VaultReference.model_validate(_load(token))
    except (ValueError, RecursionError):
        return None


def share_url(vault: VaultReference, public_url: str) -> str:
    """Build the shareable link for a vault."""
    return f"{public_url.rstrip('/')}/vault/{vault.id}#{encode_vault(vault)}"


def parse_vault_url(url: str) -> tuple[str, str]:
    """Split a shareable link into (vault_id, fragment).

    A bare vault id is accepted too and yields an empty fragment.
    """
    parts = urlsplit(url)
    if not parts.scheme and "/" not in parts.path:
        return parts.path, parts.fragment
    segments = [s for s in parts.path.split("/") if s]
    if len(segments) >= 2 and segments[-2] == "vault":
        return segments[-1], parts.fragment
    return "", parts.fragment


def decode_vault_from_fragment(fragment: str, vault_id: str) -> VaultReference | None:
    """Decode the vault embedded in a link fragment, if it matches ``vault_id``."""
    token = _strip_fragment(fragment)
    if not token:
        return None
    vault = decode_vault(token)
    if vault is None:
        logger.debug("Fragment for %s did not decode to a vault", vault_id)
        return None
    if vault.id != vault_id:
        logger.warning("Fragment carries vault %s, expected %s", vault.id, vault_id)
        return None
    return vault


# ─── Backup blobs ────────────────────────────────────────────────────


def encode_backup(vaults: list[VaultReference]) -> str:
    """Serialize vaults, in order, into one URL-embeddable token."""
    return _dump([v.model_dump(mode="json", exclude_none=True) for v in vaults])


def decode_backup(token: str) -> list[VaultReference] | None:
    """Deserialize a backup token. Returns None (never raises) if malformed."""
    try:
        data = _load(token)
        if not isinstance(data, list):
            return None
        return _VAULT_LIST.validate_python(data)
    except (ValueError, TypeError, RecursionError):
        return None


def backup_url(vaults: list[VaultReference], public_url: str) -> str:
    return f"{public_url.rstrip('/')}/restore#{encode_backup(vaults)}"


class BackupStatus(StrEnum):
    ABSENT = "absent"
    CORRUPT = "corrupt"
    OK = "ok"


@dataclass
class BackupDecodeResult:
    """Tagged decode result: tells "no backup" apart from "damaged backup"."""

    status: BackupStatus
    vaults: list[VaultReference] = field(default_factory=list)


def decode_backup_fragment(fragment: str) -> BackupDecodeResult:
    """Decode the backup carried in a restore link's fragment."""
    token = _strip_fragment(fragment).strip()
    if not token:
        return BackupDecodeResult(BackupStatus.ABSENT)
    vaults = decode_backup(token)
    if vaults is None:
        return BackupDecodeResult(BackupStatus.CORRUPT)
    return BackupDecodeResult(BackupStatus.OK, vaults)


@dataclass
class RestoreSummary:
    restored: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)


async def preview_restore(store: VaultStore, vaults: list[VaultReference]) -> RestoreSummary:
    """Report which vaults a restore would add and which already exist."""
    existing = {v.id for v in await store.list_all()}
    summary = RestoreSummary()
    for vault in vaults:
        (summary.skipped if vault.id in existing else summary.restored).append(vault.id)
    return summary


async def restore_backup(store: VaultStore, vaults: list[VaultReference]) -> RestoreSummary:
    """Merge vaults into the store. Existing ids are never overwritten."""
    existing = {v.id for v in await store.list_all()}
    summary = RestoreSummary()
    for vault in vaults:
        if vault.id in existing:
            summary.skipped.append(vault.id)
            continue
        await store.save(vault)
        existing.add(vault.id)
        summary.restored.append(vault.id)
    logger.info(
        "Restored %d vaults (%d already present)", len(summary.restored), len(summary.skipped)
    )
    return summary
