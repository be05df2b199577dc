"""
Chronovault vault primitives — AES-256-GCM payloads, local store, share links.

Public API:
    VaultReference, VaultDraft     → data models
    FileVaultStore                 → JSON-file store (save/get/list_all/delete)
    share_url(vault, public_url)   → shareable link with the vault in the fragment
    encode_backup / decode_backup  → multi-vault backup blobs
"""

from __future__ import annotations

from chronovault.vault.models import VaultDraft, VaultReference
from chronovault.vault.share import (
    decode_backup,
    decode_backup_fragment,
    decode_vault_from_fragment,
    encode_backup,
    restore_backup,
    share_url,
)
from chronovault.vault.store import FileVaultStore, VaultStore

__all__ = [
    "VaultDraft",
    "VaultReference",
    "VaultStore",
    "FileVaultStore",
    "share_url",
    "decode_vault_from_fragment",
    "encode_backup",
    "decode_backup",
    "decode_backup_fragment",
    "restore_backup",
]
