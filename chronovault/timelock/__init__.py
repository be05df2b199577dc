"""
Time-lock network access.

Public API:
    HttpTimeLockClient(base_url)   → seal/open keys locally against a condition-release gateway
    TimeLockNetwork                → protocol the state machines depend on
    is_unlockable(unlock_time)     → local clock pre-check (not authoritative)
    UnlockWatcher                  → polls until a vault becomes readable
"""

from __future__ import annotations

from chronovault.timelock.client import (
    HttpTimeLockClient,
    TimeLockNetwork,
    WrapResult,
    is_unlockable,
)
from chronovault.timelock.watcher import UnlockWatcher

__all__ = [
    "HttpTimeLockClient",
    "TimeLockNetwork",
    "WrapResult",
    "is_unlockable",
    "UnlockWatcher",
]
