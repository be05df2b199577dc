"""
Root-level shared test fixtures.

Inherited by the tests/ suite and the package-local test directories.
"""

from __future__ import annotations

import pytest

from chronovault.config import reset_config


@pytest.fixture
def clean_env(monkeypatch):
    """Remove env vars that leak between tests."""
    for key in [
        "CHRONOVAULT_WORKSPACE",
        "CHRONOVAULT_STORE_PATH",
        "CHRONOVAULT_PUBLIC_URL",
        "CHRONOVAULT_TIMELOCK_URL",
        "CHRONOVAULT_IPFS_GATEWAYS",
        "CHRONOVAULT_UPLOAD_RATE_LIMIT",
        "CHRONOVAULT_UPLOAD_RATE_WINDOW",
        "CHRONOVAULT_MAX_VAULT_SIZE",
        "CHRONOVAULT_INLINE_THRESHOLD",
        "CHRONOVAULT_PORT",
        "PINATA_API_URL",
        "PINATA_JWT",
        "TURNSTILE_SECRET_KEY",
    ]:
        monkeypatch.delenv(key, raising=False)
    reset_config()
    yield
    reset_config()
