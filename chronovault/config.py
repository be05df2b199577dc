"""
Centralized configuration for Chronovault.

All configuration is loaded from environment variables with sensible defaults.

Usage:
    from chronovault.config import get_config
    cfg = get_config()
    print(cfg.store_path)          # "~/.chronovault/vaults.json"
    print(cfg.timelock.base_url)   # "http://127.0.0.1:8650"
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_GATEWAYS = (
    "https://gateway.pinata.cloud/ipfs",
    "https://w3s.link/ipfs",
    "https://dweb.link/ipfs",
    "https://cloudflare-ipfs.com/ipfs",
    "https://ipfs.io/ipfs",
)


@dataclass(frozen=True)
class TimeLockConfig:
    """Condition-release network gateway parameters."""

    base_url: str = "http://127.0.0.1:8650"
    timeout: float = 30.0


@dataclass(frozen=True)
class PinningConfig:
    """Content-pinning network parameters (Pinata + public IPFS gateways)."""

    api_url: str = "https://api.pinata.cloud"
    jwt: str = ""  # empty = uploads fail, unpin is a no-op
    gateways: tuple[str, ...] = DEFAULT_GATEWAYS
    fetch_timeout: float = 30.0

    @property
    def configured(self) -> bool:
        return bool(self.jwt)


@dataclass(frozen=True)
class UploadConfig:
    """Upload endpoint limits."""

    rate_limit: int = 5
    rate_window: int = 60 * 60  # seconds
    max_vault_size: int = 1024 * 1024
    inline_threshold: int = 8 * 1024
    turnstile_secret: str = ""

    @property
    def max_vault_size_mb(self) -> float:
        return self.max_vault_size / (1024 * 1024)


@dataclass(frozen=True)
class Config:
    """Top-level Chronovault configuration."""

    workspace: Path = field(default_factory=lambda: Path.home() / ".chronovault")
    store_path: Path = field(
        default_factory=lambda: Path.home() / ".chronovault" / "vaults.json"
    )

    # Base URL used when building shareable links
    public_url: str = "http://127.0.0.1:8640"
    port: int = 8640

    timelock: TimeLockConfig = field(default_factory=TimeLockConfig)
    pinning: PinningConfig = field(default_factory=PinningConfig)
    upload: UploadConfig = field(default_factory=UploadConfig)

    @property
    def upload_url(self) -> str:
        return f"{self.public_url.rstrip('/')}/api/upload"

    @property
    def unpin_url(self) -> str:
        return f"{self.public_url.rstrip('/')}/api/unpin"


# Singleton
_config: Config | None = None


def get_config() -> Config:
    """Get or create the singleton config from environment variables."""
    global _config
    if _config is not None:
        return _config
    _config = _load_from_env()
    return _config


def _parse_gateways(raw: str | None) -> tuple[str, ...]:
    if not raw:
        return DEFAULT_GATEWAYS
    gateways = tuple(g.strip().rstrip("/") for g in raw.split(",") if g.strip())
    return gateways or DEFAULT_GATEWAYS


def _load_from_env() -> Config:
    """Load configuration from environment variables."""
    workspace = Path(os.environ.get("CHRONOVAULT_WORKSPACE", Path.home() / ".chronovault"))
    store_path = Path(os.environ.get("CHRONOVAULT_STORE_PATH", workspace / "vaults.json"))

    timelock = TimeLockConfig(
        base_url=os.environ.get("CHRONOVAULT_TIMELOCK_URL", "http://127.0.0.1:8650"),
        timeout=float(os.environ.get("CHRONOVAULT_TIMELOCK_TIMEOUT", "30")),
    )

    pinning = PinningConfig(
        api_url=os.environ.get("PINATA_API_URL", "https://api.pinata.cloud"),
        jwt=os.environ.get("PINATA_JWT", ""),
        gateways=_parse_gateways(os.environ.get("CHRONOVAULT_IPFS_GATEWAYS")),
        fetch_timeout=float(os.environ.get("CHRONOVAULT_FETCH_TIMEOUT", "30")),
    )

    upload = UploadConfig(
        rate_limit=int(os.environ.get("CHRONOVAULT_UPLOAD_RATE_LIMIT", "5")),
        rate_window=int(os.environ.get("CHRONOVAULT_UPLOAD_RATE_WINDOW", "3600")),
        max_vault_size=int(os.environ.get("CHRONOVAULT_MAX_VAULT_SIZE", str(1024 * 1024))),
        inline_threshold=int(os.environ.get("CHRONOVAULT_INLINE_THRESHOLD", str(8 * 1024))),
        turnstile_secret=os.environ.get("TURNSTILE_SECRET_KEY", ""),
    )

    return Config(
        workspace=workspace,
        store_path=store_path,
        public_url=os.environ.get("CHRONOVAULT_PUBLIC_URL", "http://127.0.0.1:8640"),
        port=int(os.environ.get("CHRONOVAULT_PORT", "8640")),
        timelock=timelock,
        pinning=pinning,
        upload=upload,
    )


def reset_config() -> None:
    """Reset the singleton config (for testing)."""
    global _config
    _config = None
