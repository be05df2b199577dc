"""
Time-lock client — binds a vault key to a future instant via an external
condition-release network.

The network, not this process, attests the current time. ``unwrap`` before
the unlock time fails for every caller, including the vault's creator; there
is no override path. ``is_unlockable`` is only a local clock pre-check used to
skip calls that would certainly fail.

Trust boundary: the raw vault key never leaves this process. For each vault
the network mints a condition, an X25519 key pair whose private half it
publishes only once the condition's unlock time has passed. ``wrap`` seals the
raw key locally to the condition's public key (ephemeral X25519, HKDF-SHA256,
AES-256-GCM with the condition id and unlock time as associated data) and
sends nothing but the unlock time. ``unwrap`` fetches the released private key
and opens the seal locally. A gateway that logs every request learns when a
vault opens, never what key it holds.

Wrapped key format: ``<condition_id>.<ephemeral_public>.<nonce || ciphertext>``
(the last two URL-safe base64). The digest is its SHA-256 hex.

Wire protocol (JSON over HTTP):
    GET  /v1/health
    POST /v1/condition  {unlock_time}     -> {condition_id, public_key}
    POST /v1/release    {condition_id}    -> {private_key}
         403 = not yet unlockable, 404/409/422 = unknown or revoked condition
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Protocol

import httpx
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey, X25519PublicKey
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

from chronovault.errors import IntegrityError, NetworkError, NotYetUnlockable
from chronovault.vault.encoding import from_base64, to_base64

logger = logging.getLogger(__name__)

WRAP_INFO = b"chronovault-wrap:"
NONCE_SIZE = 12


@dataclass(frozen=True)
class WrapResult:
    """Opaque tokens stored in the vault reference. Neither reveals the raw key."""

    wrapped_key: str
    digest: str


class TimeLockNetwork(Protocol):
    async def initialize(self) -> None: ...

    async def wrap(self, raw_key: bytes | bytearray, unlock_time: datetime) -> WrapResult: ...

    async def unwrap(self, wrapped_key: str, digest: str, unlock_time: datetime) -> bytearray: ...


def is_unlockable(unlock_time: datetime, now: datetime | None = None) -> bool:
    """Local, non-authoritative check: has the local clock reached ``unlock_time``?"""
    now = now or datetime.now(UTC)
    return now >= unlock_time


def _iso(instant: datetime) -> str:
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=UTC)
    return instant.astimezone(UTC).isoformat()


def wrapped_key_digest(wrapped_key: str) -> str:
    return hashlib.sha256(wrapped_key.encode("utf-8")).hexdigest()


# ─── Local sealing ───────────────────────────────────────────────────


def _binding(condition_id: str, unlock_time: datetime) -> bytes:
    return f"{condition_id}|{_iso(unlock_time)}".encode()


def _kek(shared_secret: bytes, binding: bytes) -> bytes:
    return HKDF(
        algorithm=hashes.SHA256(), length=32, salt=None, info=WRAP_INFO + binding
    ).derive(shared_secret)


def seal_key(
    raw_key: bytes | bytearray, condition_id: str, public_key: bytes, unlock_time: datetime
) -> str:
    """Seal ``raw_key`` to a condition's public key. Returns the wrapped-key token."""
    recipient = X25519PublicKey.from_public_bytes(public_key)
    ephemeral = X25519PrivateKey.generate()
    binding = _binding(condition_id, unlock_time)
    kek = _kek(ephemeral.exchange(recipient), binding)
    nonce = secrets.token_bytes(NONCE_SIZE)
    sealed = nonce + AESGCM(kek).encrypt(nonce, bytes(raw_key), binding)
    ephemeral_public = ephemeral.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)
    return f"{condition_id}.{to_base64(ephemeral_public)}.{to_base64(sealed)}"


def parse_wrapped_key(wrapped_key: str) -> tuple[str, bytes, bytes]:
    """Split a token into (condition_id, ephemeral public key, nonce || ciphertext)."""
    parts = wrapped_key.split(".")
    if len(parts) != 3 or not parts[0]:
        raise IntegrityError("Wrapped key is malformed")
    try:
        ephemeral_public, sealed = from_base64(parts[1]), from_base64(parts[2])
    except ValueError as e:
        raise IntegrityError("Wrapped key is malformed") from e
    if len(ephemeral_public) != 32 or len(sealed) <= NONCE_SIZE:
        raise IntegrityError("Wrapped key is malformed")
    return parts[0], ephemeral_public, sealed


def open_key(wrapped_key: str, private_key: bytes, unlock_time: datetime) -> bytearray:
    """Open a token with the condition's released private key."""
    condition_id, ephemeral_public, sealed = parse_wrapped_key(wrapped_key)
    try:
        secret = X25519PrivateKey.from_private_bytes(private_key)
        shared = secret.exchange(X25519PublicKey.from_public_bytes(ephemeral_public))
    except ValueError as e:
        raise IntegrityError("Released key does not match the wrapped key") from e
    binding = _binding(condition_id, unlock_time)
    try:
        return bytearray(
            AESGCM(_kek(shared, binding)).decrypt(
                sealed[:NONCE_SIZE], sealed[NONCE_SIZE:], binding
            )
        )
    except InvalidTag as e:
        raise IntegrityError("Wrapped key failed authentication") from e


# ─── Network client ──────────────────────────────────────────────────


class HttpTimeLockClient:
    """Async client for a condition-release gateway."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url, timeout=timeout, transport=transport
        )
        self._initialized = False

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> HttpTimeLockClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def initialize(self) -> None:
        """Handshake with the network. Idempotent."""
        if self._initialized:
            return
        try:
            resp = await self._client.get("/v1/health")
            resp.raise_for_status()
        except httpx.HTTPError as e:
            raise NetworkError(f"Time-lock network unavailable at {self.base_url}") from e
        self._initialized = True
        logger.info("Connected to time-lock network at %s", self.base_url)

    async def _post(self, path: str, body: dict[str, Any]) -> httpx.Response:
        try:
            return await self._client.post(path, json=body)
        except httpx.HTTPError as e:
            raise NetworkError(f"Time-lock request {path} failed: {e}") from e

    async def wrap(self, raw_key: bytes | bytearray, unlock_time: datetime) -> WrapResult:
        """Seal ``raw_key`` so it opens only once the network releases at ``unlock_time``."""
        await self.initialize()
        resp = await self._post("/v1/condition", {"unlock_time": _iso(unlock_time)})
        if resp.status_code != 200:
            raise NetworkError(f"Time-lock condition failed (HTTP {resp.status_code})")
        data = _json(resp)
        try:
            condition_id = str(data["condition_id"])
            public_key = from_base64(str(data["public_key"]))
        except (KeyError, ValueError) as e:
            raise NetworkError("Time-lock condition returned a malformed response") from e
        if not condition_id or "." in condition_id or len(public_key) != 32:
            raise NetworkError("Time-lock condition returned a malformed response")

        try:
            wrapped = seal_key(raw_key, condition_id, public_key, unlock_time)
        except ValueError as e:
            raise NetworkError("Time-lock condition returned an unusable public key") from e
        logger.debug("Sealed key to condition %s", condition_id)
        return WrapResult(wrapped_key=wrapped, digest=wrapped_key_digest(wrapped))

    async def unwrap(self, wrapped_key: str, digest: str, unlock_time: datetime) -> bytearray:
        """Fetch the condition's released key and open the seal locally.

        Side-effect free on failure.
        """
        if not hmac.compare_digest(wrapped_key_digest(wrapped_key), digest):
            raise IntegrityError("Wrapped key does not match its digest")
        condition_id, _, _ = parse_wrapped_key(wrapped_key)

        await self.initialize()
        resp = await self._post("/v1/release", {"condition_id": condition_id})
        if resp.status_code == 403:
            raise NotYetUnlockable("The time-lock condition is not yet satisfied")
        if resp.status_code in (404, 409, 422):
            raise IntegrityError("The time-lock network does not recognise this vault")
        if resp.status_code != 200:
            raise NetworkError(f"Time-lock release failed (HTTP {resp.status_code})")
        data = _json(resp)
        try:
            private_key = from_base64(str(data["private_key"]))
        except (KeyError, ValueError) as e:
            raise NetworkError("Time-lock release returned a malformed response") from e
        return open_key(wrapped_key, private_key, unlock_time)


def _json(resp: httpx.Response) -> dict[str, Any]:
    try:
        data = resp.json()
    except ValueError as e:
        raise NetworkError("Time-lock network returned invalid JSON") from e
    if not isinstance(data, dict):
        raise NetworkError("Time-lock network returned invalid JSON")
    return data
