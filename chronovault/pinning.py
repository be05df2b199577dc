"""
Content pinning — IPFS storage for ciphertexts too large to inline in a link.

Small vaults (<= 8 KiB of ciphertext) are embedded in the shareable URL and
never touch IPFS. Larger ones are uploaded through our /api/upload endpoint,
which holds the Pinata JWT server side, rate limits, and checks a CAPTCHA.
Reads go straight to public gateways, first success wins.

Usage:
    store = UploadClient(cfg.upload_url, cfg.unpin_url, GatewayFetcher(cfg.pinning.gateways))
    cid = await store.upload(ciphertext)
    data = await store.fetch(cid)
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Protocol

import httpx

from chronovault.config import DEFAULT_GATEWAYS
from chronovault.errors import NetworkError, RateLimitExceeded, UploadError
from chronovault.retry import exponential_backoff, with_retry

logger = logging.getLogger(__name__)

INLINE_DATA_THRESHOLD = 8 * 1024
UPLOAD_ATTEMPTS = 3
FETCH_TIMEOUT = 30.0


def should_use_inline_storage(
    data: bytes | bytearray, threshold: int = INLINE_DATA_THRESHOLD
) -> bool:
    """Whether ciphertext is small enough to embed in the link."""
    return len(data) <= threshold


class ContentStore(Protocol):
    """Where oversized ciphertexts live."""

    async def upload(self, data: bytes | bytearray) -> str: ...

    async def fetch(self, cid: str) -> bytes: ...

    async def unpin(self, cid: str) -> bool: ...


class PinataClient:
    """Server-side Pinata access. Holds the JWT; never exposed to clients."""

    def __init__(
        self,
        jwt: str,
        api_url: str = "https://api.pinata.cloud",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.jwt = jwt
        self.api_url = api_url.rstrip("/")
        self._client = httpx.AsyncClient(timeout=60.0, transport=transport)

    async def close(self) -> None:
        await self._client.aclose()

    @property
    def configured(self) -> bool:
        return bool(self.jwt)

    async def upload(self, data: bytes | bytearray) -> str:
        """Pin bytes and return the IPFS CID."""
        if not self.jwt:
            raise UploadError("Content pinning is not configured")
        try:
            resp = await self._client.post(
                f"{self.api_url}/pinning/pinFileToIPFS",
                headers={"Authorization": f"Bearer {self.jwt}"},
                files={"file": ("vault.bin", bytes(data), "application/octet-stream")},
            )
        except httpx.HTTPError as e:
            raise UploadError(f"Pinata upload failed: {e}") from e
        if resp.status_code != 200:
            raise UploadError(f"Pinata upload failed ({resp.status_code}): {resp.text[:200]}")
        cid = resp.json().get("IpfsHash")
        if not cid:
            raise UploadError("Pinata upload returned no CID")
        return str(cid)

    async def unpin(self, cid: str) -> bool:
        """Best-effort unpin. Never raises. Returns True only if Pinata removed the pin."""
        if not self.jwt:
            # Unpinned content is eventually garbage collected anyway
            return False
        try:
            resp = await self._client.delete(
                f"{self.api_url}/pinning/unpin/{cid}",
                headers={"Authorization": f"Bearer {self.jwt}"},
            )
        except httpx.HTTPError as e:
            logger.warning("Pinata unpin of %s failed: %s", cid, e)
            return False
        if resp.is_success:
            return True
        if resp.status_code != 404:
            logger.warning("Pinata unpin of %s failed: HTTP %d", cid, resp.status_code)
        return False


class GatewayFetcher:
    """Fetch content by CID from an ordered list of public gateways."""

    def __init__(
        self,
        gateways: tuple[str, ...] | list[str] = DEFAULT_GATEWAYS,
        timeout: float = FETCH_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.gateways = [g.rstrip("/") for g in gateways]
        self.timeout = timeout
        self._transport = transport

    async def fetch(self, cid: str) -> bytes:
        last_error: Exception | None = None
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            for gateway in self.gateways:
                url = f"{gateway}/{cid}"
                try:
                    resp = await client.get(url)
                    if resp.status_code != 200:
                        raise NetworkError(f"HTTP {resp.status_code}")
                    return resp.content
                except (httpx.HTTPError, NetworkError) as e:
                    last_error = e
                    logger.warning("Gateway %s failed: %s", url, e)
        raise NetworkError(f"Failed to fetch from IPFS: {last_error}")


class UploadClient:
    """Client side of the upload endpoint. Implements ``ContentStore``."""

    def __init__(
        self,
        upload_url: str,
        unpin_url: str,
        fetcher: GatewayFetcher | None = None,
        captcha_token: str = "development-mode",
        max_attempts: int = UPLOAD_ATTEMPTS,
        backoff: Callable[[int], float] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.upload_url = upload_url
        self.unpin_url = unpin_url
        self.fetcher = fetcher or GatewayFetcher()
        self.captcha_token = captcha_token
        self.max_attempts = max_attempts
        self.backoff = backoff or exponential_backoff()
        self._client = httpx.AsyncClient(timeout=60.0, transport=transport)

    async def close(self) -> None:
        await self._client.aclose()

    async def _upload_once(self, data: bytes) -> str:
        try:
            resp = await self._client.post(
                self.upload_url,
                files={"file": ("vault.bin", data, "application/octet-stream")},
                data={"captchaToken": self.captcha_token},
            )
            result = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise UploadError(f"Upload failed: {e}") from e
        if resp.status_code == 429:
            retry_after = int(resp.headers.get("X-RateLimit-Reset", "0") or 0)
            raise RateLimitExceeded(retry_after, result.get("error"))
        if resp.status_code != 200 or not result.get("success"):
            raise UploadError(result.get("error") or f"Upload failed ({resp.status_code})")
        return str(result["cid"])

    async def upload(self, data: bytes | bytearray) -> str:
        """Upload via the endpoint, retrying transient failures."""
        payload = bytes(data)
        return await with_retry(
            lambda: self._upload_once(payload),
            max_attempts=self.max_attempts,
            on_retry=lambda attempt, e: logger.warning("Upload retry %d: %s", attempt, e),
            backoff=self.backoff,
            retry_if=lambda e: not isinstance(e, RateLimitExceeded),
        )

    async def fetch(self, cid: str) -> bytes:
        return await self.fetcher.fetch(cid)

    async def unpin(self, cid: str) -> bool:
        """Ask the server to unpin. Best effort; never raises."""
        try:
            resp = await self._client.post(self.unpin_url, json={"cid": cid})
            return bool(resp.json().get("unpinned", False))
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Unpin request for %s failed: %s", cid, e)
            return False
