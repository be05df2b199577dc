"""Tests for the time-lock HTTP client and the unlock watcher."""

import asyncio
import json
from datetime import UTC, datetime, timedelta

import httpx
import pytest
from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    NoEncryption,
    PrivateFormat,
    PublicFormat,
)

from chronovault.errors import IntegrityError, NetworkError, NotYetUnlockable
from chronovault.timelock import HttpTimeLockClient, UnlockWatcher, is_unlockable
from chronovault.timelock.client import parse_wrapped_key, wrapped_key_digest
from chronovault.vault.encoding import to_base64

UNLOCK = datetime(2030, 1, 1, tzinfo=UTC)
RAW_KEY = bytes(range(32))


class FakeGateway:
    """Condition-release gateway: publishes a private key once ``released`` is set."""

    def __init__(self) -> None:
        self.conditions: dict[str, tuple[X25519PrivateKey, str]] = {}
        self.requests: list[httpx.Request] = []
        self.released = False
        self.release_status: int | None = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path == "/v1/health":
            return httpx.Response(200, json={"status": "ok"})
        body = json.loads(request.content or b"{}")
        if path == "/v1/condition":
            condition_id = f"c{len(self.conditions) + 1}"
            secret = X25519PrivateKey.generate()
            self.conditions[condition_id] = (secret, body["unlock_time"])
            public = secret.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)
            return httpx.Response(
                200, json={"condition_id": condition_id, "public_key": to_base64(public)}
            )
        if path == "/v1/release":
            if self.release_status is not None:
                return httpx.Response(self.release_status, json={"error": "nope"})
            entry = self.conditions.get(body["condition_id"])
            if entry is None:
                return httpx.Response(404, json={"error": "unknown condition"})
            if not self.released:
                return httpx.Response(403, json={"error": "not yet"})
            private = entry[0].private_bytes(Encoding.Raw, PrivateFormat.Raw, NoEncryption())
            return httpx.Response(200, json={"private_key": to_base64(private)})
        return httpx.Response(404)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
async def client(gateway):
    async with HttpTimeLockClient("http://tl", transport=gateway.transport()) as c:
        yield c


class TestIsUnlockable:
    def test_before(self):
        assert not is_unlockable(UNLOCK, UNLOCK - timedelta(seconds=1))

    def test_exactly_at(self):
        assert is_unlockable(UNLOCK, UNLOCK)

    def test_after(self):
        assert is_unlockable(UNLOCK, UNLOCK + timedelta(days=1))


class TestHttpTimeLockClient:
    @pytest.mark.asyncio
    async def test_wrap_sends_only_the_unlock_time(self, client, gateway):
        result = await client.wrap(bytearray(RAW_KEY), UNLOCK)

        condition_id, _, _ = parse_wrapped_key(result.wrapped_key)
        assert condition_id == "c1"
        assert result.digest == wrapped_key_digest(result.wrapped_key)
        posted = [r for r in gateway.requests if r.method == "POST"]
        assert [json.loads(r.content) for r in posted] == [
            {"unlock_time": "2030-01-01T00:00:00+00:00"}
        ]
        assert gateway.conditions["c1"][1] == "2030-01-01T00:00:00+00:00"

    @pytest.mark.asyncio
    async def test_raw_key_never_reaches_the_network(self, client, gateway):
        result = await client.wrap(RAW_KEY, UNLOCK)
        gateway.released = True
        await client.unwrap(result.wrapped_key, result.digest, UNLOCK)

        for request in gateway.requests:
            assert to_base64(RAW_KEY).encode() not in request.content
            assert RAW_KEY not in request.content
        assert to_base64(RAW_KEY) not in result.wrapped_key

    @pytest.mark.asyncio
    async def test_unwrap_after_release(self, client, gateway):
        result = await client.wrap(RAW_KEY, UNLOCK)
        gateway.released = True

        key = await client.unwrap(result.wrapped_key, result.digest, UNLOCK)

        assert isinstance(key, bytearray)
        assert key == bytearray(RAW_KEY)

    @pytest.mark.asyncio
    async def test_each_wrap_gets_its_own_condition(self, client, gateway):
        first = await client.wrap(RAW_KEY, UNLOCK)
        second = await client.wrap(RAW_KEY, UNLOCK)
        assert first.wrapped_key != second.wrapped_key
        assert sorted(gateway.conditions) == ["c1", "c2"]

    @pytest.mark.asyncio
    async def test_initialize_is_idempotent(self, client, gateway):
        await client.initialize()
        await client.initialize()
        await client.wrap(RAW_KEY, UNLOCK)
        assert [r.url.path for r in gateway.requests].count("/v1/health") == 1

    @pytest.mark.asyncio
    async def test_unwrap_too_early(self, client, gateway):
        result = await client.wrap(RAW_KEY, UNLOCK)
        with pytest.raises(NotYetUnlockable):
            await client.unwrap(result.wrapped_key, result.digest, UNLOCK)

    @pytest.mark.asyncio
    async def test_digest_mismatch_is_caught_before_any_request(self, client, gateway):
        result = await client.wrap(RAW_KEY, UNLOCK)
        gateway.released = True
        sent = len(gateway.requests)

        with pytest.raises(IntegrityError):
            await client.unwrap(result.wrapped_key, "0" * 64, UNLOCK)
        assert len(gateway.requests) == sent

    @pytest.mark.asyncio
    async def test_tampered_ciphertext(self, client, gateway):
        result = await client.wrap(RAW_KEY, UNLOCK)
        gateway.released = True
        condition_id, ephemeral, sealed = parse_wrapped_key(result.wrapped_key)
        flipped = sealed[:-1] + bytes([sealed[-1] ^ 1])
        tampered = f"{condition_id}.{to_base64(ephemeral)}.{to_base64(flipped)}"

        with pytest.raises(IntegrityError):
            await client.unwrap(tampered, wrapped_key_digest(tampered), UNLOCK)

    @pytest.mark.asyncio
    async def test_unlock_time_is_bound_into_the_seal(self, client, gateway):
        result = await client.wrap(RAW_KEY, UNLOCK)
        gateway.released = True
        with pytest.raises(IntegrityError):
            await client.unwrap(result.wrapped_key, result.digest, UNLOCK - timedelta(days=1))

    @pytest.mark.asyncio
    async def test_key_sealed_to_another_condition(self, client, gateway):
        result = await client.wrap(RAW_KEY, UNLOCK)
        await client.wrap(RAW_KEY, UNLOCK)
        gateway.released = True
        _, ephemeral, sealed = parse_wrapped_key(result.wrapped_key)
        swapped = f"c2.{to_base64(ephemeral)}.{to_base64(sealed)}"

        with pytest.raises(IntegrityError):
            await client.unwrap(swapped, wrapped_key_digest(swapped), UNLOCK)

    @pytest.mark.parametrize("wrapped", ["", "no-dots", "c1.!!!.abc", "c1.AAAA.AAAA", ".a.b"])
    @pytest.mark.asyncio
    async def test_malformed_wrapped_key(self, client, wrapped):
        with pytest.raises(IntegrityError):
            await client.unwrap(wrapped, wrapped_key_digest(wrapped), UNLOCK)

    @pytest.mark.parametrize("status", [404, 409, 422])
    @pytest.mark.asyncio
    async def test_unknown_condition(self, client, gateway, status):
        result = await client.wrap(RAW_KEY, UNLOCK)
        gateway.release_status = status
        with pytest.raises(IntegrityError):
            await client.unwrap(result.wrapped_key, result.digest, UNLOCK)

    @pytest.mark.asyncio
    async def test_release_server_error(self, client, gateway):
        result = await client.wrap(RAW_KEY, UNLOCK)
        gateway.release_status = 503
        with pytest.raises(NetworkError):
            await client.unwrap(result.wrapped_key, result.digest, UNLOCK)

    @pytest.mark.asyncio
    async def test_unreachable_network(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        transport = httpx.MockTransport(handler)
        async with HttpTimeLockClient("http://tl", transport=transport) as client:
            with pytest.raises(NetworkError):
                await client.initialize()

    @pytest.mark.parametrize(
        "payload",
        [
            {"unexpected": True},
            {"condition_id": "c1", "public_key": "not base64!"},
            {"condition_id": "c1", "public_key": to_base64(b"short")},
            {"condition_id": "a.b", "public_key": to_base64(b"\x09" * 32)},
        ],
    )
    @pytest.mark.asyncio
    async def test_malformed_condition_response(self, payload):
        def handler(request):
            if request.url.path == "/v1/health":
                return httpx.Response(200)
            return httpx.Response(200, json=payload)

        transport = httpx.MockTransport(handler)
        async with HttpTimeLockClient("http://tl", transport=transport) as client:
            with pytest.raises(NetworkError):
                await client.wrap(RAW_KEY, UNLOCK)

class TestUnlockWatcher:
    @pytest.mark.asyncio
    async def test_fires_immediately_when_due(self):
        fired = []
        watcher = UnlockWatcher(UNLOCK, lambda: fired.append(True), clock=lambda: UNLOCK)
        await watcher.run()
        assert fired == [True]

    @pytest.mark.asyncio
    async def test_waits_until_due(self):
        now = [UNLOCK - timedelta(seconds=2)]
        ticks = []

        def tick(remaining):
            ticks.append(remaining)
            now[0] += timedelta(seconds=1)

        fired = asyncio.Event()

        async def on_ready():
            fired.set()

        watcher = UnlockWatcher(
            UNLOCK, on_ready, interval=0.001, clock=lambda: now[0], on_tick=tick
        )
        await asyncio.wait_for(watcher.run(), timeout=5)

        assert fired.is_set()
        assert ticks == [2.0, 1.0]

    @pytest.mark.asyncio
    async def test_stop_cancels(self):
        watcher = UnlockWatcher(
            UNLOCK, lambda: None, interval=0.01, clock=lambda: UNLOCK - timedelta(days=1)
        )
        task = watcher.start()
        assert watcher.remaining() == 86400.0
        watcher.stop()
        with pytest.raises(asyncio.CancelledError):
            await task
