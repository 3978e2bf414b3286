"""Test fixtures — fake sockets, an in-memory Redis stand-in, per-test settings.

Learn: The relay talks to two things we don't want in unit tests: real
WebSocket clients and a real Redis server.

1. FakeWebSocket records every frame sent to it and can be told to fail,
   or to look closed, like a starlette socket after a disconnect.
2. FakeBroker hands out FakeRedis clients through a `redis_factory`
   (the same hook ChannelSubscriber uses for redis.asyncio.from_url).
   Flip `broker.down` to make pings fail, `broker.drop()` to kill live
   subscriptions, and `broker.publish()` to push a channel message.

End-to-end WebSocket tests use the real app through FastAPI's TestClient
with Redis disabled, so events arrive via the spool directory.
"""

import asyncio
import json
import os
import time

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from redis.exceptions import ConnectionError as RedisConnectionError
from starlette.websockets import WebSocketState

from tourney_relay.config import load_settings
from tourney_relay.main import create_app


# ─── WebSocket stand-in ──────────────────────────────────


class FakeWebSocket:
    def __init__(
        self,
        fail: bool = False,
        state: WebSocketState = WebSocketState.CONNECTED,
        hang: bool = False,
    ):
        self.client_state = state
        self.application_state = WebSocketState.CONNECTED
        self.fail = fail
        self.hang = hang
        self.sent: list[str] = []
        self.send_attempts = 0

    async def send_text(self, data: str) -> None:
        self.send_attempts += 1
        if self.hang:
            # peer stopped reading: the write never completes
            await asyncio.Event().wait()
        if self.fail:
            raise RuntimeError('Cannot call "send" once a close message has been sent.')
        self.sent.append(data)

    def received(self) -> list[dict]:
        return [json.loads(m) for m in self.sent]


# ─── Redis stand-in ──────────────────────────────────────


class FakePubSub:
    def __init__(self, broker: "FakeBroker"):
        self.broker = broker
        self.channels: list[str] = []
        self.queue: asyncio.Queue = asyncio.Queue()
        self.closed = False

    async def subscribe(self, *channels: str) -> None:
        if self.broker.down:
            raise RedisConnectionError("Error 111 connecting to fake:6379. Connection refused.")
        self.channels.extend(channels)

    async def listen(self):
        while True:
            item = await self.queue.get()
            if isinstance(item, Exception):
                raise item
            yield {"type": "message", "channel": self.channels[0], "data": item}

    async def aclose(self) -> None:
        self.closed = True


class FakeRedis:
    def __init__(self, broker: "FakeBroker", url: str):
        self.broker = broker
        self.url = url
        self.closed = False

    async def ping(self) -> bool:
        if self.broker.down:
            raise RedisConnectionError("Error 111 connecting to fake:6379. Connection refused.")
        return True

    def pubsub(self, **kwargs) -> FakePubSub:
        ps = FakePubSub(self.broker)
        self.broker.pubsubs.append(ps)
        return ps

    async def publish(self, channel: str, message: str) -> int:
        if self.broker.down or self.broker.publish_fails:
            raise RedisConnectionError("Connection closed by server.")
        return self.broker.publish(channel, message)

    async def aclose(self) -> None:
        self.closed = True


class FakeBroker:
    def __init__(self):
        self.down = False
        self.publish_fails = False
        self.clients: list[FakeRedis] = []
        self.pubsubs: list[FakePubSub] = []

    def factory(self, url: str, **kwargs) -> FakeRedis:
        client = FakeRedis(self, url)
        self.clients.append(client)
        return client

    def live_pubsubs(self, channel: str) -> list[FakePubSub]:
        return [ps for ps in self.pubsubs if not ps.closed and channel in ps.channels]

    def publish(self, channel: str, message) -> int:
        receivers = self.live_pubsubs(channel)
        for ps in receivers:
            ps.queue.put_nowait(message)
        return len(receivers)

    def drop(self) -> None:
        """Go down and break every open subscription."""
        self.down = True
        for ps in self.pubsubs:
            if not ps.closed:
                ps.queue.put_nowait(RedisConnectionError("Connection closed by server."))


# ─── Helpers ─────────────────────────────────────────────


async def _wait_until(predicate, timeout: float = 2.0, interval: float = 0.01) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not met within timeout")
        await asyncio.sleep(interval)


def _write_spool(directory, name: str, body: str, age: float = 1.0):
    """Write a spool file whose mtime is `age` seconds in the past."""
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / name
    path.write_text(body, encoding="utf-8")
    stamp = time.time() - age
    os.utime(path, (stamp, stamp))
    return path


# ─── Fixtures ────────────────────────────────────────────


@pytest.fixture()
def make_ws():
    return FakeWebSocket


@pytest.fixture()
def broker():
    return FakeBroker()


@pytest.fixture()
def wait_until():
    return _wait_until


@pytest.fixture()
def write_spool():
    return _write_spool


@pytest.fixture()
def spool_dir(tmp_path):
    return tmp_path / "websocket_events"


@pytest.fixture()
def relay_settings(spool_dir):
    """Spool-only settings with short intervals so tests run fast."""
    return load_settings(
        redis_enabled=False,
        websocket_events_dir=str(spool_dir),
        spool_poll_interval=0.02,
        spool_grace_period=0.05,
        redis_retry_interval=0.01,
        redis_retry_max=0.05,
        redis_health_check_interval=0.05,
    )


@pytest.fixture()
def broker_settings(spool_dir):
    """Settings with Redis enabled; pair with the `broker` fixture's factory."""
    return load_settings(
        redis_enabled=True,
        redis_host="fake",
        websocket_events_dir=str(spool_dir),
        spool_poll_interval=0.02,
        spool_grace_period=0.05,
        redis_retry_interval=0.01,
        redis_retry_max=0.05,
        redis_health_check_interval=0.05,
    )


@pytest_asyncio.fixture()
async def client(relay_settings):
    """HTTP client against an app whose supervisor is built but not started."""
    app = create_app(relay_settings)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
