"""Redis pub/sub — the primary event transport.

Learn: Redis pub/sub is fire-and-forget. If the relay is not subscribed
when a producer publishes, the message is lost. That's acceptable for live
views (clients reload state over HTTP when they reconnect), and it is why
the spool directory exists: producers write files there while Redis is
down, and the SpoolPoller picks them up.

The subscriber holds two connections:
- a publisher connection, kept for outbound use (the CLI's `emit`, and
  anything else that wants to push through the relay's broker link)
- a dedicated subscriber connection for `tournament_events`

An error on either one flips the availability flag off and tears both
down; the reconnect loop brings them back with capped backoff.
"""

import asyncio
from typing import Callable, Optional

import redis.asyncio as aioredis
import structlog
from redis.exceptions import RedisError

from tourney_relay.errors import DecodeError, TransportConnectError
from tourney_relay.realtime.backoff import ReconnectPolicy
from tourney_relay.realtime.context import RelayContext
from tourney_relay.realtime.envelope import EnvelopeHandler, EventEnvelope, decode_envelope

logger = structlog.get_logger()

DEFAULT_CHANNEL = "tournament_events"

# Errors that mean "the broker link is broken", as opposed to bad data
TRANSPORT_ERRORS = (RedisError, OSError, TransportConnectError)

RedisFactory = Callable[..., aioredis.Redis]


def _preview(raw, limit: int = 200) -> str:
    text = raw.decode("utf-8", "replace") if isinstance(raw, bytes) else str(raw)
    return text[:limit]


async def publish_event(
    r: aioredis.Redis,
    channel: str,
    envelope: EventEnvelope,
) -> int:
    """Publish an envelope. Returns the number of subscribers that got it."""
    return await r.publish(channel, envelope.to_wire())


class ChannelSubscriber:
    """Subscribes to one Redis channel and forwards decoded envelopes.

    Usage:
        subscriber = ChannelSubscriber(url, context, dispatcher.submit)
        asyncio.create_task(subscriber.run_loop())
    """

    def __init__(
        self,
        url: str,
        context: RelayContext,
        on_envelope: EnvelopeHandler,
        channel: str = DEFAULT_CHANNEL,
        retry_interval: float = 5.0,
        retry_max: float = 30.0,
        health_check_interval: float = 10.0,
        redis_factory: RedisFactory = aioredis.from_url,
    ):
        self.url = url
        self.context = context
        self.on_envelope = on_envelope
        self.channel = channel
        self.health_check_interval = health_check_interval
        self.policy = ReconnectPolicy(base=retry_interval, cap=retry_max)
        self._redis_factory = redis_factory

        self._publisher: Optional[aioredis.Redis] = None
        self._subscriber: Optional[aioredis.Redis] = None
        self._pubsub = None
        self._publisher_failed = asyncio.Event()
        self._running = False

        self.messages_received = 0
        self.decode_errors = 0
        self.connect_attempts = 0

    @property
    def connected(self) -> bool:
        return self._pubsub is not None

    # ─── Connection lifecycle ───────────────────────────────

    async def connect(self) -> None:
        """Open both connections and subscribe.

        Sets the availability flag only once everything succeeded. Raises
        TransportConnectError (flag left off) on any failure.
        """
        self.policy.connecting()
        self.connect_attempts += 1
        try:
            self._publisher = self._redis_factory(
                self.url, encoding="utf-8", decode_responses=True
            )
            self._subscriber = self._redis_factory(
                self.url, encoding="utf-8", decode_responses=True
            )
            await self._publisher.ping()
            await self._subscriber.ping()

            self._pubsub = self._subscriber.pubsub(ignore_subscribe_messages=True)
            await self._pubsub.subscribe(self.channel)
        except (RedisError, OSError) as e:
            await self._close()
            raise TransportConnectError(f"redis connect failed: {e}") from e

        self._publisher_failed.clear()
        self.policy.connected()
        self.context.availability.mark_available()
        logger.info("pubsub.subscribed", channel=self.channel)

    async def _close(self) -> None:
        """Drop both connections. Errors here are expected (link is dead)."""
        pubsub, subscriber, publisher = self._pubsub, self._subscriber, self._publisher
        self._pubsub = self._subscriber = self._publisher = None

        for name, resource in (
            ("pubsub", pubsub),
            ("subscriber", subscriber),
            ("publisher", publisher),
        ):
            if resource is None:
                continue
            try:
                await resource.aclose()
            except TRANSPORT_ERRORS as e:
                logger.debug("pubsub.close_error", resource=name, error=str(e))

    def _fail(self, error: Exception) -> float:
        """Mark the transport down and return the wait before the next attempt."""
        self.context.availability.mark_unavailable(reason=str(error))
        delay = self.policy.disconnected()
        logger.warning(
            "pubsub.retrying",
            error=str(error),
            failures=self.policy.failures,
            retry_in=delay,
        )
        return delay

    async def run_loop(self) -> None:
        """Connect, listen, and reconnect with backoff until stopped.

        Never raises for transport errors: if Redis is down at startup the
        flag stays off (spool mode) and attempts continue every `retry_max`
        seconds at most, so the relay recovers on its own.
        """
        self._running = True
        logger.info("pubsub.started", channel=self.channel)

        while self._running:
            try:
                if not self.connected:
                    await self.connect()
                await self._serve()
            except Exception as e:
                if not self._running:
                    break
                if not isinstance(e, TRANSPORT_ERRORS):
                    logger.exception("pubsub.error")
                await self._close()
                await asyncio.sleep(self._fail(e))

    async def _serve(self) -> None:
        """Run the listener and the publisher health check until one fails."""
        listener = asyncio.create_task(self._listen())
        watchdog = asyncio.create_task(self._watch_publisher())
        try:
            done, _ = await asyncio.wait(
                [listener, watchdog],
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            for task in (listener, watchdog):
                task.cancel()
            await asyncio.gather(listener, watchdog, return_exceptions=True)

        for task in done:
            task.result()
        raise TransportConnectError("subscription ended")

    async def _listen(self) -> None:
        async for message in self._pubsub.listen():
            if message["type"] != "message":
                continue
            await self.handle_message(message["data"])

    async def _watch_publisher(self) -> None:
        """Ping the idle publisher connection so its failures are noticed."""
        while True:
            try:
                await asyncio.wait_for(
                    self._publisher_failed.wait(),
                    timeout=self.health_check_interval,
                )
            except asyncio.TimeoutError:
                await self._publisher.ping()
            else:
                raise TransportConnectError("publisher connection failed")

    async def stop(self) -> None:
        """Stop reconnecting and close both connections."""
        self._running = False
        await self._close()
        self.context.availability.mark_unavailable(reason="shutdown")
        logger.info("pubsub.stopped")

    # ─── Messages ───────────────────────────────────────────

    async def handle_message(self, raw: str | bytes) -> None:
        """Decode one channel message and forward it; bad data is dropped."""
        self.messages_received += 1
        try:
            envelope = decode_envelope(raw)
        except DecodeError as e:
            self.decode_errors += 1
            logger.warning("pubsub.decode_failed", error=str(e), raw=_preview(raw))
            return

        logger.info(
            "pubsub.message",
            event_type=envelope.event,
            payload_keys=sorted(envelope.payload) if isinstance(envelope.payload, dict) else None,
        )
        await self.on_envelope(envelope)

    async def publish(self, envelope: EventEnvelope) -> int:
        """Publish through the held publisher connection.

        A failure here counts as a transport error: the flag goes off and
        the run loop reconnects both connections.
        """
        if self._publisher is None:
            raise TransportConnectError("redis not connected")
        try:
            return await publish_event(self._publisher, self.channel, envelope)
        except (RedisError, OSError) as e:
            self.context.availability.mark_unavailable(reason=str(e))
            self._publisher_failed.set()
            raise TransportConnectError(f"publish failed: {e}") from e
