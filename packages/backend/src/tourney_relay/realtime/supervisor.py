"""Transport supervisor — wires the relay together and owns its lifecycle.

Learn: There is no separate arbitration loop. Both transports start
unconditionally and the availability flag on the shared RelayContext
decides which one delivers:

  flag off → SpoolPoller delivers, ChannelSubscriber keeps reconnecting
  flag on  → ChannelSubscriber delivers, SpoolPoller scans are no-ops

The one policy decision made here is what a failed first broker connect
means: in the strict profile it aborts startup, in the resilient profile
the relay just starts in spool mode.
"""

import asyncio
import functools
from typing import Any, Optional

import structlog

from tourney_relay.config import Settings
from tourney_relay.realtime.broadcast import Broadcaster
from tourney_relay.realtime.context import RelayContext
from tourney_relay.realtime.dispatch import EventDispatcher
from tourney_relay.realtime.pubsub import ChannelSubscriber, RedisFactory
from tourney_relay.realtime.spool import SpoolPoller

logger = structlog.get_logger()


class TransportSupervisor:
    def __init__(self, settings: Settings, redis_factory: Optional[RedisFactory] = None):
        self.settings = settings
        self.context = RelayContext()
        self.broadcaster = Broadcaster(
            self.context.registry, send_timeout=settings.broadcast_send_timeout
        )
        self.dispatcher = EventDispatcher(
            self.broadcaster, maxsize=settings.dispatch_queue_size
        )

        self.subscriber: Optional[ChannelSubscriber] = None
        if settings.broker_url:
            kwargs = {"redis_factory": redis_factory} if redis_factory else {}
            self.subscriber = ChannelSubscriber(
                settings.broker_url,
                self.context,
                functools.partial(self.dispatcher.submit, source="redis"),
                channel=settings.redis_channel,
                retry_interval=settings.redis_retry_interval,
                retry_max=settings.redis_retry_max,
                health_check_interval=settings.redis_health_check_interval,
                **kwargs,
            )

        self.poller = SpoolPoller(
            settings.websocket_events_dir,
            self.context,
            functools.partial(self.dispatcher.submit, source="spool"),
            prefix=settings.spool_prefix,
            suffix=settings.spool_suffix,
            poll_interval=settings.spool_poll_interval,
            grace_period=settings.spool_grace_period,
        )
        self._tasks: list[asyncio.Task] = []

    async def start(self) -> None:
        """Start dispatcher, broker subscriber and spool poller.

        Raises TransportConnectError only in the strict profile, when the
        first broker connection fails. Nothing is left running in that case.
        """
        logger.info(
            "supervisor.starting",
            profile=self.settings.relay_profile,
            broker=self.subscriber is not None,
            spool_dir=str(self.poller.directory),
        )

        if self.subscriber is not None and self.settings.strict:
            await self.subscriber.connect()

        self.poller.ensure_directory()
        self._spawn(self.dispatcher.run_loop(), "relay-dispatcher")
        if self.subscriber is None:
            logger.info("supervisor.broker_disabled", mode="spool only")
        else:
            self._spawn(self.subscriber.run_loop(), "relay-redis")
        self._spawn(self.poller.run_loop(), "relay-spool")

    def _spawn(self, coro, name: str) -> None:
        self._tasks.append(asyncio.create_task(coro, name=name))

    async def stop(self) -> None:
        logger.info("supervisor.stopping")
        self.poller.stop()
        if self.subscriber is not None:
            await self.subscriber.stop()

        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

    def status(self) -> dict[str, Any]:
        """Snapshot for the health endpoint."""
        availability = self.context.availability
        broker: dict[str, Any] = {"enabled": self.subscriber is not None}
        if self.subscriber is not None:
            broker.update(
                available=availability.available,
                state=self.subscriber.policy.state.value,
                channel=self.subscriber.channel,
                failures=self.subscriber.policy.failures,
                messages_received=self.subscriber.messages_received,
                decode_errors=self.subscriber.decode_errors,
            )

        return {
            "transport": "redis" if availability.available else "spool",
            "profile": self.settings.relay_profile,
            "clients": len(self.context.registry),
            "broker": broker,
            "spool": {
                "directory": str(self.poller.directory),
                "scans": self.poller.stats.scans,
                "consumed": self.poller.stats.consumed,
                "dropped": self.poller.stats.dropped,
                "processed_files": len(self.context.processed_files),
            },
            "broadcasts": {
                "total": self.broadcaster.stats.broadcasts,
                "sent": self.broadcaster.stats.sent,
                "failed": self.broadcaster.stats.failed,
                "queued": self.dispatcher.queue.qsize(),
            },
        }
