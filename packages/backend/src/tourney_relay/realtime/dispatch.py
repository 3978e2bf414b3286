"""Dispatch queue — the single funnel between transports and the Broadcaster.

Learn: The Redis listener and the spool poller never call the Broadcaster
directly. They submit envelopes to a bounded asyncio.Queue, and one
dispatcher task drains it. That gives us:
- one broadcast at a time, so every client sees events in submit order
- backpressure: if clients are slow and the queue fills, submit() waits
  instead of growing memory without bound
- transports that stay responsive while a broadcast is in flight
"""

import asyncio
from dataclasses import dataclass, field

import structlog

from tourney_relay.realtime.broadcast import Broadcaster
from tourney_relay.realtime.envelope import EventEnvelope

logger = structlog.get_logger()


@dataclass
class DispatchStats:
    submitted: dict[str, int] = field(default_factory=dict)
    errors: int = 0


class EventDispatcher:
    def __init__(self, broadcaster: Broadcaster, maxsize: int = 1000):
        self.broadcaster = broadcaster
        self.queue: asyncio.Queue[tuple[EventEnvelope, str]] = asyncio.Queue(maxsize=maxsize)
        self.stats = DispatchStats()

    async def submit(self, envelope: EventEnvelope, source: str = "internal") -> None:
        """Queue an envelope for broadcast. `source` is for logs/stats."""
        self.stats.submitted[source] = self.stats.submitted.get(source, 0) + 1
        await self.queue.put((envelope, source))

    async def run_loop(self) -> None:
        """Drain the queue forever; cancel the task to stop."""
        logger.info("dispatcher.started", maxsize=self.queue.maxsize)
        while True:
            envelope, source = await self.queue.get()
            try:
                await self.broadcaster.broadcast(envelope)
            except Exception:
                self.stats.errors += 1
                logger.exception(
                    "dispatcher.broadcast_error",
                    event_type=envelope.event,
                    source=source,
                )
            finally:
                self.queue.task_done()

    async def drain(self) -> None:
        """Wait until everything submitted so far has been broadcast."""
        await self.queue.join()
