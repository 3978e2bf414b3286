"""Broadcaster — write one envelope to every registered WebSocket.

Learn: Delivery is best-effort and at-most-once per client:
- the envelope is serialized once, then sent to all clients concurrently
- a client that is not open, or whose send raises, counts as failed and
  is dropped from the registry
- each send is bounded by `send_timeout`; a client that stops reading
  is treated like one whose send raised, so it cannot stall the others
- nothing is retried (a slow or half-closed client just misses that event)

The returned DeliverySummary is for logs and the health endpoint only.
"""

import asyncio
from dataclasses import dataclass

import structlog
from starlette.websockets import WebSocket, WebSocketState

from tourney_relay.errors import DeliveryError
from tourney_relay.realtime.envelope import EventEnvelope
from tourney_relay.realtime.registry import ConnectionRegistry

logger = structlog.get_logger()

PREVIEW_CHARS = 150
DEFAULT_SEND_TIMEOUT = 5.0


@dataclass(frozen=True)
class DeliverySummary:
    event: str
    sent: int
    failed: int
    total: int


@dataclass
class BroadcastStats:
    """Cumulative counters since startup."""
    broadcasts: int = 0
    sent: int = 0
    failed: int = 0


def _is_open(ws: WebSocket) -> bool:
    return (
        ws.client_state == WebSocketState.CONNECTED
        and ws.application_state == WebSocketState.CONNECTED
    )


class Broadcaster:
    def __init__(
        self,
        registry: ConnectionRegistry,
        send_timeout: float = DEFAULT_SEND_TIMEOUT,
    ):
        self.registry = registry
        self.send_timeout = send_timeout
        self.stats = BroadcastStats()

    async def broadcast(self, envelope: EventEnvelope) -> DeliverySummary:
        """Deliver an envelope to every client registered right now."""
        message = envelope.to_wire()
        clients = self.registry.snapshot()

        results = await asyncio.gather(
            *(self._deliver(ws, message) for ws in clients)
        )
        sent = sum(1 for ok in results if ok)
        summary = DeliverySummary(
            event=envelope.event,
            sent=sent,
            failed=len(clients) - sent,
            total=len(clients),
        )

        self.stats.broadcasts += 1
        self.stats.sent += summary.sent
        self.stats.failed += summary.failed
        logger.info(
            "relay.broadcast.complete",
            event_type=summary.event,
            sent=summary.sent,
            failed=summary.failed,
            total=summary.total,
            preview=message[:PREVIEW_CHARS],
        )
        return summary

    async def _deliver(self, ws: WebSocket, message: str) -> bool:
        try:
            await self._send(ws, message)
        except DeliveryError as e:
            self.registry.unregister(ws)
            logger.warning("relay.delivery_failed", error=str(e))
            return False
        return True

    async def _send(self, ws: WebSocket, message: str) -> None:
        if not _is_open(ws):
            raise DeliveryError(
                f"client not ready (state: {ws.client_state.name}/"
                f"{ws.application_state.name})"
            )
        try:
            await asyncio.wait_for(ws.send_text(message), timeout=self.send_timeout)
        except asyncio.TimeoutError as e:
            raise DeliveryError(f"send timed out after {self.send_timeout}s") from e
        except Exception as e:
            # starlette surfaces dead sockets as RuntimeError, OSError or
            # a server-specific ClientDisconnected, depending on timing
            raise DeliveryError(f"send failed: {e!r}") from e
