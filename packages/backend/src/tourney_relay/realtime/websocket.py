"""WebSocket endpoint — live tournament events for frontend clients.

Learn: Each client connects to /ws/tournaments (no auth, no params). The
handler:
1. Accepts the socket and sends the `connected` greeting
2. Registers it, so the Broadcaster starts writing events to it
3. Reads (and ignores) whatever the client sends until it disconnects
4. Unregisters it

The protocol is server-push only. Reading inbound frames is still needed:
it is how we notice the client went away.
"""

import uuid

import structlog
from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from tourney_relay.realtime.envelope import connected_envelope

logger = structlog.get_logger()


async def tournament_websocket(websocket: WebSocket):
    """Stream relayed tournament events to one client."""
    registry = websocket.app.state.supervisor.context.registry

    await websocket.accept()
    structlog.contextvars.bind_contextvars(connection_id=uuid.uuid4().hex[:12])

    try:
        # Greeting goes out before registering so it is always the first frame
        try:
            await websocket.send_text(connected_envelope().to_wire())
        except (WebSocketDisconnect, RuntimeError, OSError) as e:
            logger.info("ws.greeting_failed", error=str(e))
            return

        registry.register(websocket)
        logger.info("ws.client_connected", clients=len(registry))

        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
        except WebSocketDisconnect:
            pass
        finally:
            registry.unregister(websocket)
            logger.info("ws.client_disconnected", clients=len(registry))
    finally:
        structlog.contextvars.unbind_contextvars("connection_id")


def create_router(path: str = "/ws/tournaments") -> APIRouter:
    router = APIRouter()
    router.add_api_websocket_route(path, tournament_websocket)
    return router
