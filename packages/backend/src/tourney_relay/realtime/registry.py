"""Connection registry — the set of live WebSocket clients."""

from typing import Callable

from starlette.websockets import WebSocket


class ConnectionRegistry:
    """Membership-only set of connected clients.

    Learn: The WebSocket endpoint registers a socket after the greeting
    and unregisters it on disconnect; the Broadcaster unregisters sockets
    whose send fails. Both operations are idempotent, so whichever side
    notices a dead client first wins and the other is a no-op.
    """

    def __init__(self):
        self._connections: set[WebSocket] = set()

    def register(self, conn: WebSocket) -> bool:
        """Add a connection. Returns False if it was already registered."""
        if conn in self._connections:
            return False
        self._connections.add(conn)
        return True

    def unregister(self, conn: WebSocket) -> bool:
        """Remove a connection. Returns False if it was already gone."""
        if conn not in self._connections:
            return False
        self._connections.discard(conn)
        return True

    def snapshot(self) -> list[WebSocket]:
        """Point-in-time copy, safe to iterate while the set changes."""
        return list(self._connections)

    def for_each(self, fn: Callable[[WebSocket], None]) -> None:
        """Call fn on each connection in a snapshot; fn may unregister it."""
        for conn in self.snapshot():
            fn(conn)

    def __contains__(self, conn: object) -> bool:
        return conn in self._connections

    def __len__(self) -> int:
        return len(self._connections)
