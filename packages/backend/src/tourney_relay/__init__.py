"""Tourney Relay — real-time fan-out of tournament events to live views.

Receives tournament-state change events from Redis pub/sub (or, when the
broker is down, from an on-disk spool directory) and pushes them to every
connected WebSocket client.
"""

__version__ = "0.1.0"
