"""Reconnect state machine with capped exponential backoff.

Learn: The ChannelSubscriber moves through three states:

  disconnected → connecting → connected
       ↑______________|____________|   (any error)

Each failed attempt doubles the wait (base, 2·base, 4·base, ...) up to
a fixed ceiling, so a dead broker costs one connection attempt every
`cap` seconds at most. Reaching `connected` resets the counter. The
counter itself keeps growing through a long outage (it is reported on
the health endpoint); only the exponent fed to the backoff is clamped.
"""

import enum

from redis.backoff import ExponentialBackoff

# 2**32 times any sane base is past every cap; larger exponents overflow float
MAX_EXPONENT = 32


class ConnectionState(str, enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class ReconnectPolicy:
    def __init__(self, base: float = 5.0, cap: float = 30.0):
        self._backoff = ExponentialBackoff(cap=cap, base=base)
        self.state = ConnectionState.DISCONNECTED
        self.failures = 0

    def connecting(self) -> None:
        self.state = ConnectionState.CONNECTING

    def connected(self) -> None:
        self.state = ConnectionState.CONNECTED
        self.failures = 0

    def disconnected(self) -> float:
        """Record a failure and return how long to wait before retrying."""
        self.state = ConnectionState.DISCONNECTED
        delay = self.next_delay()
        self.failures += 1
        return delay

    def next_delay(self) -> float:
        return self._backoff.compute(min(self.failures, MAX_EXPONENT))
