"""Relay error taxonomy.

Learn: Every failure the relay can hit belongs to exactly one of these
classes. Per-item errors (one message, one client, one spool file) are
caught and logged where they happen and never abort the surrounding
loop. Only ConfigError and, in the strict profile, an initial
TransportConnectError escape to the process.
"""


class RelayError(Exception):
    """Base class for all relay errors."""


class DecodeError(RelayError):
    """Raised when a raw message or spool file is not a valid event envelope."""


class DeliveryError(RelayError):
    """Raised when sending to a single WebSocket client fails."""


class TransportConnectError(RelayError):
    """Raised when the broker is unreachable or the subscribe step fails."""


class SpoolIOError(RelayError):
    """Raised when a spool file cannot be read or deleted."""

    def __init__(self, path: str, reason: str):
        super().__init__(f"{path}: {reason}")
        self.path = path
        self.reason = reason


class ConfigError(RelayError):
    """Raised when mandatory configuration is missing or invalid."""
