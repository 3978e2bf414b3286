"""Shared relay state, owned by the TransportSupervisor.

Learn: Three pieces of state are shared between components: the
connection registry, the spool's processed-file set, and the broker
availability flag. They live on one RelayContext that is passed to each
component instead of sitting in module globals. Everything runs on one
asyncio loop, so no locks are needed.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

import structlog

from tourney_relay.realtime.registry import ConnectionRegistry

logger = structlog.get_logger()


class AvailabilityFlag:
    """Whether the Redis transport is usable right now.

    Written only by the ChannelSubscriber; read by the SpoolPoller gate.
    Both transitions are idempotent and return whether anything changed.
    """

    def __init__(self):
        self._available = False
        self.changed_at: Optional[datetime] = None

    @property
    def available(self) -> bool:
        return self._available

    def mark_available(self) -> bool:
        if self._available:
            return False
        self._available = True
        self.changed_at = datetime.now(timezone.utc)
        logger.info("transport.available", transport="redis")
        return True

    def mark_unavailable(self, reason: str = "") -> bool:
        if not self._available:
            return False
        self._available = False
        self.changed_at = datetime.now(timezone.utc)
        logger.warning("transport.unavailable", transport="redis", reason=reason)
        return True

    def __bool__(self) -> bool:
        return self._available


@dataclass
class RelayContext:
    registry: ConnectionRegistry = field(default_factory=ConnectionRegistry)
    processed_files: set[str] = field(default_factory=set)
    availability: AvailabilityFlag = field(default_factory=AvailabilityFlag)
