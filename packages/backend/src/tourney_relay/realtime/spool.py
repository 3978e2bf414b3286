"""Spool directory — the fallback event transport.

Learn: When Redis is down, producers drop each event into the spool
directory as its own file (`tournament_<id>.json`). The SpoolPoller scans
that directory on a short interval, but only while the availability flag
is off, so an event is never delivered by both transports.

Per file, in lexical order:
  mark processed → too young? (un-mark, retry next scan)
                 → read → decode → dispatch → delete

A file that cannot be read or decoded stays marked and is never retried;
one poison file must not turn into an endless error loop. It is left on
disk for someone to look at.

File I/O runs in a worker thread so a slow disk never stalls WebSocket
traffic on the event loop.
"""

import asyncio
import os
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

import structlog

from tourney_relay.errors import DecodeError, SpoolIOError
from tourney_relay.realtime.context import RelayContext
from tourney_relay.realtime.envelope import EnvelopeHandler, EventEnvelope, decode_envelope

logger = structlog.get_logger()

DEFAULT_PREFIX = "tournament_"
DEFAULT_SUFFIX = ".json"


@dataclass
class SpoolStats:
    scans: int = 0
    consumed: int = 0
    deferred: int = 0
    dropped: int = 0


def write_spool_file(
    directory: str | Path,
    envelope: EventEnvelope,
    prefix: str = DEFAULT_PREFIX,
    suffix: str = DEFAULT_SUFFIX,
) -> Path:
    """Write an envelope the way producers should: temp file, then rename.

    The temp name starts with a dot so the poller never matches it, and
    the rename is atomic, so the poller sees either nothing or the whole
    file. Names sort by creation time.
    """
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    name = f"{prefix}{time.time_ns()}_{uuid.uuid4().hex[:8]}{suffix}"
    tmp = directory / f".{name}.tmp"
    tmp.write_text(envelope.to_wire(), encoding="utf-8")
    final = directory / name
    os.replace(tmp, final)
    return final


class SpoolPoller:
    """Polls the spool directory while the broker is unavailable.

    Usage:
        poller = SpoolPoller(path, context, dispatcher.submit)
        asyncio.create_task(poller.run_loop())
    """

    def __init__(
        self,
        directory: str | Path,
        context: RelayContext,
        on_envelope: EnvelopeHandler,
        prefix: str = DEFAULT_PREFIX,
        suffix: str = DEFAULT_SUFFIX,
        poll_interval: float = 0.5,
        grace_period: float = 0.05,
        clock: Callable[[], float] = time.time,
    ):
        self.directory = Path(directory).resolve()
        self.context = context
        self.on_envelope = on_envelope
        self.prefix = prefix
        self.suffix = suffix
        self.poll_interval = poll_interval
        self.grace_period = grace_period
        self._clock = clock
        self._running = False
        self.stats = SpoolStats()

    def ensure_directory(self) -> bool:
        """Create the spool directory if needed. Failure is logged, not fatal."""
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error(
                "spool.directory_unavailable",
                directory=str(self.directory),
                error=str(e),
            )
            return False
        logger.info("spool.watching", directory=str(self.directory))
        return True

    def _list(self) -> list[str]:
        return sorted(
            name
            for name in os.listdir(self.directory)
            if name.startswith(self.prefix) and name.endswith(self.suffix)
        )

    async def run_loop(self) -> None:
        """Scan every poll_interval until stopped."""
        self._running = True
        logger.info("spool.started", poll_interval=self.poll_interval)

        while self._running:
            try:
                await self.scan_once()
            except Exception:
                logger.exception("spool.error")
            await asyncio.sleep(self.poll_interval)

    def stop(self) -> None:
        self._running = False
        logger.info("spool.stopping")

    async def scan_once(self) -> int:
        """One pass over the directory. Returns the number of files consumed."""
        if self.context.availability.available:
            return 0

        self.stats.scans += 1
        try:
            names = await asyncio.to_thread(self._list)
        except OSError as e:
            logger.error("spool.list_failed", directory=str(self.directory), error=str(e))
            return 0

        processed = self.context.processed_files
        consumed = 0
        for name in names:
            # Redis may have come back while we were awaiting file I/O
            if self.context.availability.available:
                logger.info("spool.scan_interrupted", reason="broker available")
                break
            if name in processed:
                continue

            processed.add(name)
            try:
                done = await self._consume(self.directory / name)
            except (DecodeError, SpoolIOError) as e:
                self.stats.dropped += 1
                logger.error("spool.file_dropped", file=name, error=str(e))
                continue

            if done:
                consumed += 1
            else:
                processed.discard(name)

        return consumed

    async def _consume(self, path: Path) -> bool:
        """Deliver one file. Returns False if it is too new to trust yet."""
        try:
            stat = await asyncio.to_thread(path.stat)
        except OSError as e:
            raise SpoolIOError(path.name, f"stat failed: {e}") from e

        if self._clock() - stat.st_mtime < self.grace_period:
            self.stats.deferred += 1
            logger.debug("spool.file_deferred", file=path.name)
            return False

        try:
            raw = await asyncio.to_thread(path.read_bytes)
        except OSError as e:
            raise SpoolIOError(path.name, f"read failed: {e}") from e

        envelope = decode_envelope(raw)
        logger.info("spool.event", file=path.name, event_type=envelope.event)
        await self.on_envelope(envelope)
        self.stats.consumed += 1

        try:
            await asyncio.to_thread(path.unlink)
        except OSError as e:
            # Already delivered and still marked, so it won't be sent twice
            logger.warning("spool.delete_failed", file=path.name, error=str(e))
        return True
