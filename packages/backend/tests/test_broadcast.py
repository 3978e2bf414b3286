"""Broadcaster delivery semantics.

Learn: Tests cover:
1. Every open client gets the same serialized frame
2. A failing or stuck client is dropped and does not affect the others
3. A client that is no longer open is skipped, counted, and dropped
4. Per-client ordering across many broadcasts
"""

import asyncio
import json
from unittest.mock import patch

import pytest
from starlette.websockets import WebSocketState

from tourney_relay.realtime.broadcast import Broadcaster
from tourney_relay.realtime.envelope import EventEnvelope, decode_envelope
from tourney_relay.realtime.registry import ConnectionRegistry


def _envelope(n: int = 7) -> EventEnvelope:
    return EventEnvelope(event="match_updated", payload={"matchId": n})


@pytest.mark.asyncio
async def test_broadcast_reaches_every_open_client(make_ws):
    registry = ConnectionRegistry()
    clients = [make_ws() for _ in range(3)]
    for ws in clients:
        registry.register(ws)

    summary = await Broadcaster(registry).broadcast(_envelope())

    assert (summary.sent, summary.failed, summary.total) == (3, 0, 3)
    for ws in clients:
        assert ws.sent == ['{"event":"match_updated","payload":{"matchId":7}}']


@pytest.mark.asyncio
async def test_broadcast_with_no_clients(make_ws):
    summary = await Broadcaster(ConnectionRegistry()).broadcast(_envelope())
    assert (summary.sent, summary.failed, summary.total) == (0, 0, 0)


@pytest.mark.asyncio
async def test_envelope_serialized_once(make_ws):
    registry = ConnectionRegistry()
    for _ in range(4):
        registry.register(make_ws())

    with patch.object(
        EventEnvelope, "to_wire", return_value='{"event":"x","payload":{}}'
    ) as to_wire:
        await Broadcaster(registry).broadcast(EventEnvelope(event="x"))

    assert to_wire.call_count == 1


@pytest.mark.asyncio
async def test_failed_send_drops_only_that_client(make_ws):
    registry = ConnectionRegistry()
    good_a, bad, good_b = make_ws(), make_ws(fail=True), make_ws()
    for ws in (good_a, bad, good_b):
        registry.register(ws)
    broadcaster = Broadcaster(registry)

    summary = await broadcaster.broadcast(_envelope(1))

    assert (summary.sent, summary.failed) == (2, 1)
    assert bad not in registry
    assert len(registry) == 2

    # Dropped client is never tried again; the others keep receiving
    await broadcaster.broadcast(_envelope(2))
    assert bad.send_attempts == 1
    for ws in (good_a, good_b):
        assert [m["payload"]["matchId"] for m in ws.received()] == [1, 2]


@pytest.mark.asyncio
async def test_client_not_open_is_counted_failed_and_removed(make_ws):
    registry = ConnectionRegistry()
    closing = make_ws(state=WebSocketState.DISCONNECTED)
    registry.register(closing)
    registry.register(make_ws())

    summary = await Broadcaster(registry).broadcast(_envelope())

    assert (summary.sent, summary.failed, summary.total) == (1, 1, 2)
    assert closing.send_attempts == 0
    assert closing not in registry


@pytest.mark.asyncio
async def test_each_client_sees_broadcasts_in_order(make_ws):
    registry = ConnectionRegistry()
    early, late = make_ws(), make_ws()
    registry.register(early)
    broadcaster = Broadcaster(registry)

    for n in range(5):
        if n == 3:
            registry.register(late)
        await broadcaster.broadcast(_envelope(n))

    assert [m["payload"]["matchId"] for m in early.received()] == [0, 1, 2, 3, 4]
    # Only what was broadcast while it was connected
    assert [m["payload"]["matchId"] for m in late.received()] == [3, 4]


@pytest.mark.asyncio
async def test_stats_accumulate(make_ws):
    registry = ConnectionRegistry()
    registry.register(make_ws())
    registry.register(make_ws(fail=True))
    broadcaster = Broadcaster(registry)

    await broadcaster.broadcast(_envelope(1))
    await broadcaster.broadcast(_envelope(2))

    assert broadcaster.stats.broadcasts == 2
    assert broadcaster.stats.sent == 2
    assert broadcaster.stats.failed == 1


@pytest.mark.asyncio
async def test_payload_relayed_unchanged(make_ws):
    registry = ConnectionRegistry()
    ws = make_ws()
    registry.register(ws)
    payload = {"bracket": {"rounds": [[1, 2], [3]]}, "final": None, "ratio": 0.5}

    await Broadcaster(registry).broadcast(EventEnvelope(event="bracket_updated", payload=payload))

    assert json.loads(ws.sent[0]) == {"event": "bracket_updated", "payload": payload}


@pytest.mark.asyncio
async def test_stuck_client_times_out_and_is_dropped(make_ws):
    registry = ConnectionRegistry()
    good, stuck = make_ws(), make_ws(hang=True)
    registry.register(good)
    registry.register(stuck)
    broadcaster = Broadcaster(registry, send_timeout=0.05)

    summary = await asyncio.wait_for(broadcaster.broadcast(_envelope(1)), timeout=1.0)

    assert (summary.sent, summary.failed, summary.total) == (1, 1, 2)
    assert stuck not in registry
    assert good.received() == [{"event": "match_updated", "payload": {"matchId": 1}}]


@pytest.mark.asyncio
async def test_envelope_without_payload_relayed_as_is(make_ws):
    registry = ConnectionRegistry()
    ws = make_ws()
    registry.register(ws)

    await Broadcaster(registry).broadcast(decode_envelope('{"event":"tournament_started"}'))

    assert ws.sent == ['{"event":"tournament_started"}']
