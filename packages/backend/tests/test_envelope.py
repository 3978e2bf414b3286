"""Event envelope decoding and wire format."""

import pytest
from pydantic import ValidationError

from tourney_relay.errors import DecodeError
from tourney_relay.realtime.envelope import (
    EventEnvelope,
    connected_envelope,
    decode_envelope,
)


def test_decode_round_trips_wire_shape():
    raw = '{"event":"match_updated","payload":{"matchId":7}}'
    envelope = decode_envelope(raw)
    assert envelope.event == "match_updated"
    assert envelope.payload == {"matchId": 7}
    assert envelope.to_wire() == raw


def test_decode_accepts_bytes_and_whitespace():
    envelope = decode_envelope(b'{ "event": "bracket_reset",\n  "payload": [1, 2] }')
    assert envelope.event == "bracket_reset"
    assert envelope.payload == [1, 2]


def test_missing_payload_defaults_to_empty_object():
    envelope = decode_envelope('{"event":"tournament_started"}')
    assert envelope.payload == {}


def test_extra_top_level_keys_are_kept():
    envelope = decode_envelope('{"event":"score","payload":{},"ts":"2024-05-01T10:00:00Z"}')
    assert envelope.to_wire() == '{"event":"score","payload":{},"ts":"2024-05-01T10:00:00Z"}'


@pytest.mark.parametrize(
    "raw",
    [
        "not json",
        "",
        "[1, 2, 3]",
        '"just a string"',
        '{"payload": {"matchId": 7}}',
        '{"event": "", "payload": {}}',
        '{"event": 5, "payload": {}}',
        '{"event": "match_updated", "payload": ',
        b"\xff\xfe{}",
    ],
)
def test_malformed_input_raises_decode_error(raw):
    with pytest.raises(DecodeError):
        decode_envelope(raw)


def test_envelope_is_immutable():
    envelope = EventEnvelope(event="match_updated", payload={"matchId": 7})
    with pytest.raises(ValidationError):
        envelope.event = "something_else"


def test_connected_greeting():
    assert connected_envelope().to_wire() == (
        '{"event":"connected","payload":'
        '{"message":"Connected to tournament WebSocket server"}}'
    )


def test_missing_payload_not_added_on_the_way_out():
    envelope = decode_envelope('{"event":"tournament_started","round":3}')
    assert envelope.to_wire() == '{"event":"tournament_started","round":3}'
