"""Event envelope — the unit the relay moves around.

Learn: The relay never interprets tournament data. An envelope is just an
event name plus an opaque payload, decoded from JSON once on the way in
and serialized once per broadcast on the way out. Unknown top-level keys
are kept so producers can add fields without a relay release.
"""

from typing import Any, Awaitable, Callable

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from tourney_relay.errors import DecodeError

CONNECTED = "connected"
CONNECTED_MESSAGE = "Connected to tournament WebSocket server"


class EventEnvelope(BaseModel):
    event: str = Field(min_length=1)
    payload: Any = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True, extra="allow")

    def to_wire(self) -> str:
        """Compact JSON text, the same shape producers write.

        A payload the producer left out stays out.
        """
        return self.model_dump_json(exclude_unset=True)


def decode_envelope(raw: str | bytes) -> EventEnvelope:
    """Parse a broker message or spool file body.

    Raises DecodeError for invalid JSON, non-object documents, or a
    missing/empty event name. Nothing is partially decoded.
    """
    try:
        return EventEnvelope.model_validate_json(raw)
    except ValidationError as e:
        raise DecodeError(
            f"invalid event envelope ({e.error_count()} error(s)): "
            f"{e.errors()[0]['msg']}"
        ) from e


def connected_envelope() -> EventEnvelope:
    """Greeting sent to every client right after the handshake."""
    return EventEnvelope(event=CONNECTED, payload={"message": CONNECTED_MESSAGE})


EnvelopeHandler = Callable[[EventEnvelope], Awaitable[None]]
