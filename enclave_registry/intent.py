"""Intent envelope: domain-separated, timestamped signing messages.

The enclave never signs a bare payload. It signs ``intent || timestamp_ms ||
payload`` so a signature produced for one purpose cannot be replayed as a
message of another purpose.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import IntEnum
from typing import Any

from . import codec
from .errors import CodecError, UnknownIntentError

logger = logging.getLogger(__name__)


class IntentScope(IntEnum):
    """Message purposes an enclave signs for. Encoded as a single u8."""

    WEATHER = 0


INTENT_HEADER = codec.Struct("IntentHeader", [("intent", codec.U8), ("timestamp_ms", codec.U64)])

# intent tag -> payload schema
_payload_schemas: dict[int, codec.Struct] = {}


def register_payload_schema(intent: int, schema: codec.Struct) -> None:
    """Register the payload schema signed under *intent*. Re-registering replaces it."""
    codec.encode(codec.U8, int(intent))
    _payload_schemas[int(intent)] = schema
    logger.debug(f"Registered payload schema {schema.name} for intent {int(intent)}")


def get_payload_schema(intent: int) -> codec.Struct:
    schema = _payload_schemas.get(int(intent))
    if schema is None:
        raise UnknownIntentError(f"No payload schema registered for intent {int(intent)}")
    return schema


@dataclass
class IntentMessage:
    """The envelope as signed: purpose, timestamp and application data."""

    intent: int
    timestamp_ms: int
    data: Any

    def to_bytes(self, schema: codec.Struct | None = None) -> bytes:
        return encode_intent(self.intent, self.timestamp_ms, self.data, schema)

    def to_dict(self) -> dict:
        data = self.data
        if not isinstance(data, dict) and hasattr(data, "model_dump"):
            data = data.model_dump()
        return {"intent": int(self.intent), "timestamp_ms": self.timestamp_ms, "data": data}


def encode_intent(
    intent: int,
    timestamp_ms: int,
    payload: Any,
    schema: codec.Struct | None = None,
) -> bytes:
    """Canonical bytes of an intent envelope.

    Args:
        intent: Intent tag (0-255)
        timestamp_ms: Millisecond epoch timestamp (u64)
        payload: Mapping or object with the schema's fields
        schema: Payload schema; looked up by intent tag when omitted

    Raises:
        UnknownIntentError: No schema given and none registered for the tag
        CodecError: The values do not fit their declared wire types
    """
    if schema is None:
        schema = get_payload_schema(intent)
    header = codec.encode(INTENT_HEADER, {"intent": int(intent), "timestamp_ms": timestamp_ms})
    return header + codec.encode(schema, payload)


def decode_intent(data: bytes, schema: codec.Struct | None = None) -> IntentMessage:
    """Parse canonical bytes back into an IntentMessage (payload as a dict)."""
    if len(data) < 9:
        raise CodecError(f"Intent message too short: {len(data)} bytes")
    intent = data[0]
    timestamp_ms = int.from_bytes(data[1:9], "little")
    if schema is None:
        schema = get_payload_schema(intent)
    return IntentMessage(intent=intent, timestamp_ms=timestamp_ms, data=codec.decode(schema, data[9:]))


# Payload of the reference weather application.
WEATHER_RESPONSE = codec.Struct("WeatherResponse", [("location", codec.STR), ("temperature", codec.U64)])

register_payload_schema(IntentScope.WEATHER, WEATHER_RESPONSE)
