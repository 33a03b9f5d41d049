"""Canonical binary codec used for enclave signing messages.

Byte-compatible with BCS (Binary Canonical Serialization):

- unsigned integers are fixed-width little-endian
- bool is a single 0x00 / 0x01 byte
- bytes, strings and sequences are prefixed with a ULEB128 length
- Option<T> is a 0x00 / 0x01 tag followed by the value when present
- struct fields are concatenated in declaration order with no padding
- enum variants are a ULEB128 variant index followed by the variant payload

Schemas are declared explicitly. Nothing here inspects Python types to
guess a wire type, so the same value always encodes to the same bytes.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Union

from .errors import CodecError

# BCS caps sequence lengths and enum indices at u32.
MAX_ULEB128 = 2**32 - 1


@dataclass(frozen=True)
class UInt:
    name: str
    width: int  # bytes

    @property
    def max_value(self) -> int:
        return (1 << (8 * self.width)) - 1


@dataclass(frozen=True)
class _Primitive:
    name: str


@dataclass(frozen=True)
class Seq:
    element: Schema


@dataclass(frozen=True)
class Option:
    inner: Schema


@dataclass(frozen=True)
class Struct:
    name: str
    fields: tuple[tuple[str, Schema], ...]

    def __init__(self, name: str, fields):
        object.__setattr__(self, "name", name)
        object.__setattr__(self, "fields", tuple((f, s) for f, s in fields))

    @property
    def field_names(self) -> list[str]:
        return [f for f, _ in self.fields]


@dataclass(frozen=True)
class Enum:
    """Tagged union. Values are ``(variant_name, payload)``; unit variants use a None schema."""

    name: str
    variants: tuple[tuple[str, Union[Schema, None]], ...]

    def __init__(self, name: str, variants):
        object.__setattr__(self, "name", name)
        object.__setattr__(self, "variants", tuple((v, s) for v, s in variants))


Schema = Union[UInt, _Primitive, Seq, Option, Struct, Enum]

U8 = UInt("u8", 1)
U16 = UInt("u16", 2)
U32 = UInt("u32", 4)
U64 = UInt("u64", 8)
U128 = UInt("u128", 16)
BOOL = _Primitive("bool")
BYTES = _Primitive("bytes")
STR = _Primitive("string")


# ── ULEB128 ──────────────────────────────────────────────────────────────────


def encode_uleb128(n: int) -> bytes:
    if isinstance(n, bool) or not isinstance(n, int) or n < 0 or n > MAX_ULEB128:
        raise CodecError(f"ULEB128 value out of range: {n!r}")
    out = bytearray()
    while True:
        byte = n & 0x7F
        n >>= 7
        if n:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


class _Reader:
    def __init__(self, data: bytes):
        self.data = data
        self.pos = 0

    def read(self, n: int) -> bytes:
        end = self.pos + n
        if end > len(self.data):
            raise CodecError(
                f"Unexpected end of input: need {n} bytes at offset {self.pos}, "
                f"have {len(self.data) - self.pos}"
            )
        chunk = self.data[self.pos : end]
        self.pos = end
        return chunk

    def read_uleb128(self) -> int:
        value = 0
        shift = 0
        while True:
            byte = self.read(1)[0]
            value |= (byte & 0x7F) << shift
            if not byte & 0x80:
                # Trailing zero groups would give a second encoding of the same value.
                if byte == 0 and shift > 0:
                    raise CodecError("Non-canonical ULEB128 encoding")
                break
            shift += 7
            if shift > 28:
                raise CodecError("ULEB128 value overflows u32")
        if value > MAX_ULEB128:
            raise CodecError("ULEB128 value overflows u32")
        return value


# ── Encoding ─────────────────────────────────────────────────────────────────


def _get_field(value: Any, struct: Struct, field: str) -> Any:
    if isinstance(value, Mapping):
        if field not in value:
            raise CodecError(f"Missing field {field!r} for {struct.name}")
        return value[field]
    try:
        return getattr(value, field)
    except AttributeError:
        raise CodecError(f"Missing field {field!r} for {struct.name}") from None


def _encode_into(schema: Schema, value: Any, out: bytearray) -> None:
    if isinstance(schema, UInt):
        if isinstance(value, bool) or not isinstance(value, int):
            raise CodecError(f"{schema.name} expects int, got {type(value).__name__}")
        if value < 0 or value > schema.max_value:
            raise CodecError(f"{value} out of range for {schema.name}")
        out += value.to_bytes(schema.width, "little")
    elif schema is BOOL:
        if not isinstance(value, bool):
            raise CodecError(f"bool expects bool, got {type(value).__name__}")
        out.append(1 if value else 0)
    elif schema is BYTES:
        if not isinstance(value, (bytes, bytearray)):
            raise CodecError(f"bytes expects bytes, got {type(value).__name__}")
        out += encode_uleb128(len(value))
        out += value
    elif schema is STR:
        if not isinstance(value, str):
            raise CodecError(f"string expects str, got {type(value).__name__}")
        raw = value.encode("utf-8")
        out += encode_uleb128(len(raw))
        out += raw
    elif isinstance(schema, Seq):
        if not isinstance(value, (list, tuple)):
            raise CodecError(f"sequence expects list or tuple, got {type(value).__name__}")
        out += encode_uleb128(len(value))
        for item in value:
            _encode_into(schema.element, item, out)
    elif isinstance(schema, Option):
        if value is None:
            out.append(0)
        else:
            out.append(1)
            _encode_into(schema.inner, value, out)
    elif isinstance(schema, Struct):
        for field, field_schema in schema.fields:
            _encode_into(field_schema, _get_field(value, schema, field), out)
    elif isinstance(schema, Enum):
        if isinstance(value, str):
            variant, payload = value, None
        else:
            try:
                variant, payload = value
            except (TypeError, ValueError):
                raise CodecError(f"{schema.name} expects (variant, payload)") from None
        for index, (name, payload_schema) in enumerate(schema.variants):
            if name == variant:
                out += encode_uleb128(index)
                if payload_schema is not None:
                    _encode_into(payload_schema, payload, out)
                return
        raise CodecError(f"Unknown variant {variant!r} for {schema.name}")
    else:
        raise CodecError(f"Unsupported schema: {schema!r}")


def encode(schema: Schema, value: Any) -> bytes:
    """Encode *value* under *schema*. Raises CodecError if it does not fit."""
    out = bytearray()
    _encode_into(schema, value, out)
    return bytes(out)


# ── Decoding ─────────────────────────────────────────────────────────────────


def _decode_from(schema: Schema, reader: _Reader) -> Any:
    if isinstance(schema, UInt):
        return int.from_bytes(reader.read(schema.width), "little")
    if schema is BOOL:
        byte = reader.read(1)[0]
        if byte not in (0, 1):
            raise CodecError(f"Invalid bool byte: {byte:#04x}")
        return byte == 1
    if schema is BYTES:
        return reader.read(reader.read_uleb128())
    if schema is STR:
        raw = reader.read(reader.read_uleb128())
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise CodecError(f"Invalid UTF-8 string: {e}") from e
    if isinstance(schema, Seq):
        return [_decode_from(schema.element, reader) for _ in range(reader.read_uleb128())]
    if isinstance(schema, Option):
        tag = reader.read(1)[0]
        if tag == 0:
            return None
        if tag != 1:
            raise CodecError(f"Invalid option tag: {tag:#04x}")
        return _decode_from(schema.inner, reader)
    if isinstance(schema, Struct):
        return {field: _decode_from(field_schema, reader) for field, field_schema in schema.fields}
    if isinstance(schema, Enum):
        index = reader.read_uleb128()
        if index >= len(schema.variants):
            raise CodecError(f"Variant index {index} out of range for {schema.name}")
        name, payload_schema = schema.variants[index]
        payload = None if payload_schema is None else _decode_from(payload_schema, reader)
        return name, payload
    raise CodecError(f"Unsupported schema: {schema!r}")


def decode(schema: Schema, data: bytes) -> Any:
    """Decode *data* under *schema*. The whole input must be consumed."""
    reader = _Reader(bytes(data))
    value = _decode_from(schema, reader)
    if reader.pos != len(reader.data):
        raise CodecError(f"{len(reader.data) - reader.pos} trailing bytes after {schema!r}")
    return value
