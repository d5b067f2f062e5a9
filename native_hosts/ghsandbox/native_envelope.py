"""Typed `{type, payload}` envelope carried inside one native messaging frame.

The payload is kept as already-serialized JSON text. Callers pick the shape
they want at read time via `Envelope.decode_payload`.
"""

from __future__ import annotations

import dataclasses
import json
import typing
from dataclasses import dataclass
from typing import Any, BinaryIO, TypeVar

from .native_framing import MAX_FRAME_BYTES, NativeMessagingError, encode_frame, read_frame

T = TypeVar("T")

_JSON_TYPES: tuple[type, ...] = (dict, list, str, int, float, bool)


class SerializationError(NativeMessagingError, ValueError):
    """JSON encode/decode failure, or a payload that does not fit the requested shape."""


def _dumps(value: Any) -> str:
    try:
        return json.dumps(value, ensure_ascii=False, separators=(",", ":"), allow_nan=False)
    except (TypeError, ValueError) as exc:
        raise SerializationError(f"payload is not JSON serializable: {exc}") from exc


def _check_type(message_type: Any) -> str:
    if not isinstance(message_type, str) or not message_type:
        raise SerializationError("missing envelope type")
    return message_type


@dataclass(frozen=True, slots=True)
class Envelope:
    type: str
    payload_json: str = "null"

    @classmethod
    def create(cls, message_type: str, payload: Any = None) -> Envelope:
        return cls(type=_check_type(message_type), payload_json=_dumps(payload))

    @classmethod
    def from_payload_json(cls, message_type: str, payload_json: str | bytes) -> Envelope:
        """Wrap a pre-serialized payload (validated, stored compact)."""
        try:
            value = json.loads(payload_json)
        except (TypeError, ValueError) as exc:
            raise SerializationError(f"invalid pre-serialized payload: {exc}") from exc
        return cls(type=_check_type(message_type), payload_json=_dumps(value))

    def body(self) -> bytes:
        text = '{"type":' + _dumps(_check_type(self.type)) + ',"payload":' + self.payload_json + "}"
        try:
            return text.encode("utf-8")
        except UnicodeEncodeError as exc:
            # Lone surrogates survive json.loads but have no UTF-8 encoding.
            raise SerializationError(f"envelope is not valid UTF-8: {exc}") from exc

    def pack(self, *, max_frame_bytes: int | None = None) -> bytes:
        return encode_frame(self.body(), max_frame_bytes=max_frame_bytes)

    def decode_payload(self, shape: type[T] | None = None) -> T | Any:
        return decode_envelope_payload(self, shape)


def encode_envelope(
    message_type: str,
    payload: Any = None,
    *,
    payload_json: str | bytes | None = None,
    max_frame_bytes: int | None = None,
) -> bytes:
    if payload_json is not None:
        envelope = Envelope.from_payload_json(message_type, payload_json)
    else:
        envelope = Envelope.create(message_type, payload)
    return envelope.pack(max_frame_bytes=max_frame_bytes)


def parse_envelope(raw: bytes) -> Envelope:
    """Parse one frame body. `type` is required; a missing `payload` is null."""
    try:
        obj = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as exc:
        raise SerializationError(f"invalid envelope JSON: {exc}") from exc
    if not isinstance(obj, dict):
        raise SerializationError(f"envelope must be a JSON object, got {type(obj).__name__}")
    return Envelope(type=_check_type(obj.get("type")), payload_json=_dumps(obj.get("payload")))


def decode_envelope(source: BinaryIO | int, *, max_frame_bytes: int = MAX_FRAME_BYTES) -> Envelope:
    return parse_envelope(read_frame(source, max_frame_bytes=max_frame_bytes))


def _shape_name(shape: Any) -> str:
    return getattr(shape, "__name__", repr(shape))


def _to_dataclass(value: Any, shape: type[T]) -> T:
    if not isinstance(value, dict):
        raise SerializationError(f"expected object for {_shape_name(shape)}, got {type(value).__name__}")
    hints = typing.get_type_hints(shape)
    kwargs: dict[str, Any] = {}
    for f in dataclasses.fields(shape):  # type: ignore[arg-type]
        if not f.init:
            continue
        if f.name not in value:
            if f.default is dataclasses.MISSING and f.default_factory is dataclasses.MISSING:
                raise SerializationError(f"{_shape_name(shape)}: missing field {f.name!r}")
            continue
        field_value = value[f.name]
        hint = hints.get(f.name)
        if hint in _JSON_TYPES and not _matches(field_value, hint):
            raise SerializationError(
                f"{_shape_name(shape)}.{f.name}: expected {hint.__name__}, got {type(field_value).__name__}"
            )
        kwargs[f.name] = field_value
    return shape(**kwargs)


def _matches(value: Any, shape: type) -> bool:
    # bool is an int subclass; JSON keeps them apart.
    if isinstance(value, bool) and shape is not bool:
        return False
    if shape is float:
        return isinstance(value, (int, float))
    return isinstance(value, shape)


def decode_envelope_payload(envelope: Envelope, shape: type[T] | None = None) -> T | Any:
    """Deserialize the envelope payload into `shape`.

    `shape` may be None (plain JSON value), one of the builtin JSON types, or a
    dataclass. A JSON string carrying pre-encoded JSON is unwrapped when the
    requested shape is not `str`.
    """
    try:
        value = json.loads(envelope.payload_json)
    except ValueError as exc:
        raise SerializationError(f"invalid payload JSON: {exc}") from exc

    if shape is None or shape is Any:
        return value

    if isinstance(value, str) and shape is not str:
        try:
            value = json.loads(value)
        except ValueError as exc:
            raise SerializationError(f"expected {_shape_name(shape)}, got a non-JSON string") from exc

    if dataclasses.is_dataclass(shape):
        try:
            return _to_dataclass(value, shape)
        except (TypeError, NameError) as exc:
            raise SerializationError(f"{_shape_name(shape)}: {exc}") from exc

    if shape in _JSON_TYPES:
        if not _matches(value, shape):
            raise SerializationError(f"expected {_shape_name(shape)}, got {type(value).__name__}")
        return value

    raise SerializationError(f"unsupported payload shape: {_shape_name(shape)}")


__all__ = [
    "Envelope",
    "SerializationError",
    "decode_envelope",
    "decode_envelope_payload",
    "encode_envelope",
    "parse_envelope",
]
