from __future__ import annotations

import io
import json
import math
import struct
from dataclasses import dataclass

import pytest


@dataclass
class _Repo:
    url: str
    depth: int = 1


def test_envelope_roundtrip_preserves_type_and_payload() -> None:
    from native_hosts.ghsandbox.native_envelope import decode_envelope, encode_envelope

    for payload in [None, 1, 2.5, "text", [1, "a", None], {"url": "https://github.com/a/b", "nested": {"k": [1]}}]:
        env = decode_envelope(io.BytesIO(encode_envelope("status", payload)))
        assert env.type == "status"
        assert env.decode_payload() == payload


def test_wire_body_is_compact_json_object() -> None:
    from native_hosts.ghsandbox.native_envelope import encode_envelope

    frame = encode_envelope("status", {"state": "accepted", "url": "ü"})
    (length,) = struct.unpack("<I", frame[:4])
    body = frame[4:]
    assert length == len(body)
    assert body == '{"type":"status","payload":{"state":"accepted","url":"ü"}}'.encode()


def test_pre_serialized_payload_is_embedded_not_double_encoded() -> None:
    from native_hosts.ghsandbox.native_envelope import SerializationError, encode_envelope

    frame = encode_envelope("status", payload_json='{"a": 1}')
    assert json.loads(frame[4:]) == {"type": "status", "payload": {"a": 1}}

    with pytest.raises(SerializationError):
        encode_envelope("status", payload_json="{not json")


def test_unserializable_payload_raises() -> None:
    from native_hosts.ghsandbox.native_envelope import SerializationError, encode_envelope

    with pytest.raises(SerializationError):
        encode_envelope("status", {"when": object()})
    with pytest.raises(SerializationError):
        encode_envelope("status", {"x": math.nan})
    with pytest.raises(SerializationError):
        encode_envelope("", {})


def test_empty_object_body_fails_type_required() -> None:
    from native_hosts.ghsandbox.native_envelope import SerializationError, decode_envelope

    with pytest.raises(SerializationError, match="missing envelope type"):
        decode_envelope(io.BytesIO(b"\x02\x00\x00\x00{}"))


def test_malformed_bodies() -> None:
    from native_hosts.ghsandbox.native_envelope import SerializationError, parse_envelope

    for raw in [b"", b"{", b"[1,2]", b'"str"', b'{"type": 5}', b'{"type": ""}', b"\xff\xfe"]:
        with pytest.raises(SerializationError):
            parse_envelope(raw)


def test_missing_payload_decodes_as_null() -> None:
    from native_hosts.ghsandbox.native_envelope import parse_envelope

    env = parse_envelope(b'{"type":"ping"}')
    assert env.payload_json == "null"
    assert env.decode_payload() is None


def test_short_read_propagates_unchanged() -> None:
    from native_hosts.ghsandbox.native_envelope import decode_envelope
    from native_hosts.ghsandbox.native_framing import ShortRead

    with pytest.raises(ShortRead):
        decode_envelope(io.BytesIO(b"\x10\x00\x00\x00{}"))


def test_decode_payload_into_dataclass() -> None:
    from native_hosts.ghsandbox.native_envelope import Envelope, SerializationError

    env = Envelope.create("sandbox", {"url": "https://github.com/a/b", "extra": True})
    repo = env.decode_payload(_Repo)
    assert repo == _Repo(url="https://github.com/a/b", depth=1)

    with pytest.raises(SerializationError, match="missing field 'url'"):
        Envelope.create("sandbox", {}).decode_payload(_Repo)
    with pytest.raises(SerializationError, match="expected str"):
        Envelope.create("sandbox", {"url": 7}).decode_payload(_Repo)
    with pytest.raises(SerializationError, match="expected int"):
        Envelope.create("sandbox", {"url": "u", "depth": True}).decode_payload(_Repo)
    with pytest.raises(SerializationError):
        Envelope.create("sandbox", [1]).decode_payload(_Repo)


def test_decode_payload_unwraps_pre_encoded_string() -> None:
    from native_hosts.ghsandbox.native_envelope import Envelope, decode_envelope_payload

    env = Envelope.create("sandbox", json.dumps({"url": "https://github.com/a/b"}))
    assert decode_envelope_payload(env, _Repo).url == "https://github.com/a/b"
    assert decode_envelope_payload(env, dict) == {"url": "https://github.com/a/b"}
    # Asking for str keeps the raw string.
    assert isinstance(decode_envelope_payload(env, str), str)


def test_decode_payload_builtin_shapes() -> None:
    from native_hosts.ghsandbox.native_envelope import Envelope, SerializationError

    assert Envelope.create("t", 3).decode_payload(float) == 3
    assert Envelope.create("t", [1]).decode_payload(list) == [1]
    with pytest.raises(SerializationError):
        Envelope.create("t", True).decode_payload(int)
    with pytest.raises(SerializationError):
        Envelope.create("t", {"a": 1}).decode_payload(list)


def test_lone_surrogate_fails_as_serialization_error() -> None:
    from native_hosts.ghsandbox.native_envelope import SerializationError, encode_envelope, parse_envelope

    with pytest.raises(SerializationError):
        encode_envelope("status", {"url": "https://github.com/a/b\ud800"})

    # Valid JSON on the way in, so only re-encoding can fail.
    env = parse_envelope(b'{"type":"sandbox","payload":{"url":"x\\ud800"}}')
    assert env.decode_payload(dict) == {"url": "x\ud800"}
    with pytest.raises(SerializationError):
        env.pack()
