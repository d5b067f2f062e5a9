"""Chrome Native Messaging framing.

Wire format: ``[u32 little-endian length][length bytes]``. The length is
unsigned, so the only sanity check that makes sense on read is an upper bound.
"""

from __future__ import annotations

import os
import struct
from typing import BinaryIO

_HEADER = struct.Struct("<I")

HEADER_SIZE = _HEADER.size
MAX_U32 = 0xFFFFFFFF
MAX_FRAME_BYTES = 64 * 1024 * 1024


class NativeMessagingError(Exception):
    """Base class for framing/envelope/write failures."""


class ShortRead(NativeMessagingError, EOFError):
    """Source closed before a full header or body arrived."""

    def __init__(self, expected: int, received: int, *, header: bool = False) -> None:
        super().__init__(f"short read: expected {expected} bytes, got {received}")
        self.expected = expected
        self.received = received
        self.header = header

    @property
    def eof(self) -> bool:
        """True when the source ended cleanly between frames."""
        return self.header and self.received == 0


class FrameTooLarge(NativeMessagingError, ValueError):
    def __init__(self, length: int, limit: int) -> None:
        super().__init__(f"frame too large: {length} bytes (limit {limit})")
        self.length = length
        self.limit = limit


def read_exact(source: BinaryIO | int, n: int, *, header: bool = False) -> bytes:
    """Read exactly ``n`` bytes from a binary file object or a raw fd."""
    buf = bytearray()
    while len(buf) < n:
        if isinstance(source, int):
            chunk = os.read(source, n - len(buf))
        else:
            chunk = source.read(n - len(buf))
        if not chunk:
            raise ShortRead(n, len(buf), header=header)
        buf.extend(chunk)
    return bytes(buf)


def encode_frame(payload: bytes, *, max_frame_bytes: int | None = None) -> bytes:
    length = len(payload)
    limit = MAX_U32 if max_frame_bytes is None else min(int(max_frame_bytes), MAX_U32)
    if length > limit:
        raise FrameTooLarge(length, limit)
    return _HEADER.pack(length) + bytes(payload)


def decode_frame_length(source: BinaryIO | int, *, max_frame_bytes: int = MAX_FRAME_BYTES) -> int:
    (length,) = _HEADER.unpack(read_exact(source, HEADER_SIZE, header=True))
    if length > max_frame_bytes:
        raise FrameTooLarge(length, max_frame_bytes)
    return int(length)


def decode_frame_payload(source: BinaryIO | int, length: int) -> bytes:
    if length <= 0:
        return b""
    return read_exact(source, int(length))


def read_frame(source: BinaryIO | int, *, max_frame_bytes: int = MAX_FRAME_BYTES) -> bytes:
    """Read one complete frame body (header consumed, body returned)."""
    length = decode_frame_length(source, max_frame_bytes=max_frame_bytes)
    return decode_frame_payload(source, length)


__all__ = [
    "HEADER_SIZE",
    "MAX_FRAME_BYTES",
    "MAX_U32",
    "FrameTooLarge",
    "NativeMessagingError",
    "ShortRead",
    "decode_frame_length",
    "decode_frame_payload",
    "encode_frame",
    "read_exact",
    "read_frame",
]
