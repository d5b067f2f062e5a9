from __future__ import annotations

import logging
import threading
from typing import Any, BinaryIO

from .native_envelope import Envelope, encode_envelope
from .native_framing import NativeMessagingError

_LOGGER = logging.getLogger("ghsandbox.native_writer")

# Chrome drops host -> extension messages above 1 MB.
MAX_OUTGOING_FRAME_BYTES = 1024 * 1024


class WriteError(NativeMessagingError, OSError):
    """Writing a frame to the output channel failed (possibly after a partial write)."""


class WriterGate:
    """Serializes whole frames onto one output channel.

    Every frame is encoded before the lock is taken, then written and flushed
    under the lock, so concurrent senders never interleave bytes. Gates that
    share a sink must share the lock.
    """

    def __init__(
        self,
        sink: BinaryIO,
        *,
        lock: threading.Lock | None = None,
        max_frame_bytes: int = MAX_OUTGOING_FRAME_BYTES,
    ) -> None:
        self._sink = sink
        self._lock = lock if lock is not None else threading.Lock()
        self._max_frame_bytes = int(max_frame_bytes)

    @property
    def lock(self) -> threading.Lock:
        return self._lock

    def send_envelope(
        self,
        message_type: str,
        payload: Any = None,
        *,
        payload_json: str | bytes | None = None,
    ) -> int:
        """Encode and write one envelope; returns the number of bytes written."""
        frame = encode_envelope(
            message_type,
            payload,
            payload_json=payload_json,
            max_frame_bytes=self._max_frame_bytes,
        )
        return self._write_frame(message_type, frame)

    def send(self, envelope: Envelope) -> int:
        return self._write_frame(envelope.type, envelope.pack(max_frame_bytes=self._max_frame_bytes))

    def _write_frame(self, message_type: str, frame: bytes) -> int:
        with self._lock:
            try:
                written = self._sink.write(frame)
                self._sink.flush()
            except (OSError, ValueError) as exc:
                # ValueError: write to a closed file object.
                raise WriteError(f"failed to write {message_type!r} frame: {exc}") from exc
            if written is not None and written != len(frame):
                raise WriteError(f"short write for {message_type!r} frame: {written}/{len(frame)} bytes")
        _LOGGER.debug("frame_sent type=%s bytes=%d", message_type, len(frame))
        return len(frame)


__all__ = ["MAX_OUTGOING_FRAME_BYTES", "WriteError", "WriterGate"]
