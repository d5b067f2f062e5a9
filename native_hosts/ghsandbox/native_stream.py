from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Iterator
from typing import BinaryIO

from .native_envelope import Envelope, SerializationError, decode_envelope
from .native_framing import MAX_FRAME_BYTES, FrameTooLarge, ShortRead

_LOGGER = logging.getLogger("ghsandbox.native_stream")


class MessageStream:
    """Ordered, cancellable stream of envelopes read from one input source.

    A single worker thread decodes frames one at a time and hands them over
    through a one-slot queue, so a slow consumer pauses further reads.

    - A malformed envelope (`SerializationError`) is logged and skipped.
    - End of input, a bad frame length, or an I/O error closes the stream for good.
    - `cancel()` stops new reads and delivery. A read already blocked on the
      source is not interrupted; the worker exits once it returns.
    """

    def __init__(
        self,
        source: BinaryIO | int,
        *,
        cancel: threading.Event | None = None,
        max_frame_bytes: int = MAX_FRAME_BYTES,
        poll_interval: float = 0.05,
        name: str = "ghsandbox-message-stream",
    ) -> None:
        self._source = source
        self._cancel = cancel if cancel is not None else threading.Event()
        self._max_frame_bytes = int(max_frame_bytes)
        self._poll_interval = max(0.001, float(poll_interval))
        self._name = name

        self._queue: queue.Queue[Envelope] = queue.Queue(maxsize=1)
        self._producer_done = threading.Event()
        self._closed = threading.Event()
        self._lock = threading.Lock()
        self._thread: threading.Thread | None = None

        self.error: BaseException | None = None
        self.delivered = 0
        self.skipped = 0

    # ─────────────────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────────────────

    def start(self) -> MessageStream:
        with self._lock:
            if self._thread is not None:
                return self
            t = threading.Thread(target=self._run, name=self._name, daemon=True)
            self._thread = t
        _LOGGER.debug("stream_open name=%s", self._name)
        t.start()
        return self

    def cancel(self) -> None:
        if not self._cancel.is_set():
            _LOGGER.debug("stream_cancel name=%s", self._name)
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    @property
    def closed(self) -> bool:
        if self._closed.is_set():
            return True
        if self._cancel.is_set() or (self._producer_done.is_set() and self._queue.empty()):
            self._close()
            return True
        return False

    def join(self, timeout: float | None = None) -> bool:
        t = self._thread
        if t is None:
            return True
        t.join(timeout=timeout)
        return not t.is_alive()

    def _close(self) -> None:
        if self._closed.is_set():
            return
        self._closed.set()
        _LOGGER.debug(
            "stream_closed name=%s delivered=%d skipped=%d error=%s",
            self._name,
            self.delivered,
            self.skipped,
            type(self.error).__name__ if self.error is not None else None,
        )

    def __enter__(self) -> MessageStream:
        return self.start()

    def __exit__(self, *exc_info: object) -> None:
        self.cancel()

    # ─────────────────────────────────────────────────────────────────────────
    # Producer
    # ─────────────────────────────────────────────────────────────────────────

    def _deliver(self, envelope: Envelope) -> bool:
        while not self._cancel.is_set():
            try:
                self._queue.put(envelope, timeout=self._poll_interval)
                return True
            except queue.Full:
                continue
        return False

    def _run(self) -> None:
        try:
            while not self._cancel.is_set():
                try:
                    envelope = decode_envelope(self._source, max_frame_bytes=self._max_frame_bytes)
                except SerializationError as exc:
                    self.skipped += 1
                    _LOGGER.warning("stream_decode_error name=%s error=%s", self._name, exc)
                    continue
                except ShortRead as exc:
                    self.error = exc
                    if exc.eof:
                        _LOGGER.info("stream_eof name=%s", self._name)
                    else:
                        _LOGGER.warning("stream_short_read name=%s error=%s", self._name, exc)
                    return
                except FrameTooLarge as exc:
                    # No way to resynchronize past a frame we refuse to read.
                    self.error = exc
                    _LOGGER.error("stream_frame_too_large name=%s error=%s", self._name, exc)
                    return
                except (OSError, ValueError) as exc:
                    self.error = exc
                    _LOGGER.error("stream_read_failed name=%s error=%s", self._name, exc)
                    return
                if not self._deliver(envelope):
                    return
        finally:
            self._producer_done.set()

    # ─────────────────────────────────────────────────────────────────────────
    # Consumer
    # ─────────────────────────────────────────────────────────────────────────

    def next_envelope(self, timeout: float | None = None) -> Envelope | None:
        """Block for the next envelope; None once the stream is closed or on timeout."""
        waited = 0.0
        while not self.closed:
            try:
                envelope = self._queue.get(timeout=self._poll_interval)
            except queue.Empty:
                waited += self._poll_interval
                if timeout is not None and waited >= timeout:
                    return None
                continue
            if self._cancel.is_set():
                self._close()
                return None
            self.delivered += 1
            return envelope
        return None

    def __iter__(self) -> Iterator[Envelope]:
        while True:
            envelope = self.next_envelope()
            if envelope is None:
                return
            yield envelope


def open_stream(
    source: BinaryIO | int,
    cancel: threading.Event | None = None,
    **kwargs,
) -> MessageStream:
    """Create and start a `MessageStream` over `source`."""
    return MessageStream(source, cancel=cancel, **kwargs).start()


__all__ = ["MessageStream", "open_stream"]
