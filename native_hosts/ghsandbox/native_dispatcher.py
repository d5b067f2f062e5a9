"""Consumes the inbound message stream and routes envelopes by `type`."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Any, BinaryIO

from .config import HostConfig
from .native_envelope import Envelope, SerializationError
from .native_framing import NativeMessagingError
from .native_stream import MessageStream, open_stream
from .native_writer import WriterGate
from .sandbox import RepoInfo, SandboxError, SandboxOrchestrator

_LOGGER = logging.getLogger("ghsandbox.native_dispatcher")

SANDBOX_MESSAGE = "sandbox"
STATUS_MESSAGE = "status"

# Echoed request fields are clipped so a status always fits the outbound frame limit.
MAX_ECHO_CHARS = 4096

# Handler returns False to stop the host.
HandlerFunc = Callable[[Envelope], bool]


def _echo(value: Any) -> Any:
    if not isinstance(value, str):
        return value
    if len(value) > MAX_ECHO_CHARS:
        value = value[:MAX_ECHO_CHARS] + "..."
    return value.encode("utf-8", errors="backslashreplace").decode("utf-8")


class NativeDispatcher:
    """Reads envelopes until the stream closes and runs one handler per type.

    Any `type` without a handler stops the host.
    """

    def __init__(
        self,
        config: HostConfig,
        *,
        source: BinaryIO | int,
        gate: WriterGate,
        orchestrator: SandboxOrchestrator | None = None,
        cancel: threading.Event | None = None,
    ) -> None:
        self.config = config
        self._source = source
        self._gate = gate
        self._orchestrator = orchestrator or SandboxOrchestrator(config)
        self._cancel = cancel if cancel is not None else threading.Event()
        self._handlers: dict[str, HandlerFunc] = {SANDBOX_MESSAGE: self._handle_sandbox}
        self.stream: MessageStream | None = None

    def register(self, message_type: str, handler: HandlerFunc) -> None:
        self._handlers[message_type] = handler

    def _send_status(self, state: str, **fields: Any) -> bool:
        payload = {"state": state, **{k: _echo(v) for k, v in fields.items()}}
        try:
            self._gate.send_envelope(STATUS_MESSAGE, payload)
        except NativeMessagingError as exc:
            _LOGGER.warning("status_send_failed state=%s error=%s", state, exc)
            return False
        return True

    def _handle_sandbox(self, envelope: Envelope) -> bool:
        try:
            repo = envelope.decode_payload(RepoInfo)
        except SerializationError as exc:
            _LOGGER.warning("sandbox_payload_invalid payload=%s error=%s", envelope.payload_json[:200], exc)
            self._send_status("failed", url=None, error=str(exc))
            return True

        self._send_status("accepted", url=repo.url)
        try:
            plan = self._orchestrator.open_repo_sandbox(repo)
        except SandboxError as exc:
            _LOGGER.error("sandbox_failed url=%s error=%s", _echo(repo.url), _echo(str(exc)))
            self._send_status("failed", url=repo.url, error=str(exc))
            return True
        self._send_status("done", url=repo.url, path=plan.path)
        return True

    def dispatch(self, envelope: Envelope) -> bool:
        handler = self._handlers.get(envelope.type)
        if handler is None:
            _LOGGER.warning("no_action_matched type=%s", envelope.type)
            return False
        return handler(envelope)

    def run(self) -> int:
        _LOGGER.info("host_started")
        stream = open_stream(self._source, self._cancel, max_frame_bytes=self.config.max_frame_bytes)
        self.stream = stream
        try:
            for envelope in stream:
                _LOGGER.info("message_received type=%s", envelope.type)
                if not self.dispatch(envelope):
                    break
        finally:
            stream.cancel()
        _LOGGER.info("host_stopped delivered=%d skipped=%d", stream.delivered, stream.skipped)
        return 0


__all__ = ["SANDBOX_MESSAGE", "STATUS_MESSAGE", "HandlerFunc", "NativeDispatcher"]
