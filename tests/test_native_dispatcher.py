from __future__ import annotations

import io
from dataclasses import dataclass, field
from pathlib import Path


@dataclass
class _FakePlan:
    path: str


@dataclass
class _FakeOrchestrator:
    fail_with: Exception | None = None
    calls: list[str] = field(default_factory=list)

    def open_repo_sandbox(self, repo):
        self.calls.append(repo.url)
        if self.fail_with is not None:
            raise self.fail_with
        return _FakePlan(path=f"/tmp/ghsandbox/1{repo.url.split('github.com')[-1].replace('/', '_')}")


def _frames(*items: tuple[str, object]) -> io.BytesIO:
    from native_hosts.ghsandbox.native_envelope import encode_envelope

    return io.BytesIO(b"".join(encode_envelope(t, p) for t, p in items))


def _statuses(raw: bytes) -> list[dict]:
    from native_hosts.ghsandbox.native_stream import open_stream

    out = []
    for env in open_stream(io.BytesIO(raw)):
        assert env.type == "status"
        out.append(env.decode_payload(dict))
    return out


def _dispatcher(tmp_path: Path, source, sink, orchestrator):
    from native_hosts.ghsandbox.config import HostConfig
    from native_hosts.ghsandbox.native_dispatcher import NativeDispatcher
    from native_hosts.ghsandbox.native_writer import WriterGate

    config = HostConfig(sandboxes_dir=str(tmp_path), log_path=str(tmp_path / "log"))
    return NativeDispatcher(config, source=source, gate=WriterGate(sink), orchestrator=orchestrator)


def test_sandbox_message_sends_accepted_then_done(tmp_path: Path) -> None:
    sink = io.BytesIO()
    orch = _FakeOrchestrator()
    source = _frames(("sandbox", {"url": "https://github.com/owner/repo"}))

    assert _dispatcher(tmp_path, source, sink, orch).run() == 0

    assert orch.calls == ["https://github.com/owner/repo"]
    assert _statuses(sink.getvalue()) == [
        {"state": "accepted", "url": "https://github.com/owner/repo"},
        {"state": "done", "url": "https://github.com/owner/repo", "path": "/tmp/ghsandbox/1_owner_repo"},
    ]


def test_invalid_payload_reports_failure_and_keeps_reading(tmp_path: Path) -> None:
    sink = io.BytesIO()
    orch = _FakeOrchestrator()
    source = _frames(("sandbox", {"href": "nope"}), ("sandbox", {"url": "https://github.com/a/b"}))

    _dispatcher(tmp_path, source, sink, orch).run()

    statuses = _statuses(sink.getvalue())
    assert statuses[0]["state"] == "failed"
    assert "missing field 'url'" in statuses[0]["error"]
    assert [s["state"] for s in statuses[1:]] == ["accepted", "done"]
    assert orch.calls == ["https://github.com/a/b"]


def test_orchestrator_failure_is_reported(tmp_path: Path) -> None:
    from native_hosts.ghsandbox.sandbox import SandboxError

    sink = io.BytesIO()
    orch = _FakeOrchestrator(fail_with=SandboxError("git clone failed (128): fatal"))
    source = _frames(("sandbox", {"url": "https://github.com/a/b"}))

    _dispatcher(tmp_path, source, sink, orch).run()

    assert _statuses(sink.getvalue()) == [
        {"state": "accepted", "url": "https://github.com/a/b"},
        {"state": "failed", "url": "https://github.com/a/b", "error": "git clone failed (128): fatal"},
    ]


def test_unmatched_type_stops_host(tmp_path: Path) -> None:
    sink = io.BytesIO()
    orch = _FakeOrchestrator()
    source = _frames(("open", {"url": "https://github.com/a/b"}), ("sandbox", {"url": "https://github.com/a/b"}))

    d = _dispatcher(tmp_path, source, sink, orch)
    assert d.run() == 0

    assert orch.calls == []
    assert sink.getvalue() == b""
    assert d.stream is not None and d.stream.closed


def test_custom_handler_registration(tmp_path: Path) -> None:
    sink = io.BytesIO()
    seen: list[object] = []
    source = _frames(("ping", 1), ("ping", 2), ("bye", None))

    d = _dispatcher(tmp_path, source, sink, _FakeOrchestrator())
    d.register("ping", lambda env: seen.append(env.decode_payload()) is None)
    d.run()

    assert seen == [1, 2]


def test_write_failure_does_not_abort_sandbox(tmp_path: Path) -> None:
    orch = _FakeOrchestrator()
    closed = io.BytesIO()
    closed.close()
    source = _frames(("sandbox", {"url": "https://github.com/a/b"}))

    assert _dispatcher(tmp_path, source, closed, orch).run() == 0
    assert orch.calls == ["https://github.com/a/b"]


def test_oversized_url_is_clipped_in_status_replies(tmp_path: Path) -> None:
    from native_hosts.ghsandbox.native_dispatcher import MAX_ECHO_CHARS

    url = "https://github.com/a/b?" + "x" * (2 * 1024 * 1024)
    sink = io.BytesIO()
    orch = _FakeOrchestrator()

    assert _dispatcher(tmp_path, _frames(("sandbox", {"url": url})), sink, orch).run() == 0

    statuses = _statuses(sink.getvalue())
    assert [s["state"] for s in statuses] == ["accepted", "done"]
    assert statuses[0]["url"].startswith("https://github.com/a/b?xxx")
    assert len(statuses[0]["url"]) <= MAX_ECHO_CHARS + 3
    assert orch.calls == [url]


def test_lone_surrogate_in_url_does_not_stop_host(tmp_path: Path) -> None:
    import struct

    body = b'{"type":"sandbox","payload":{"url":"https://github.com/a/b\\ud800"}}'
    tail = _frames(("sandbox", {"url": "https://github.com/c/d"})).read()
    source = io.BytesIO(struct.pack("<I", len(body)) + body + tail)
    sink = io.BytesIO()
    orch = _FakeOrchestrator()

    assert _dispatcher(tmp_path, source, sink, orch).run() == 0

    statuses = _statuses(sink.getvalue())
    assert [s["state"] for s in statuses] == ["accepted", "done", "accepted", "done"]
    assert statuses[0]["url"] == "https://github.com/a/b\\ud800"
    assert orch.calls[1] == "https://github.com/c/d"


def test_status_encoding_failure_is_logged_not_raised(tmp_path: Path) -> None:
    from native_hosts.ghsandbox.config import HostConfig
    from native_hosts.ghsandbox.native_dispatcher import NativeDispatcher
    from native_hosts.ghsandbox.native_writer import WriterGate

    sink = io.BytesIO()
    orch = _FakeOrchestrator()
    config = HostConfig(sandboxes_dir=str(tmp_path), log_path=str(tmp_path / "log"))
    source = _frames(("sandbox", {"url": "https://github.com/a/b"}))
    d = NativeDispatcher(config, source=source, gate=WriterGate(sink, max_frame_bytes=8), orchestrator=orch)

    assert d.run() == 0
    assert orch.calls == ["https://github.com/a/b"]
    assert sink.getvalue() == b""
