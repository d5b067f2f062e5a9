from __future__ import annotations

import re
import time
from pathlib import Path

_UNSAFE_NAME_RE = re.compile(r"[^a-zA-Z0-9_.-]+")


def sandboxes_root(raw: str) -> Path:
    p = Path(raw).expanduser()
    p.mkdir(parents=True, exist_ok=True)
    return p


def sandbox_dir_name(url_path: str, *, now_ns: int | None = None, max_len: int = 120) -> str:
    """`<ns timestamp><url path with "/" replaced by "_">`, e.g. `1700000000000000000_owner_repo`."""
    ts = int(now_ns if now_ns is not None else time.time_ns())
    suffix = str(url_path or "").replace("/", "_")
    suffix = _UNSAFE_NAME_RE.sub("-", suffix)
    return f"{ts}{suffix}"[: max(24, int(max_len))]


def sandbox_path(root: str, url_path: str, *, now_ns: int | None = None) -> Path:
    return sandboxes_root(root) / sandbox_dir_name(url_path, now_ns=now_ns)


__all__ = ["sandbox_dir_name", "sandbox_path", "sandboxes_root"]
