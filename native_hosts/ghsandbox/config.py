from __future__ import annotations

import os
import sys
import tempfile
from dataclasses import dataclass, field
from pathlib import Path

from .native_framing import MAX_FRAME_BYTES

VERSION = "0.0.1"

_TRUTHY = {"1", "true", "yes", "on"}


def expand_path(raw: str) -> str:
    return str(Path(raw).expanduser())


def env_flag(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in _TRUTHY


def default_sandboxes_dir() -> str:
    return str(Path(tempfile.gettempdir()) / "ghsandbox")


def default_terminal_command(platform: str | None = None) -> list[str]:
    platform = platform or sys.platform
    if platform.startswith("linux"):
        # --disable-factory keeps the process alive until the window closes.
        return ["gnome-terminal", "--disable-factory", "--working-directory", "{path}"]
    if platform == "darwin":
        return ["open", "-W", "-n", "-a", "Terminal", "{path}"]
    return []


@dataclass
class HostConfig:
    sandboxes_dir: str
    log_path: str
    debug: bool = False
    keep_sandbox: bool = False
    git_binary: str = "git"
    terminal_command: list[str] = field(default_factory=list)
    max_frame_bytes: int = MAX_FRAME_BYTES
    extension_ids: list[str] = field(default_factory=list)

    @classmethod
    def from_env(cls, *, debug: bool | None = None) -> HostConfig:
        sandboxes_dir = expand_path(os.environ.get("GHSANDBOX_DIR") or default_sandboxes_dir())
        log_path = expand_path(os.environ.get("GHSANDBOX_LOG") or str(Path(sandboxes_dir) / "ghsandbox.log"))
        terminal_raw = os.environ.get("GHSANDBOX_TERMINAL", "")
        terminal = [part.strip() for part in terminal_raw.split(",") if part.strip()]
        ids_raw = os.environ.get("GHSANDBOX_EXTENSION_IDS", "")
        extension_ids = [s.strip() for s in ids_raw.split(",") if s.strip()]
        max_frame_raw = os.environ.get("GHSANDBOX_MAX_FRAME_BYTES") or str(MAX_FRAME_BYTES)
        try:
            max_frame = int(max_frame_raw)
        except ValueError as exc:
            raise ValueError(f"GHSANDBOX_MAX_FRAME_BYTES must be an integer, got {max_frame_raw!r}") from exc
        return cls(
            sandboxes_dir=sandboxes_dir,
            log_path=log_path,
            debug=env_flag("GHSANDBOX_DEBUG") if debug is None else bool(debug),
            keep_sandbox=env_flag("GHSANDBOX_KEEP"),
            git_binary=os.environ.get("GHSANDBOX_GIT") or "git",
            terminal_command=terminal or default_terminal_command(),
            max_frame_bytes=max_frame if max_frame > 0 else MAX_FRAME_BYTES,
            extension_ids=extension_ids,
        )
