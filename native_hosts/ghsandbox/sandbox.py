from __future__ import annotations

import logging
import shutil
import subprocess
import urllib.parse
from dataclasses import dataclass
from pathlib import Path

from .config import HostConfig
from .sandbox_paths import sandbox_path

_LOGGER = logging.getLogger("ghsandbox.sandbox")


class SandboxError(Exception):
    pass


@dataclass(slots=True)
class RepoInfo:
    url: str


@dataclass(frozen=True, slots=True)
class SandboxPlan:
    repo_url: str
    clone_url: str
    path: str
    clone_command: list[str]
    terminal_command: list[str]
    remove: bool


def normalize_repo_url(raw: str) -> str:
    """Reduce a repository page URL to its clone URL (`scheme://host/owner/repo`).

    Query and fragment are dropped; deeper paths such as `/owner/repo/tree/main`
    are cut back to the first two segments.
    """
    text = str(raw or "").strip()
    try:
        text.encode("utf-8")
    except UnicodeEncodeError as exc:
        raise SandboxError(f"invalid repo url: {raw!r}") from exc
    parsed = urllib.parse.urlsplit(text)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise SandboxError(f"invalid repo url: {raw!r}")
    segs = parsed.path.split("/")
    if len(segs) < 3 or not segs[1] or not segs[2]:
        raise SandboxError(f"invalid repo url: {raw!r}")
    path = "/".join(segs[:3])
    return urllib.parse.urlunsplit((parsed.scheme, parsed.netloc, path, "", ""))


def build_terminal_command(template: list[str], working_dir: str) -> list[str]:
    if not template:
        raise SandboxError("no terminal command for this platform (set GHSANDBOX_TERMINAL)")
    cmd = [part.replace("{path}", working_dir) for part in template]
    if not any("{path}" in part for part in template):
        cmd.append(working_dir)
    return cmd


def build_sandbox_plan(raw_url: str, config: HostConfig, *, now_ns: int | None = None) -> SandboxPlan:
    clone_url = normalize_repo_url(raw_url)
    url_path = urllib.parse.urlsplit(clone_url).path
    try:
        path = str(sandbox_path(config.sandboxes_dir, url_path, now_ns=now_ns))
    except OSError as exc:
        raise SandboxError(f"cannot create sandboxes dir {config.sandboxes_dir}: {exc}") from exc
    return SandboxPlan(
        repo_url=str(raw_url),
        clone_url=clone_url,
        path=path,
        clone_command=[config.git_binary, "clone", clone_url, path],
        terminal_command=build_terminal_command(config.terminal_command, path),
        remove=not config.keep_sandbox,
    )


def _tail(raw: bytes | str | None, limit: int = 400) -> str:
    if not raw:
        return ""
    text = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else raw
    return text.strip()[-limit:]


def clone_repo(plan: SandboxPlan) -> None:
    _LOGGER.info("sandbox_clone url=%s path=%s", plan.clone_url, plan.path)
    try:
        proc = subprocess.run(plan.clone_command, capture_output=True, stdin=subprocess.DEVNULL, check=False)
    except OSError as exc:
        raise SandboxError(f"failed to run git: {exc}") from exc
    if proc.returncode != 0:
        raise SandboxError(f"git clone failed ({proc.returncode}): {_tail(proc.stderr)}")


def open_terminal(plan: SandboxPlan) -> None:
    """Run the terminal and wait for it to exit."""
    _LOGGER.info("sandbox_terminal cmd=%s", plan.terminal_command)
    try:
        proc = subprocess.run(
            plan.terminal_command,
            cwd=plan.path,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.PIPE,
            check=False,
        )
    except OSError as exc:
        raise SandboxError(f"failed to start terminal: {exc}") from exc
    if proc.returncode != 0:
        raise SandboxError(f"terminal exited with {proc.returncode}: {_tail(proc.stderr)}")


def remove_sandbox(path: str) -> bool:
    try:
        shutil.rmtree(path)
    except FileNotFoundError:
        return True
    except OSError as exc:
        _LOGGER.warning("sandbox_remove_failed path=%s error=%s", path, exc)
        return False
    _LOGGER.info("sandbox_removed path=%s", path)
    return True


def create_repo_sandbox(plan: SandboxPlan) -> None:
    try:
        clone_repo(plan)
    except SandboxError:
        if plan.remove:
            remove_sandbox(plan.path)
        raise
    try:
        open_terminal(plan)
    finally:
        if plan.remove:
            remove_sandbox(plan.path)


class SandboxOrchestrator:
    def __init__(self, config: HostConfig) -> None:
        self.config = config

    def open_repo_sandbox(self, repo: RepoInfo) -> SandboxPlan:
        plan = build_sandbox_plan(repo.url, self.config)
        create_repo_sandbox(plan)
        return plan


__all__ = [
    "RepoInfo",
    "SandboxError",
    "SandboxOrchestrator",
    "SandboxPlan",
    "build_sandbox_plan",
    "build_terminal_command",
    "clone_repo",
    "create_repo_sandbox",
    "normalize_repo_url",
    "open_terminal",
    "remove_sandbox",
]
