from __future__ import annotations

import argparse
import contextlib
import json
import logging
import os
import re
import sys
from dataclasses import dataclass, field
from pathlib import Path

from .config import HostConfig

HOST_NAME = "com.github.ghsandbox"
_LOGGER = logging.getLogger("ghsandbox.native_host_installer")
_EXT_ID_RE = re.compile(r"^[a-p]{32}$")


@dataclass(frozen=True, slots=True)
class InstallTarget:
    label: str
    path: Path


@dataclass(slots=True)
class InstallReport:
    ok: bool = False
    wrote: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    manifest_path: str | None = None


def _repo_root() -> Path:
    return Path(__file__).resolve().parents[2]


def _normalize_ext_id(raw: str) -> str | None:
    candidate = str(raw or "").strip().lower()
    if _EXT_ID_RE.match(candidate):
        return candidate
    return None


def allowed_origins(extension_ids: list[str]) -> list[str]:
    out: list[str] = []
    for raw in extension_ids:
        norm = _normalize_ext_id(raw)
        if norm and f"chrome-extension://{norm}/" not in out:
            out.append(f"chrome-extension://{norm}/")
    return out


def _wrapper_path(root: Path, *, platform: str) -> Path:
    base = root / ".native-host"
    return base / ("ghsandbox-native-host.cmd" if platform == "win32" else "ghsandbox-native-host")


def _write_wrapper(path: Path, *, python_exe: str, root: Path, platform: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    py = str(python_exe)
    root_str = str(root)
    if platform == "win32":
        content = "\n".join(
            [
                "@echo off",
                "setlocal",
                f'set "GHSANDBOX_ROOT={root_str}"',
                'set "PYTHONPATH=%GHSANDBOX_ROOT%;%PYTHONPATH%"',
                f'"{py}" -m native_hosts.ghsandbox.native_host %*',
                "",
            ]
        )
    else:
        content = "\n".join(
            [
                "#!/usr/bin/env bash",
                "set -euo pipefail",
                f'ROOT="{root_str}"',
                'export PYTHONPATH="$ROOT:${PYTHONPATH:-}"',
                f'exec "{py}" -m native_hosts.ghsandbox.native_host "$@"',
                "",
            ]
        )
    path.write_text(content, encoding="utf-8")
    if platform != "win32":
        path.chmod(0o755)


def _targets_for_platform(platform: str, home: Path) -> list[InstallTarget]:
    if platform == "darwin":
        base = home / "Library" / "Application Support"
        return [
            InstallTarget("chrome", base / "Google" / "Chrome" / "NativeMessagingHosts"),
            InstallTarget("chrome-beta", base / "Google" / "Chrome Beta" / "NativeMessagingHosts"),
            InstallTarget("chrome-canary", base / "Google" / "Chrome Canary" / "NativeMessagingHosts"),
            InstallTarget("chromium", base / "Chromium" / "NativeMessagingHosts"),
            InstallTarget("brave", base / "BraveSoftware" / "Brave-Browser" / "NativeMessagingHosts"),
            InstallTarget("edge", base / "Microsoft Edge" / "NativeMessagingHosts"),
        ]
    if platform.startswith("linux"):
        cfg = home / ".config"
        return [
            InstallTarget("chrome", cfg / "google-chrome" / "NativeMessagingHosts"),
            InstallTarget("chrome-beta", cfg / "google-chrome-beta" / "NativeMessagingHosts"),
            InstallTarget("chrome-unstable", cfg / "google-chrome-unstable" / "NativeMessagingHosts"),
            InstallTarget("chromium", cfg / "chromium" / "NativeMessagingHosts"),
            InstallTarget("brave", cfg / "BraveSoftware" / "Brave-Browser" / "NativeMessagingHosts"),
            InstallTarget("edge", cfg / "microsoft-edge" / "NativeMessagingHosts"),
        ]
    return []


def _windows_manifest_path(home: Path) -> Path:
    local = os.environ.get("LOCALAPPDATA")
    base = Path(local) if local else (home / "AppData" / "Local")
    return base / "ghsandbox" / "NativeMessagingHosts" / f"{HOST_NAME}.json"


def _windows_registry_targets() -> list[tuple[str, str]]:
    return [
        ("chrome", r"Software\Google\Chrome\NativeMessagingHosts"),
        ("chromium", r"Software\Chromium\NativeMessagingHosts"),
        ("brave", r"Software\BraveSoftware\Brave-Browser\NativeMessagingHosts"),
        ("edge", r"Software\Microsoft\Edge\NativeMessagingHosts"),
    ]


def _write_manifest(path: Path, manifest: dict[str, object]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(manifest, indent=2) + "\n", encoding="utf-8")
    if os.name != "nt":
        with contextlib.suppress(Exception):
            path.chmod(0o644)


def build_host_manifest(wrapper: Path, extension_ids: list[str]) -> dict[str, object]:
    return {
        "name": HOST_NAME,
        "description": "ghsandbox: open GitHub repositories in a throwaway terminal sandbox.",
        "path": str(wrapper),
        "type": "stdio",
        "allowed_origins": allowed_origins(extension_ids),
    }


def _install_windows(report: InstallReport, manifest: dict[str, object], home: Path) -> InstallReport:
    manifest_file = _windows_manifest_path(home)
    try:
        _write_manifest(manifest_file, manifest)
        report.manifest_path = str(manifest_file)
    except Exception as exc:  # noqa: BLE001
        report.errors.append(f"failed to write native host manifest: {exc}")
        return report

    try:
        import winreg  # type: ignore[import-not-found]
    except Exception as exc:  # noqa: BLE001
        report.errors.append(f"winreg unavailable: {exc}")
        return report

    for label, reg_path in _windows_registry_targets():
        try:
            full_path = f"{reg_path}\\{HOST_NAME}"
            with winreg.CreateKey(winreg.HKEY_CURRENT_USER, full_path) as key_handle:
                winreg.SetValueEx(key_handle, "", 0, winreg.REG_SZ, str(manifest_file))
            report.wrote.append(f"{label}:HKCU\\{full_path}")
        except Exception as exc:  # noqa: BLE001
            report.errors.append(f"{label}: registry write failed: {exc}")

    report.ok = bool(report.wrote)
    return report


def install_native_host(
    *,
    extension_ids: list[str] | None = None,
    root: Path | None = None,
    python_exe: str | None = None,
    platform: str | None = None,
    home: Path | None = None,
) -> InstallReport:
    report = InstallReport()
    root = root or _repo_root()
    platform = platform or sys.platform
    home = home or Path.home()
    python_exe = python_exe or sys.executable
    if extension_ids is None:
        extension_ids = HostConfig.from_env().extension_ids

    if not allowed_origins(extension_ids):
        report.errors.append("no valid extension id (pass --extension-id or set GHSANDBOX_EXTENSION_IDS)")
        return report

    wrapper = _wrapper_path(root, platform=platform)
    try:
        _write_wrapper(wrapper, python_exe=python_exe, root=root, platform=platform)
    except Exception as exc:  # noqa: BLE001
        report.errors.append(f"failed to create native host wrapper: {exc}")
        return report

    manifest = build_host_manifest(wrapper, extension_ids)
    if platform == "win32":
        return _install_windows(report, manifest, home)

    targets = _targets_for_platform(platform, home)
    if not targets:
        report.errors.append(f"unsupported platform for installer: {platform}")
        return report

    out_name = f"{HOST_NAME}.json"
    for target in targets:
        try:
            out_path = target.path / out_name
            _write_manifest(out_path, manifest)
            report.wrote.append(f"{target.label}:{out_path}")
            if report.manifest_path is None:
                report.manifest_path = str(out_path)
        except Exception as exc:  # noqa: BLE001
            report.errors.append(f"{target.label}: failed to install: {exc}")

    report.ok = bool(report.wrote)
    return report


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="ghsandbox-install", description="Install the ghsandbox native host manifest")
    parser.add_argument("--extension-id", action="append", default=[], help="allowed extension id (repeatable)")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
    ids = list(args.extension_id) or HostConfig.from_env().extension_ids
    report = install_native_host(extension_ids=ids)
    if report.ok:
        _LOGGER.info("native_host_install_ok targets=%s", report.wrote)
    else:
        _LOGGER.warning("native_host_install_failed errors=%s", report.errors)
    for err in report.errors:
        print(f"error: {err}", file=sys.stderr)
    for line in report.wrote:
        print(line)
    return 0 if report.ok else 1


__all__ = ["HOST_NAME", "InstallReport", "InstallTarget", "install_native_host", "main"]


if __name__ == "__main__":
    raise SystemExit(main())
