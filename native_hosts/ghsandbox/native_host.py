"""Chrome Native Messaging host for ghsandbox.

This process is launched by Chrome when the extension calls `connectNative()`
or `sendNativeMessage()`. A `sandbox` message clones the repository into a
throwaway directory and opens a terminal there.
"""

from __future__ import annotations

import argparse
import logging
import sys
import threading
from pathlib import Path
from typing import BinaryIO

from .config import VERSION, HostConfig
from .native_dispatcher import NativeDispatcher
from .native_writer import WriterGate

logger = logging.getLogger("ghsandbox.host")

_LOG_FORMAT = "%(asctime)s %(levelname)s %(message)s"


def configure_logging(config: HostConfig) -> None:
    # Native messaging requires strict stdout framing. Never write logs to stdout.
    if config.debug:
        log_path = Path(config.log_path)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        logging.basicConfig(level=logging.DEBUG, format=_LOG_FORMAT, filename=str(log_path), force=True)
    else:
        logging.basicConfig(level=logging.WARNING, format=_LOG_FORMAT, stream=sys.stderr, force=True)


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="ghsandbox-host", description="ghsandbox native messaging host")
    parser.add_argument("--debug", action="store_true", default=None, help="debug logging to GHSANDBOX_LOG")
    parser.add_argument("--version", action="version", version=VERSION)
    # Chrome passes the caller origin, plus --parent-window=<hwnd> on Windows.
    parser.add_argument("origin", nargs="*", help=argparse.SUPPRESS)
    args, _unknown = parser.parse_known_args(argv)
    return args


def run(
    argv: list[str] | None = None,
    *,
    source: BinaryIO | int | None = None,
    sink: BinaryIO | None = None,
) -> int:
    args = _parse_args(argv)
    try:
        config = HostConfig.from_env(debug=args.debug)
    except ValueError as exc:
        logging.basicConfig(level=logging.WARNING, format=_LOG_FORMAT, stream=sys.stderr)
        logger.error("config_invalid error=%s", exc)
        return 1
    configure_logging(config)
    logger.info("starting version=%s origin=%s", VERSION, " ".join(args.origin) or "-")

    # Raw fd: a reader thread blocked in BufferedReader.read() can abort interpreter shutdown.
    if source is None:
        source = sys.stdin.fileno()
    gate = WriterGate(sink if sink is not None else sys.stdout.buffer, lock=threading.Lock())
    dispatcher = NativeDispatcher(config, source=source, gate=gate)
    try:
        return dispatcher.run()
    except Exception:
        logger.exception("host_crashed")
        return 1


def main() -> None:
    try:
        raise SystemExit(run())
    except KeyboardInterrupt:
        raise SystemExit(0) from None


if __name__ == "__main__":
    main()
