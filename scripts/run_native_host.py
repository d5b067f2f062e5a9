#!/usr/bin/env python3
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

# stdout carries native messaging frames; diagnostics go to stderr only.
print(
    f"[ghsandbox] dir={os.environ.get('GHSANDBOX_DIR', 'auto')} | "
    f"git={os.environ.get('GHSANDBOX_GIT', 'git')} | "
    f"terminal={os.environ.get('GHSANDBOX_TERMINAL', 'auto')} | "
    f"keep={os.environ.get('GHSANDBOX_KEEP', '0')}",
    file=sys.stderr,
)

from native_hosts.ghsandbox.native_host import main  # noqa: E402

if __name__ == "__main__":
    main()
