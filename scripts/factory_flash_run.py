#!/usr/bin/env python3
"""Boot-time wrapper for ``factory-flash`` when the package is not installed.

Copy the repository to the USB image (for example ``/opt/factory-flash``) and
point a oneshot systemd unit at this script.
"""

from __future__ import annotations

import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parent.parent

if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from factory_flash.cli import main  # noqa: E402

if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
