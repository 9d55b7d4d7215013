"""Start coverage in interpreters spawned by the test suite.

``tests/conftest.py`` exports ``COVERAGE_PROCESS_START`` so that
``scripts/factory_flash_run.py`` runs launched through ``subprocess`` are measured
alongside the in-process tests.
"""

import os
from pathlib import Path

_config = os.getenv("COVERAGE_PROCESS_START")

if _config and Path(_config).is_file():
    try:
        import coverage
    except ImportError:  # pragma: no cover - test extra not installed
        coverage = None
    if coverage is not None:
        coverage.process_startup()
