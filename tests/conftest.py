from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest


def pytest_sessionstart(session):  # type: ignore[override]
    root = Path(__file__).resolve().parents[1]
    src = root / "src"
    if str(src) not in sys.path:
        sys.path.insert(0, str(src))
    # Ensure console scripts load in editable style as well
    os.environ.setdefault("PYTHONPATH", str(src))
    # Keep test runs out of ~/.projectdeck/logs
    os.environ.setdefault("PROJECTDECK_LOG_DISABLE_FILE", "1")


@pytest.fixture(scope="session")
def anyio_backend():
    """Configure anyio to use asyncio backend only.

    The reconciler and the git service are written against asyncio
    (asyncio.gather, asyncio.to_thread) and do not run under trio.
    """
    return "asyncio"
