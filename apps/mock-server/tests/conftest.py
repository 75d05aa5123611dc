"""Test bootstrap for mock-server."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest
import structlog

APPS_DIR = Path(__file__).resolve().parents[2]
for package in ["mock-server", "k6-runner"]:
    package_root = APPS_DIR / package
    path_str = str(package_root)
    if path_str not in sys.path:
        sys.path.insert(0, path_str)


@pytest.fixture(autouse=True)
def _reset_structlog():
    yield
    structlog.reset_defaults()
