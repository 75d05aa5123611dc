"""Test bootstrap for k6-runner."""

from __future__ import annotations

import csv
import sys
from pathlib import Path
from typing import Any

import pytest
import structlog

APPS_DIR = Path(__file__).resolve().parents[2]
for package in ["k6-runner", "mock-server"]:
    package_root = APPS_DIR / package
    path_str = str(package_root)
    if path_str not in sys.path:
        sys.path.insert(0, path_str)

COLUMNS = [
    "scenario",
    "testName",
    "description",
    "method",
    "url",
    "queryParams",
    "body",
    "headers",
    "tags",
    "extract",
    "checks",
    "thresholds",
    "executorOptions",
]


@pytest.fixture(autouse=True)
def _reset_structlog():
    yield
    structlog.reset_defaults()


@pytest.fixture
def logger():
    return structlog.get_logger("tests")


@pytest.fixture
def write_csv(tmp_path: Path):
    def _write(rows: list[dict[str, Any]], name: str = "cases.csv") -> Path:
        path = tmp_path / name
        with path.open("w", encoding="utf-8", newline="") as handle:
            writer = csv.DictWriter(handle, fieldnames=COLUMNS)
            writer.writeheader()
            for row in rows:
                writer.writerow(row)
        return path

    return _write
