from __future__ import annotations

from pathlib import Path

import openpyxl
import pytest

from k6_runner.errors import DataSourceError, UnsupportedFormatError
from k6_runner.loader import read_rows


def test_csv_rows_are_numbered_and_blank_rows_skipped(write_csv) -> None:
    path = write_csv(
        [
            {"testName": "first", "method": "GET", "url": "http://localhost/a"},
            {},
            {"testName": "third", "method": "post", "url": "http://localhost/c"},
        ]
    )

    rows = list(read_rows(path))

    assert [row.index for row in rows] == [1, 3]
    assert rows[0].values["testName"] == "first"
    assert rows[1].values["method"] == "post"


def test_csv_with_byte_order_mark(tmp_path: Path) -> None:
    path = tmp_path / "bom.csv"
    path.write_text("\ufefftestName,method,url\nping,GET,http://localhost/\n", encoding="utf-8")

    rows = list(read_rows(path))

    assert rows[0].values == {"testName": "ping", "method": "GET", "url": "http://localhost/"}


def test_spreadsheet_reads_first_sheet(tmp_path: Path) -> None:
    path = tmp_path / "cases.xlsx"
    workbook = openpyxl.Workbook()
    sheet = workbook.active
    sheet.append(["scenario", "testName", "method", "url", "checks"])
    sheet.append(["login", "Login", "POST", "http://localhost/login", '[{"type":"statusCode","expected":200}]'])
    sheet.append([None, None, None, None, None])
    sheet.append([None, "Ping", "GET", "http://localhost/ping", None])
    workbook.create_sheet("ignored").append(["testName"])
    workbook.save(path)

    rows = list(read_rows(path))

    assert [row.index for row in rows] == [1, 3]
    assert rows[0].values["scenario"] == "login"
    assert rows[1].values["scenario"] is None
    assert rows[1].values["testName"] == "Ping"


def test_unsupported_suffix_fails_before_iteration(tmp_path: Path) -> None:
    path = tmp_path / "cases.json"
    path.write_text("[]", encoding="utf-8")

    with pytest.raises(UnsupportedFormatError) as excinfo:
        read_rows(path)

    assert ".json" in str(excinfo.value)


def test_missing_file_is_data_source_error(tmp_path: Path) -> None:
    with pytest.raises(DataSourceError, match="does not exist"):
        read_rows(tmp_path / "missing.csv")


def test_corrupt_workbook_is_data_source_error(tmp_path: Path) -> None:
    path = tmp_path / "broken.xlsx"
    path.write_bytes(b"this is not a zip archive")

    with pytest.raises(DataSourceError):
        list(read_rows(path))
