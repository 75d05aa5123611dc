"""Data source loading: spreadsheet or CSV rows as raw mappings."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterator
import csv
import zipfile

import openpyxl
from openpyxl.utils.exceptions import InvalidFileException

from .errors import DataSourceError, UnsupportedFormatError

SPREADSHEET_SUFFIXES = {".xlsx", ".xlsm"}
CSV_SUFFIXES = {".csv"}


@dataclass(frozen=True)
class RawRow:
    """One data row before validation. ``index`` is 1-based, header excluded."""

    index: int
    values: dict[str, Any]

    @property
    def is_blank(self) -> bool:
        return all(_is_empty(value) for value in self.values.values())


def read_rows(path: Path) -> Iterator[RawRow]:
    """Yield raw rows from an XLSX (first sheet) or CSV data source.

    The suffix is checked eagerly so unsupported files fail before iteration
    starts; rows themselves are produced lazily. Blank rows are skipped but keep
    their position in the numbering.
    """

    suffix = path.suffix.lower()
    if suffix in SPREADSHEET_SUFFIXES:
        rows = _read_spreadsheet(path)
    elif suffix in CSV_SUFFIXES:
        rows = _read_csv(path)
    else:
        raise UnsupportedFormatError(path)
    if not path.is_file():
        raise DataSourceError(path, "file does not exist")
    return (row for row in rows if not row.is_blank)


def _read_csv(path: Path) -> Iterator[RawRow]:
    try:
        handle = path.open("r", encoding="utf-8-sig", newline="")
    except OSError as exc:
        raise DataSourceError(path, str(exc)) from exc
    with handle:
        reader = csv.DictReader(handle)
        try:
            for index, record in enumerate(reader, start=1):
                # Cells beyond the header row land under the None key.
                values = {key.strip(): value for key, value in record.items() if key is not None}
                yield RawRow(index=index, values=values)
        except (csv.Error, UnicodeDecodeError) as exc:
            raise DataSourceError(path, f"malformed CSV near line {reader.line_num}: {exc}") from exc


def _read_spreadsheet(path: Path) -> Iterator[RawRow]:
    try:
        workbook = openpyxl.load_workbook(path, read_only=True, data_only=True)
    except (OSError, ValueError, KeyError, zipfile.BadZipFile, InvalidFileException) as exc:
        # Corrupt workbooks surface as zip, key or value errors.
        raise DataSourceError(path, str(exc)) from exc
    try:
        sheet = workbook.worksheets[0]
        rows = sheet.iter_rows(values_only=True)
        header = next(rows, None)
        if header is None:
            return
        columns = [str(cell).strip() if cell is not None else "" for cell in header]
        for index, cells in enumerate(rows, start=1):
            values = {
                column: cell
                for column, cell in zip(columns, cells)
                if column
            }
            yield RawRow(index=index, values=values)
    finally:
        workbook.close()


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    return False
