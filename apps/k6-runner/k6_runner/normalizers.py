"""Turn raw data source rows into validated TestCase objects."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Literal, Mapping
import json

import structlog
from pydantic import ValidationError

from .errors import RowValidationError
from .loader import RawRow
from .models import TestCase

# Columns that may carry JSON-encoded structures in a cell.
STRUCTURED_FIELDS = (
    "queryParams",
    "body",
    "headers",
    "tags",
    "extract",
    "checks",
    "thresholds",
    "executorOptions",
)
# Structured columns that also accept a plain, non-JSON string.
PLAIN_STRING_FIELDS = frozenset({"body"})
TEXT_FIELDS = ("scenario", "testName", "description", "method", "url")

OutcomeKind = Literal["empty", "raw", "parsed"]


@dataclass(frozen=True)
class ParseOutcome:
    """Result of decoding one cell: ``empty``, ``raw`` string or ``parsed`` value."""

    kind: OutcomeKind
    value: Any = None
    error: str | None = None

    @classmethod
    def empty(cls) -> "ParseOutcome":
        return cls("empty")

    @classmethod
    def raw(cls, value: str, error: str | None = None) -> "ParseOutcome":
        return cls("raw", value, error)

    @classmethod
    def parsed(cls, value: Any) -> "ParseOutcome":
        return cls("parsed", value)


def parse_cell(value: Any) -> ParseOutcome:
    """Decode a cell that may hold JSON text."""

    if value is None:
        return ParseOutcome.empty()
    if not isinstance(value, str):
        return ParseOutcome.parsed(value)
    text = value.strip()
    if not text:
        return ParseOutcome.empty()
    if text[0] not in "{[":
        return ParseOutcome.raw(value)
    try:
        return ParseOutcome.parsed(json.loads(text))
    except json.JSONDecodeError as exc:
        return ParseOutcome.raw(value, error=f"invalid JSON: {exc.msg} (char {exc.pos})")


def normalize_row(row: Mapping[str, Any], row_index: int) -> TestCase:
    """Validate one raw row; raises RowValidationError naming the first bad field."""

    prepared: dict[str, Any] = {}

    for name in TEXT_FIELDS:
        value = row.get(name)
        if value is None:
            continue
        text = value.strip() if isinstance(value, str) else str(value)
        if text:
            prepared[name] = text

    prepared.setdefault("testName", f"Test Case #{row_index}")
    if "method" in prepared:
        prepared["method"] = prepared["method"].upper()

    for name in STRUCTURED_FIELDS:
        outcome = parse_cell(row.get(name))
        if outcome.kind == "empty":
            continue
        if outcome.kind == "raw" and name not in PLAIN_STRING_FIELDS:
            reason = outcome.error or "expected a JSON object or array"
            raise RowValidationError(row_index, name, reason)
        prepared[name] = outcome.value

    try:
        return TestCase.model_validate(prepared)
    except ValidationError as exc:
        raise _translate(exc, row_index) from exc


@dataclass
class NormalizationResult:
    cases: list[TestCase] = field(default_factory=list)
    errors: list[RowValidationError] = field(default_factory=list)


def normalize_rows(
    rows: Iterable[RawRow],
    *,
    skip_invalid: bool = False,
    logger: structlog.stdlib.BoundLogger,
) -> NormalizationResult:
    """Validate every row in order.

    By default the first invalid row aborts with RowValidationError. With
    ``skip_invalid`` the row is logged, collected in ``errors`` and dropped.
    """

    result = NormalizationResult()
    for row in rows:
        try:
            result.cases.append(normalize_row(row.values, row.index))
        except RowValidationError as exc:
            if not skip_invalid:
                raise
            logger.warning("row_skipped", row=exc.row_index, field=exc.field, reason=exc.reason)
            result.errors.append(exc)
    logger.info("rows_validated", valid=len(result.cases), skipped=len(result.errors))
    return result


def _translate(exc: ValidationError, row_index: int) -> RowValidationError:
    first = exc.errors()[0]
    location = [str(part) for part in first.get("loc", ())]
    # Drop union-branch names pydantic inserts, e.g. ('body', 'dict[str,any]').
    field_name = ".".join(part for part in location if not _is_type_tag(part)) or "<row>"
    message = first.get("msg", "invalid value")
    if message.startswith("Value error, "):
        message = message[len("Value error, ") :]
    return RowValidationError(row_index, field_name, message)


def _is_type_tag(part: str) -> bool:
    return "[" in part or part in {"str", "list", "dict", "function-after"}
