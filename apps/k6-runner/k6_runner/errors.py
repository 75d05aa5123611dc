"""Error taxonomy for the k6 case runner."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover
    from .models import RunReport


class K6RunnerError(RuntimeError):
    """Base class for every error raised by the runner pipeline."""


class DataSourceError(K6RunnerError):
    """Raised when the data source file cannot be opened or read."""

    def __init__(self, path: Path, reason: str) -> None:
        super().__init__(f"Cannot read data source {path}: {reason}")
        self.path = path
        self.reason = reason


class UnsupportedFormatError(DataSourceError):
    """Raised when the data source is neither a spreadsheet nor a CSV file."""

    def __init__(self, path: Path) -> None:
        suffix = path.suffix or "<none>"
        super().__init__(path, f"unsupported data source file type: {suffix}")
        self.suffix = path.suffix


class RowValidationError(K6RunnerError):
    """A data row failed schema validation."""

    def __init__(self, row_index: int, field: str, reason: str) -> None:
        super().__init__(f"Validation failed for data row {row_index}: field '{field}': {reason}")
        self.row_index = row_index
        self.field = field
        self.reason = reason


class TemplateError(K6RunnerError):
    """The k6 script template is missing required placeholder markers."""


class EngineNotFoundError(K6RunnerError):
    """The k6 executable could not be started."""

    def __init__(self, binary: str) -> None:
        super().__init__(f"k6 executable '{binary}' could not be started; install k6 or pass --k6-binary")
        self.binary = binary


class RunFailure(K6RunnerError):
    """k6 exited with a non-zero status (often a crossed threshold)."""

    def __init__(self, exit_code: int) -> None:
        super().__init__(f"k6 process exited with code {exit_code}. Thresholds may have failed.")
        self.exit_code = exit_code


class ScenarioFailuresError(K6RunnerError):
    """At least one scenario of the run failed."""

    def __init__(self, report: "RunReport") -> None:
        names = ", ".join(report.failed_scenarios)
        super().__init__(
            f"{report.failed} of {report.total} scenario(s) failed: {names}"
        )
        self.report = report
