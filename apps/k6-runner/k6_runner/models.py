"""Test case, scenario and run result models."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, Optional
import re

from pydantic import (
    AnyHttpUrl,
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
    model_validator,
)

HttpMethod = Literal["GET", "POST", "PUT", "DELETE"]
CheckType = Literal["statusCode", "bodyContains", "jsonPathValue"]

_URL_ADAPTER = TypeAdapter(AnyHttpUrl)
_SLUG_PATTERN = re.compile(r"[^A-Za-z0-9_]")


class Check(BaseModel):
    """Declarative assertion evaluated against one HTTP response."""

    model_config = ConfigDict(frozen=True)

    type: CheckType
    path: Optional[str] = None
    expected: Any

    @model_validator(mode="after")
    def _require_path_for_json_checks(self) -> "Check":
        if self.type == "jsonPathValue" and not self.path:
            raise ValueError("Check of type 'jsonPathValue' must have a 'path' property.")
        return self


class ExtractRule(BaseModel):
    """Captures a value from a 2xx JSON response into a scenario variable."""

    model_config = ConfigDict(frozen=True)

    variable: str = Field(min_length=1)
    path: str = Field(min_length=1)


class TestCase(BaseModel):
    """One validated row of the data source."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    scenario: Optional[str] = Field(default=None, min_length=1)
    test_name: str = Field(alias="testName", min_length=1)
    description: Optional[str] = None
    method: HttpMethod
    url: str
    query_params: Optional[dict[str, Any]] = Field(default=None, alias="queryParams")
    body: dict[str, Any] | list[Any] | str | None = None
    headers: Optional[dict[str, str]] = None
    tags: Optional[dict[str, str]] = None
    extract: Optional[tuple[ExtractRule, ...]] = None
    checks: Optional[tuple[Check, ...]] = None
    thresholds: Optional[dict[str, list[str]]] = None
    executor_options: Optional[dict[str, Any]] = Field(default=None, alias="executorOptions")

    @field_validator("url")
    @classmethod
    def _absolute_http_url(cls, value: str) -> str:
        # Validate only; the original text is kept so {{placeholders}} survive.
        try:
            _URL_ADAPTER.validate_python(value)
        except ValidationError as exc:
            raise ValueError(f"A valid absolute http(s) URL is required, got {value!r}") from exc
        return value


class Scenario(BaseModel):
    """Ordered steps executed sequentially by one virtual user."""

    model_config = ConfigDict(frozen=True)

    name: str
    steps: tuple[TestCase, ...] = Field(min_length=1)
    config_warnings: tuple[str, ...] = ()

    @property
    def slug(self) -> str:
        slug = _SLUG_PATTERN.sub("", self.name)
        if not slug or slug[0].isdigit():
            slug = f"scenario_{slug}"
        return slug

    @property
    def thresholds(self) -> dict[str, list[str]] | None:
        return self.steps[0].thresholds

    @property
    def executor_options(self) -> dict[str, Any] | None:
        return self.steps[0].executor_options


class RunResult(BaseModel):
    """Outcome of one scenario execution."""

    scenario_name: str
    status: Literal["pass", "fail"]
    exit_code: Optional[int] = None
    summary_path: Optional[str] = None
    html_report: Optional[str] = None
    error: Optional[str] = None
    started_at: datetime
    duration_ms: float

    @property
    def passed(self) -> bool:
        return self.status == "pass"


class RunReport(BaseModel):
    """Aggregated outcome of a whole run."""

    run_id: str
    data_source: str
    started_at: datetime
    finished_at: datetime
    duration_ms: float
    total: int
    passed: int
    failed: int
    skipped: int = 0
    results: list[RunResult] = Field(default_factory=list)
    failed_scenarios: list[str] = Field(default_factory=list)

    @classmethod
    def from_results(
        cls,
        *,
        run_id: str,
        data_source: str,
        started_at: datetime,
        finished_at: datetime,
        results: list[RunResult],
        skipped: int = 0,
    ) -> "RunReport":
        failed = [result.scenario_name for result in results if not result.passed]
        return cls(
            run_id=run_id,
            data_source=data_source,
            started_at=started_at,
            finished_at=finished_at,
            duration_ms=round((finished_at - started_at).total_seconds() * 1000, 3),
            total=len(results),
            passed=len(results) - len(failed),
            failed=len(failed),
            skipped=skipped,
            results=results,
            failed_scenarios=failed,
        )
