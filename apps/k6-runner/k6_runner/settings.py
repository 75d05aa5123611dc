"""Runner configuration: CLI options over environment variables over defaults."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal, Mapping, Optional
import os

from pydantic import BaseModel, Field, SecretStr

SummaryFormat = Literal["json", "csv"]
RunMode = Literal["run", "cloud"]

ENV_PREFIX = "K6_RUNNER_"
DEFAULT_MOCK_PORT = 3333
_TRUTHY = {"1", "true", "yes", "on"}
_FLAGS = {"fail_fast", "strict_checks", "cloud"}
_ENV_NAMES = {
    "k6_binary": "BINARY",
    "temp_dir": "TEMP_DIR",
    "output_dir": "OUTPUT_DIR",
    "summary_format": "SUMMARY_FORMAT",
    "fail_fast": "FAIL_FAST",
    "strict_checks": "STRICT_CHECKS",
    "kill_timeout": "KILL_TIMEOUT",
    "html_report": "HTML_REPORT",
    "html_reporter": "HTML_REPORTER",
    "cloud": "CLOUD",
}
DEFAULT_HTML_REPORTER = "npx k6-html-reporter"


class RunnerSettings(BaseModel):
    """Everything the coordinator needs besides the scenarios themselves."""

    k6_binary: str = "k6"
    temp_dir: Path = Field(default_factory=Path.cwd)
    output_dir: Optional[Path] = None
    summary_format: SummaryFormat = "json"
    fail_fast: bool = False
    strict_checks: bool = False
    mock_server_port: int = DEFAULT_MOCK_PORT
    kill_timeout: float = 5.0
    html_report: Optional[Path] = None
    html_reporter: str = DEFAULT_HTML_REPORTER
    cloud: bool = False
    cloud_token: Optional[SecretStr] = None

    @property
    def mode(self) -> RunMode:
        return "cloud" if self.cloud else "run"

    def html_report_for(self, slug: str) -> Optional[Path]:
        """Per-scenario report path: ``report.html`` becomes ``report-<slug>.html``."""

        if self.html_report is None or self.cloud:
            return None
        suffix = self.html_report.suffix or ".html"
        return self.html_report.with_name(f"{self.html_report.stem}-{slug}{suffix}")

    @classmethod
    def from_env(
        cls,
        overrides: Mapping[str, Any] | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> "RunnerSettings":
        """Build settings from ``K6_RUNNER_*`` variables, then apply non-None overrides."""

        env = os.environ if environ is None else environ
        values: dict[str, Any] = {}
        for name, suffix in _ENV_NAMES.items():
            raw = env.get(ENV_PREFIX + suffix)
            if not raw:
                continue
            values[name] = raw.strip().lower() in _TRUTHY if name in _FLAGS else raw
        if env.get("K6_CLOUD_TOKEN"):
            values["cloud_token"] = env["K6_CLOUD_TOKEN"]
        if env.get("MOCK_SERVER_PORT"):
            values["mock_server_port"] = env["MOCK_SERVER_PORT"]
        for key, value in (overrides or {}).items():
            if value is not None:
                values[key] = value
        return cls.model_validate(values)
