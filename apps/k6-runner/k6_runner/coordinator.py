"""Sequential scenario execution with guaranteed script cleanup."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional, Sequence
import time
import xml.etree.ElementTree as ET

import structlog

from .console_reporter import ConsoleReporter
from .errors import K6RunnerError, RunFailure, ScenarioFailuresError
from .k6_process import K6Runner, render_html_report, run_k6
from .models import RunReport, RunResult, Scenario
from .settings import RunnerSettings
from .synthesizer import ScriptSynthesizer

SCRIPT_PREFIX = "_k6_"
_MAX_NAME_ATTEMPTS = 10


class RunCoordinator:
    """Runs scenarios one at a time and aggregates their results.

    Each scenario gets its own temporary script, named from the scenario slug
    and a UTC timestamp, which is removed whether k6 passes, fails, crashes or
    the run is interrupted. A failing scenario does not stop the run unless
    ``fail_fast`` is set; any other error propagates after cleanup.
    """

    def __init__(
        self,
        settings: RunnerSettings,
        synthesizer: ScriptSynthesizer,
        *,
        reporter: ConsoleReporter,
        logger: structlog.stdlib.BoundLogger,
        runner: K6Runner = run_k6,
        html_reporter: Callable[..., bool] = render_html_report,
    ) -> None:
        self.settings = settings
        self._synthesizer = synthesizer
        self._reporter = reporter
        self._logger = logger
        self._runner = runner
        self._html_reporter = html_reporter

    def run(
        self,
        scenarios: Sequence[Scenario],
        *,
        data_source: str,
        run_id: Optional[str] = None,
    ) -> RunReport:
        run_id = run_id or _timestamp()
        log = self._logger.bind(run_id=run_id)
        started_at = datetime.now(timezone.utc)
        output_dir = self._prepare_output_dir()

        if self.settings.cloud and (output_dir is not None or self.settings.html_report is not None):
            log.warning("cloud_mode_local_outputs_disabled", html_report=str(self.settings.html_report))
        log.info("run_started", data_source=data_source, scenarios=len(scenarios))
        self._reporter.start_run(len(scenarios), data_source)

        results: list[RunResult] = []
        skipped = 0
        for index, scenario in enumerate(scenarios, start=1):
            self._reporter.report_scenario_start(index, len(scenarios), scenario)
            result = self._run_scenario(scenario, output_dir, log)
            results.append(result)
            self._reporter.report_scenario_result(result)
            if not result.passed and self.settings.fail_fast:
                skipped = len(scenarios) - index
                log.warning("run_stopped_early", failed_scenario=scenario.name, skipped=skipped)
                break

        report = RunReport.from_results(
            run_id=run_id,
            data_source=data_source,
            started_at=started_at,
            finished_at=datetime.now(timezone.utc),
            results=results,
            skipped=skipped,
        )
        if output_dir is not None:
            self._write_reports(report, output_dir, log)
        log.info("run_finished", passed=report.passed, failed=report.failed, skipped=report.skipped)
        self._reporter.finish_run(report)

        if report.failed:
            raise ScenarioFailuresError(report)
        return report

    def _run_scenario(self, scenario: Scenario, output_dir: Optional[Path], run_log) -> RunResult:
        log = run_log.bind(scenario=scenario.name)
        started_at = datetime.now(timezone.utc)
        timer = time.perf_counter()
        script = self._synthesizer.render(scenario)
        stamp = _timestamp()
        summary_path = None
        if output_dir is not None and self.settings.mode == "run":
            summary_path = output_dir / f"{scenario.slug}-{stamp}.{self.settings.summary_format}"
        html_path = self.settings.html_report_for(scenario.slug)

        def finish(
            status: str,
            exit_code: Optional[int] = None,
            error: Optional[str] = None,
            html_report: Optional[Path] = None,
        ) -> RunResult:
            exported = summary_path if summary_path is not None and summary_path.exists() else None
            return RunResult(
                scenario_name=scenario.name,
                status=status,
                exit_code=exit_code,
                summary_path=str(exported) if exported else None,
                html_report=str(html_report) if html_report else None,
                error=error,
                started_at=started_at,
                duration_ms=round((time.perf_counter() - timer) * 1000, 3),
            )

        try:
            script_path = _create_script(self.settings.temp_dir, f"{SCRIPT_PREFIX}{scenario.slug}-{stamp}", script)
        except OSError as exc:
            log.error("script_write_failed", directory=str(self.settings.temp_dir), error=str(exc))
            return finish("fail", error=f"could not write k6 script: {exc}")

        metrics_path = script_path.with_suffix(".metrics.json") if html_path is not None else None
        log.info("scenario_started", steps=len(scenario.steps), script=str(script_path))
        try:
            status, exit_code, error = "pass", None, None
            try:
                exit_code = self._runner(
                    script_path,
                    summary_path=summary_path,
                    summary_format=self.settings.summary_format,
                    metrics_path=metrics_path,
                    mode=self.settings.mode,
                    cloud_token=_secret(self.settings),
                    binary=self.settings.k6_binary,
                    kill_timeout=self.settings.kill_timeout,
                    logger=log,
                )
            except RunFailure as exc:
                log.warning("scenario_failed", exit_code=exc.exit_code)
                status, exit_code, error = "fail", exc.exit_code, str(exc)
            else:
                log.info("scenario_passed")

            written = None
            if metrics_path is not None and html_path is not None:
                if self._html_reporter(metrics_path, html_path, command=self.settings.html_reporter, logger=log):
                    written = html_path
            return finish(status, exit_code=exit_code, error=error, html_report=written)
        finally:
            _remove_script(script_path, log)
            if metrics_path is not None:
                _discard(metrics_path, log)

    def _prepare_output_dir(self) -> Optional[Path]:
        output_dir = self.settings.output_dir
        if output_dir is None:
            return None
        try:
            output_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise K6RunnerError(f"Failed to create output directory at {output_dir}: {exc}") from exc
        return output_dir

    def _write_reports(self, report: RunReport, output_dir: Path, log) -> None:
        report_file = output_dir / f"run-report-{report.run_id}.json"
        junit_file = output_dir / f"results-{report.run_id}.junit.xml"
        try:
            report_file.write_text(report.model_dump_json(indent=2), encoding="utf-8")
            _write_junit(report, junit_file)
        except OSError as exc:
            log.error("report_write_failed", directory=str(output_dir), error=str(exc))
            return
        log.info("reports_written", report=str(report_file), junit=str(junit_file))


def _create_script(directory: Path, stem: str, content: str) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    for attempt in range(_MAX_NAME_ATTEMPTS):
        candidate = directory / (f"{stem}.js" if attempt == 0 else f"{stem}-{attempt}.js")
        try:
            handle = candidate.open("x", encoding="utf-8")
        except FileExistsError:
            continue
        try:
            with handle:
                handle.write(content)
        except BaseException:
            # Never leave a partial script behind.
            candidate.unlink(missing_ok=True)
            raise
        return candidate
    raise FileExistsError(f"no free script name for {stem} in {directory}")


def _remove_script(path: Path, log) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        log.warning("script_already_removed", script=str(path))
    except OSError as exc:
        log.error("script_cleanup_failed", script=str(path), error=str(exc))
    else:
        log.debug("script_removed", script=str(path))


def _discard(path: Path, log) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as exc:
        log.error("temp_file_cleanup_failed", path=str(path), error=str(exc))


def _secret(settings: RunnerSettings) -> Optional[str]:
    return settings.cloud_token.get_secret_value() if settings.cloud_token else None


def _write_junit(report: RunReport, junit_file: Path) -> None:
    suite = ET.Element(
        "testsuite",
        attrib={
            "name": report.data_source,
            "tests": str(report.total),
            "failures": str(report.failed),
            "skipped": str(report.skipped),
            "time": str(report.duration_ms / 1000),
        },
    )
    for result in report.results:
        case = ET.SubElement(
            suite,
            "testcase",
            attrib={
                "classname": "k6",
                "name": result.scenario_name,
                "time": str(result.duration_ms / 1000),
            },
        )
        if not result.passed:
            failure = ET.SubElement(
                case,
                "failure",
                attrib={"message": result.error or "Scenario failed"},
            )
            failure.text = result.error or ""
    tree = ET.ElementTree(suite)
    tree.write(junit_file, encoding="utf-8", xml_declaration=True)


def _timestamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
