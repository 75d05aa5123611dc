"""CLI entrypoint turning spreadsheet/CSV test cases into k6 runs."""

from __future__ import annotations

import signal
from contextlib import ExitStack
from pathlib import Path
from typing import Optional

import structlog
import typer

from mock_server.config import default_config
from mock_server.server import MockRuntime

from .console_reporter import ConsoleReporter
from .coordinator import RunCoordinator
from .errors import K6RunnerError, ScenarioFailuresError
from .grouping import group_scenarios, unresolved_variables
from .loader import read_rows
from .logging_utils import configure_logging
from .models import Scenario
from .normalizers import normalize_rows
from .output_config import OutputFormat, get_output_format, log_format_for
from .settings import RunnerSettings
from .synthesizer import ScriptSynthesizer

app = typer.Typer(help="Generate and run k6 scripts from tabular test case definitions.")

EXIT_SCENARIO_FAILED = 1
EXIT_FATAL = 2
EXIT_INTERRUPTED = 130

DATA_SOURCE_ARGUMENT = typer.Argument(
    ...,
    exists=True,
    dir_okay=False,
    readable=True,
    help="Spreadsheet (.xlsx) or CSV file with one test case per row.",
)
SKIP_INVALID_OPTION = typer.Option(
    False,
    "--skip-invalid",
    help="Log and drop rows that fail validation instead of aborting.",
)
TEMPLATE_OPTION = typer.Option(
    None,
    "--template",
    exists=True,
    dir_okay=False,
    readable=True,
    help="Custom k6 script template containing the injection markers.",
)
OUTPUT_FORMAT_OPTION = typer.Option(
    None,
    "--output-format",
    help="Console output: auto (default), rich, plain or json.",
)
LOG_LEVEL_OPTION = typer.Option("INFO", "--log-level", help="Logging level.")


def _prepare(output_format: Optional[str], log_level: str) -> tuple[ConsoleReporter, structlog.stdlib.BoundLogger]:
    resolved = get_output_format(output_format)
    logger = configure_logging(log_level, log_format_for(resolved))
    return ConsoleReporter(resolved), logger


def _load_scenarios(
    data_source: Path,
    *,
    skip_invalid: bool,
    logger: structlog.stdlib.BoundLogger,
) -> tuple[list[Scenario], list[str]]:
    normalized = normalize_rows(read_rows(data_source), skip_invalid=skip_invalid, logger=logger)
    scenarios = group_scenarios(normalized.cases, logger=logger)
    warnings = [str(error) for error in normalized.errors]
    for scenario in scenarios:
        warnings.extend(scenario.config_warnings)
        warnings.extend(unresolved_variables(scenario))
    return scenarios, warnings


def _synthesizer(template: Optional[Path], strict_checks: bool) -> ScriptSynthesizer:
    if template is None:
        return ScriptSynthesizer.default(strict_checks=strict_checks)
    return ScriptSynthesizer.from_path(template, strict_checks=strict_checks)


def _raise_interrupt(signum, frame) -> None:
    raise KeyboardInterrupt


def _fatal(reporter: ConsoleReporter, logger, exc: Exception) -> typer.Exit:
    logger.error("run_aborted", error=str(exc), error_type=type(exc).__name__)
    reporter.print_error(str(exc))
    return typer.Exit(code=EXIT_FATAL)


@app.command("run")
def run_scenarios(
    data_source: Path = DATA_SOURCE_ARGUMENT,
    output_dir: Optional[Path] = typer.Option(
        None,
        "--output-dir",
        "-o",
        file_okay=False,
        help="Directory for k6 summaries, run-report JSON and JUnit XML (env: K6_RUNNER_OUTPUT_DIR).",
    ),
    summary_format: Optional[str] = typer.Option(
        None,
        "--summary-format",
        help="k6 summary export format: json (default) or csv (env: K6_RUNNER_SUMMARY_FORMAT).",
    ),
    k6_binary: Optional[str] = typer.Option(
        None,
        "--k6-binary",
        help="k6 executable to invoke (env: K6_RUNNER_BINARY, default 'k6').",
    ),
    temp_dir: Optional[Path] = typer.Option(
        None,
        "--temp-dir",
        file_okay=False,
        help="Directory for generated scripts (env: K6_RUNNER_TEMP_DIR, default cwd).",
    ),
    template: Optional[Path] = TEMPLATE_OPTION,
    fail_fast: bool = typer.Option(
        False,
        "--fail-fast",
        help="Stop after the first failed scenario (env: K6_RUNNER_FAIL_FAST).",
    ),
    strict_checks: bool = typer.Option(
        False,
        "--strict-checks",
        help="Add a 'checks: rate==1' threshold so any failed check fails the scenario.",
    ),
    html_report: Optional[Path] = typer.Option(
        None,
        "--html-report",
        dir_okay=False,
        help="Render an HTML report per scenario as <stem>-<slug>.html (env: K6_RUNNER_HTML_REPORT).",
    ),
    cloud: bool = typer.Option(
        False,
        "--cloud",
        help="Run scenarios with 'k6 cloud' instead of locally (env: K6_RUNNER_CLOUD).",
    ),
    cloud_token: Optional[str] = typer.Option(
        None,
        "--cloud-token",
        help="k6 Cloud API token for --cloud (env: K6_CLOUD_TOKEN).",
    ),
    skip_invalid: bool = SKIP_INVALID_OPTION,
    mock_server: bool = typer.Option(
        False,
        "--mock-server",
        help="Serve the built-in demo API on MOCK_SERVER_PORT while the scenarios run.",
    ),
    output_format: Optional[str] = OUTPUT_FORMAT_OPTION,
    log_level: str = LOG_LEVEL_OPTION,
) -> None:
    """Run every scenario of DATA_SOURCE through k6, one after another."""

    reporter, logger = _prepare(output_format, log_level)
    previous_handler = signal.signal(signal.SIGTERM, _raise_interrupt)
    try:
        settings = RunnerSettings.from_env(
            {
                "output_dir": output_dir,
                "summary_format": summary_format,
                "k6_binary": k6_binary,
                "temp_dir": temp_dir,
                "fail_fast": fail_fast or None,
                "strict_checks": strict_checks or None,
                "html_report": html_report,
                "cloud": cloud or None,
                "cloud_token": cloud_token,
            }
        )
        synthesizer = _synthesizer(template, settings.strict_checks)
        scenarios, warnings = _load_scenarios(data_source, skip_invalid=skip_invalid, logger=logger)
        for warning in warnings:
            logger.warning("data_source_warning", detail=warning)
        if not scenarios:
            reporter.print_info(f"No test cases found in {data_source}")
            return

        coordinator = RunCoordinator(settings, synthesizer, reporter=reporter, logger=logger)
        with ExitStack() as stack:
            if mock_server:
                runtime = stack.enter_context(
                    MockRuntime(default_config(port=settings.mock_server_port), logger=logger)
                )
                reporter.print_info(f"Mock API listening on {', '.join(runtime.base_urls)}")
            coordinator.run(scenarios, data_source=str(data_source))
    except ScenarioFailuresError as exc:
        logger.error("run_failed", failed=exc.report.failed, scenarios=exc.report.failed_scenarios)
        reporter.print_error(str(exc))
        raise typer.Exit(code=EXIT_SCENARIO_FAILED) from exc
    except (K6RunnerError, ValueError, OSError) as exc:
        raise _fatal(reporter, logger, exc) from exc
    except KeyboardInterrupt as exc:
        logger.warning("run_interrupted")
        reporter.print_error("Run interrupted")
        raise typer.Exit(code=EXIT_INTERRUPTED) from exc
    finally:
        signal.signal(signal.SIGTERM, previous_handler)


@app.command()
def validate(
    data_source: Path = DATA_SOURCE_ARGUMENT,
    skip_invalid: bool = SKIP_INVALID_OPTION,
    output_format: Optional[str] = OUTPUT_FORMAT_OPTION,
    log_level: str = LOG_LEVEL_OPTION,
) -> None:
    """Parse, validate and group DATA_SOURCE without running anything."""

    reporter, logger = _prepare(output_format, log_level)
    try:
        scenarios, warnings = _load_scenarios(data_source, skip_invalid=skip_invalid, logger=logger)
    except K6RunnerError as exc:
        raise _fatal(reporter, logger, exc) from exc
    reporter.print_scenarios(scenarios, warnings)


@app.command()
def render(
    data_source: Path = DATA_SOURCE_ARGUMENT,
    out_dir: Path = typer.Option(
        ...,
        "--out-dir",
        file_okay=False,
        help="Directory receiving one <slug>.js script per scenario.",
    ),
    template: Optional[Path] = TEMPLATE_OPTION,
    strict_checks: bool = typer.Option(False, "--strict-checks", help="Add a 'checks: rate==1' threshold."),
    skip_invalid: bool = SKIP_INVALID_OPTION,
    output_format: Optional[str] = OUTPUT_FORMAT_OPTION,
    log_level: str = LOG_LEVEL_OPTION,
) -> None:
    """Write the generated k6 script of each scenario for inspection."""

    reporter, logger = _prepare(output_format, log_level)
    try:
        synthesizer = _synthesizer(template, strict_checks)
        scenarios, _ = _load_scenarios(data_source, skip_invalid=skip_invalid, logger=logger)
        out_dir.mkdir(parents=True, exist_ok=True)
        written = []
        for scenario in scenarios:
            destination = out_dir / f"{scenario.slug}.js"
            suffix = 1
            while destination in written:
                destination = out_dir / f"{scenario.slug}-{suffix}.js"
                suffix += 1
            destination.write_text(synthesizer.render(scenario), encoding="utf-8")
            logger.info("script_rendered", scenario=scenario.name, script=str(destination))
            written.append(destination)
    except (K6RunnerError, OSError) as exc:
        raise _fatal(reporter, logger, exc) from exc

    if reporter.output_format == OutputFormat.JSON:
        typer.echo("\n".join(str(path) for path in written))
        return
    for path in written:
        reporter.print_info(f"Script written -> {path}")


def run() -> None:
    """Console_scripts hook."""

    app()


if __name__ == "__main__":  # pragma: no cover
    run()
