"""Console reporter with environment detection for run progress and summaries."""

import json
import os
import sys
from typing import Optional

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .models import RunReport, RunResult, Scenario
from .output_config import OutputFormat


class ConsoleReporter:
    """
    Console reporter that adapts to the environment.

    Interactive terminals get Rich tables and panels; CI/CD, pipes and
    redirects get plain text; JSON mode prints a single machine-readable
    report at the end. k6 output is streamed between these lines, so nothing
    here holds the terminal with a live display.
    """

    def __init__(self, output_format: OutputFormat = OutputFormat.AUTO, console: Optional[Console] = None):
        self.output_format = output_format
        self._detect_environment()
        self.console = console or (Console() if self.use_rich else None)

    def _detect_environment(self) -> None:
        """Detect if we should use rich output or plain text."""
        if self.output_format == OutputFormat.RICH:
            self.use_rich = True
        elif self.output_format in (OutputFormat.PLAIN, OutputFormat.JSON):
            self.use_rich = False
        else:  # AUTO
            is_terminal = sys.stdout.isatty()
            is_ci = any(name in os.environ for name in ("CI", "JENKINS_HOME", "GITLAB_CI", "TRAVIS", "GITHUB_ACTIONS"))
            self.use_rich = is_terminal and not is_ci

    @property
    def quiet(self) -> bool:
        return self.output_format == OutputFormat.JSON

    def start_run(self, total_scenarios: int, data_source: str) -> None:
        if self.quiet:
            return
        if self.use_rich:
            self.console.rule(f"[bold cyan]k6 run: {escape(data_source)}")
            self.console.print(f"[cyan]Scenarios: {total_scenarios}[/]")
        else:
            print(f"Running data source: {data_source}")
            print(f"Total scenarios: {total_scenarios}")
            print("-" * 80)

    def report_scenario_start(self, index: int, total: int, scenario: Scenario) -> None:
        if self.quiet:
            return
        steps = len(scenario.steps)
        if self.use_rich:
            self.console.rule(f"[bold]\\[{index}/{total}] {escape(scenario.name)}[/] [dim]({steps} step(s))[/]", style="cyan")
        else:
            print(f"[{index}/{total}] {scenario.name} ({steps} step(s))", flush=True)

    def report_scenario_result(self, result: RunResult) -> None:
        if self.quiet:
            return
        label = "PASS" if result.passed else "FAIL"
        detail = f"{result.duration_ms:.0f}ms"
        if result.exit_code is not None:
            detail += f", exit {result.exit_code}"
        if self.use_rich:
            style = "green" if result.passed else "red"
            icon = "✓" if result.passed else "✗"
            self.console.print(Text(f"{icon} {label} {result.scenario_name} ({detail})", style=f"bold {style}"))
            if result.error and not result.passed:
                self.console.print(Text(f"  Error: {result.error}", style="red"))
        else:
            print(f"{'✓' if result.passed else '✗'} {label} {result.scenario_name} ({detail})")
            if result.error and not result.passed:
                print(f"  Error: {result.error}")

    def finish_run(self, report: RunReport) -> None:
        """Display the totals for the whole run."""
        counts = f"{report.passed} passed, {report.failed} failed"
        if report.skipped:
            counts += f", {report.skipped} skipped"
        if self.quiet:
            print(report.model_dump_json(indent=2))
            return
        if self.use_rich:
            table = Table(show_header=True, header_style="bold cyan")
            table.add_column("Scenario", width=40)
            table.add_column("Status", width=10)
            table.add_column("Exit", justify="right", width=6)
            table.add_column("Duration", justify="right", width=12)
            for result in report.results:
                status = Text("✓ PASS", style="green") if result.passed else Text("✗ FAIL", style="red")
                exit_code = "-" if result.exit_code is None else str(result.exit_code)
                table.add_row(escape(result.scenario_name), status, exit_code, f"{result.duration_ms:.0f}ms")

            summary_text = Text()
            summary_text.append(f"Total: {report.total}  ", style="bold")
            summary_text.append(f"{counts}  ", style="bold red" if report.failed else "bold green")
            summary_text.append(f"Duration: {report.duration_ms:.0f}ms", style="bold cyan")

            ok = report.failed == 0
            status = "✓ ALL SCENARIOS PASSED" if ok else "✗ SOME SCENARIOS FAILED"
            self.console.print()
            self.console.print(table)
            self.console.print(Panel(
                summary_text,
                title=Text(status, style="bold green" if ok else "bold red"),
                border_style="green" if ok else "red",
            ))
        else:
            print("-" * 80)
            print(f"Total: {report.total} | {counts} | Duration: {report.duration_ms:.0f}ms")
            if report.failed == 0:
                print("✓ ALL SCENARIOS PASSED")
            else:
                print("✗ SOME SCENARIOS FAILED")

    def print_scenarios(self, scenarios: list[Scenario], warnings: list[str]) -> None:
        """List grouped scenarios and diagnostics (used by ``validate``)."""
        if self.quiet:
            payload = {
                "scenarios": [
                    {"name": scenario.name, "steps": [step.test_name for step in scenario.steps]}
                    for scenario in scenarios
                ],
                "warnings": warnings,
            }
            print(json.dumps(payload, indent=2))
            return
        if self.use_rich:
            table = Table(show_header=True, header_style="bold cyan")
            table.add_column("#", style="dim", width=4)
            table.add_column("Scenario", width=30)
            table.add_column("Steps")
            for index, scenario in enumerate(scenarios, start=1):
                steps = " → ".join(f"{step.method} {step.test_name}" for step in scenario.steps)
                table.add_row(str(index), escape(scenario.name), escape(steps))
            self.console.print(table)
            for warning in warnings:
                self.console.print(f"[yellow]Warning:[/] {escape(warning)}")
        else:
            for index, scenario in enumerate(scenarios, start=1):
                steps = " -> ".join(f"{step.method} {step.test_name}" for step in scenario.steps)
                print(f"{index}. {scenario.name}: {steps}")
            for warning in warnings:
                print(f"Warning: {warning}")

    def print_error(self, message: str) -> None:
        """Print an error message."""
        if self.use_rich:
            self.console.print(f"[bold red]Error:[/] {escape(message)}")
        else:
            print(f"Error: {message}", file=sys.stderr)

    def print_info(self, message: str) -> None:
        """Print an info message."""
        if self.quiet:
            return
        if self.use_rich:
            self.console.print(f"[cyan]{escape(message)}[/]")
        else:
            print(message)
